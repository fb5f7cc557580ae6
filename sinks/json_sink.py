"""
JSON sink – writes every scraped server into one JSON document.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from cvmfs_scraper.interfaces import Sink
from cvmfs_scraper.models import ScrapedServer


logger = logging.getLogger(__name__)


class JsonSink(Sink):
    """Sink that buffers servers and writes them as a JSON array on close."""

    name = "JsonSink"

    def __init__(self, path: str):
        self.path = Path(path)
        self._items: List[Dict[str, Any]] = []

    async def handle(self, item: ScrapedServer) -> None:
        self._items.append(item.model_dump(mode="json"))

    async def close(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._items, indent=2, sort_keys=True) + "\n", encoding="utf-8")
        logger.info(f"Wrote {len(self._items)} server(s) to {self.path}")
