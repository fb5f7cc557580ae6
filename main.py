"""
Main entry point for the CVMFS scraper.

Usage: python main.py [config.yaml]

The config path defaults to $CVMFS_SCRAPER_CONFIG, then config.yaml.
"""

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from cvmfs_scraper.config import config_path_from_env, load_config
from cvmfs_scraper.errors import ConfigError
from cvmfs_scraper.fetcher import CvmfsFetcher
from cvmfs_scraper.interfaces import Sink
from cvmfs_scraper.models import FailedServer, ScrapedServer, Server
from cvmfs_scraper.orchestrator import scrape_servers
from sinks import JsonSink, LogSink


def exit_code(results: List[ScrapedServer]) -> int:
    """0 if every server and repository is healthy, 1 otherwise."""
    for result in results:
        if isinstance(result, FailedServer):
            return 1
        if not all(repo.ok for repo in result.repositories):
            return 1
    return 0


async def main(config_file: Optional[str] = None) -> int:
    """Load config, scrape all servers once, hand results to the sinks."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s"
    )
    logger = logging.getLogger(__name__)

    config_file = config_file or config_path_from_env()
    try:
        cfg = load_config(config_file)
        options = cfg.scrape_options(base_dir=Path(config_file).resolve().parent)
        targets = cfg.targets()
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    if not targets:
        logger.error(f"No servers configured in {config_file}. Exiting.")
        return 2

    http_kwargs = cfg.http_kwargs()

    def make_fetcher(server: Server) -> CvmfsFetcher:
        return CvmfsFetcher(server.hostname, scheme=cfg.http.scheme, **http_kwargs)

    logger.info(f"Scraping {len(targets)} server(s)...")
    results = await scrape_servers(targets, make_fetcher, options)

    sinks: List[Sink] = [LogSink()]
    if cfg.output.json_path:
        sinks.append(JsonSink(cfg.output.json_path))
    for sink in sinks:
        await sink.handle_all(results)
        await sink.close()

    return exit_code(results)


def run_scraper() -> None:
    """Console entry point."""
    sys.exit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None)))


if __name__ == "__main__":
    run_scraper()
