"""
Configuration loading (YAML + environment).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError, SignatureUnverifiable
from .models import Server, ServerBackendType, ServerType
from .orchestrator import ScrapeOptions
from .trust import TrustAnchor, load_certificate
from .validator import DEFAULT_MAX_FUTURE_SKEW

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"
CONFIG_ENV_VAR = "CVMFS_SCRAPER_CONFIG"


class HttpSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timeout: float = 10.0
    max_retries: int = Field(default=1, ge=1)
    user_agent: Optional[str] = None
    scheme: str = Field(default="http", pattern=r"^https?$")


class ScrapeSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    require_meta_json: bool = True
    include_advertised: bool = True
    max_future_skew: int = Field(default=DEFAULT_MAX_FUTURE_SKEW, ge=0)


class TrustSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    certificates: List[str] = Field(default_factory=list)
    fingerprints: List[str] = Field(default_factory=list)
    # repository name -> PEM path of its signing certificate
    repository_certificates: Dict[str, str] = Field(default_factory=dict)


class ServerEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    hostname: str
    server_type: ServerType = Field(alias="type")
    backend_type: ServerBackendType = Field(default=ServerBackendType.AUTODETECT, alias="backend")
    repositories: List[str] = Field(default_factory=list)


class OutputSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    json_path: Optional[str] = None


class ScraperConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    http: HttpSettings = Field(default_factory=HttpSettings)
    scrape: ScrapeSettings = Field(default_factory=ScrapeSettings)
    trust: TrustSettings = Field(default_factory=TrustSettings)
    servers: List[ServerEntry] = Field(default_factory=list)
    output: OutputSettings = Field(default_factory=OutputSettings)

    # ---------------------------------------------- #
    def targets(self) -> List[Tuple[Server, List[str]]]:
        out = []
        for entry in self.servers:
            try:
                server = Server(
                    hostname=entry.hostname,
                    server_type=entry.server_type,
                    backend_type=entry.backend_type,
                )
            except ValidationError as exc:
                raise ConfigError(f"invalid server {entry.hostname!r}: {exc}") from None
            out.append((server, list(entry.repositories)))
        return out

    def trust_anchor(self, base_dir: Optional[Path] = None) -> Optional[TrustAnchor]:
        if not self.trust.certificates and not self.trust.fingerprints:
            return None
        base = base_dir or Path.cwd()
        paths = [str(base / p) for p in self.trust.certificates]
        return TrustAnchor.from_files(paths, self.trust.fingerprints)

    def signing_certificates(self, base_dir: Optional[Path] = None) -> Dict[str, bytes]:
        base = base_dir or Path.cwd()
        out = {}
        for name, path in self.trust.repository_certificates.items():
            p = base / path
            if not p.is_file():
                raise ConfigError(f"signing certificate for {name} not found: {p}")
            pem = p.read_bytes()
            try:
                load_certificate(pem)
            except SignatureUnverifiable as exc:
                raise ConfigError(f"{p}: {exc}") from None
            out[name] = pem
        return out

    def scrape_options(self, base_dir: Optional[Path] = None) -> ScrapeOptions:
        return ScrapeOptions(
            trust=self.trust_anchor(base_dir),
            certificates=self.signing_certificates(base_dir),
            require_meta_json=self.scrape.require_meta_json,
            include_advertised=self.scrape.include_advertised,
            max_future_skew=self.scrape.max_future_skew,
        )

    def http_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "timeout": self.http.timeout,
            "max_retries": self.http.max_retries,
        }
        if self.http.user_agent:
            kwargs["default_headers"] = {"User-Agent": self.http.user_agent}
        return kwargs


def config_path_from_env(default: str = DEFAULT_CONFIG_PATH) -> str:
    """Load ``.env`` then return the config path to use."""
    load_dotenv()
    return os.getenv(CONFIG_ENV_VAR, default)


def load_config(path: str = DEFAULT_CONFIG_PATH) -> ScraperConfig:
    """Load configuration from YAML file."""
    p = Path(path)
    if not p.is_file():
        raise ConfigError(f"config file not found: {p}")
    try:
        with open(p) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"{p}: invalid YAML: {exc}") from None
    if not isinstance(raw, dict):
        raise ConfigError(f"{p}: top level must be a mapping")
    try:
        cfg = ScraperConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"{p}: {exc}") from None
    logger.info(f"Loaded config from {p}: {len(cfg.servers)} server(s)")
    return cfg
