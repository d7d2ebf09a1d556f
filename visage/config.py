"""
Configuration - Environment-driven settings shared by the CLI and the API.

All settings come from environment variables:
    VISAGE_ENV                 environment name (development)
    VISAGE_DATA_DIR            JSON store root; unset keeps everything in memory
    VISAGE_LOG_LEVEL           root log level (INFO)
    VISAGE_AUTHORITY_ID        lease holder id (hostname-pid)
    VISAGE_LEASE_TTL           lease seconds (30)
    VISAGE_BIN_RETENTION_DAYS  soft-delete retention (30)
    ALLOWED_ORIGINS            comma separated CORS origins (*)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Mapping
import logging
import os
import socket

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def default_authority_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


@dataclass
class VisageConfig:
    env: str = "development"
    data_dir: str | None = None
    log_level: str = "INFO"
    authority_id: str = field(default_factory=default_authority_id)
    lease_ttl: float = 30.0
    bin_retention_days: float = 30.0
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> VisageConfig:
        """
        Read settings from the environment.

        Raises:
            ValueError: If a numeric setting is not a positive number
        """
        env = os.environ if environ is None else environ
        return cls(
            env=env.get("VISAGE_ENV", "development"),
            data_dir=env.get("VISAGE_DATA_DIR") or None,
            log_level=env.get("VISAGE_LOG_LEVEL", "INFO").upper(),
            authority_id=env.get("VISAGE_AUTHORITY_ID") or default_authority_id(),
            lease_ttl=_positive(env, "VISAGE_LEASE_TTL", 30.0),
            bin_retention_days=_positive(env, "VISAGE_BIN_RETENTION_DAYS", 30.0),
            allowed_origins=[
                origin.strip()
                for origin in env.get("ALLOWED_ORIGINS", "*").split(",")
                if origin.strip()
            ],
        )


def _positive(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def configure_logging(level: str | int = "INFO"):
    """Set up root logging for the CLI and the server."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
