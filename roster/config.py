"""Environment-driven settings for the directory loader and app."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

DEFAULT_REQUEST_TIMEOUT: float = 30.0
DEFAULT_LOG_LEVEL: str = "INFO"


@dataclass(frozen=True)
class DirectorySettings:
    """Where the directory payload comes from and how it is presented."""

    endpoint_url: str = ""
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    # e.g. https://school.example/wp-admin/admin.php?page=gf_entries&view=entry&id={form_id}&lid={entry_id}
    entry_url: Optional[str] = None
    log_level: str = DEFAULT_LOG_LEVEL


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[config] %s=%r is not a number; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("[config] %s=%r must be positive; using %s", name, raw, default)
        return default
    return value


def load_settings() -> DirectorySettings:
    """Read DIRECTORY_* variables from the environment (and .env)."""
    return DirectorySettings(
        endpoint_url=os.getenv("DIRECTORY_ENDPOINT_URL", "").strip(),
        request_timeout=_float_env("DIRECTORY_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
        entry_url=os.getenv("DIRECTORY_ENTRY_URL") or None,
        log_level=os.getenv("DIRECTORY_LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper() or DEFAULT_LOG_LEVEL,
    )
