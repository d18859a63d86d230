"""Configuration loader.

Process-wide settings come from environment variables and `.env`.  The
per-monitor settings come from a CSV file with one row per monitor.
"""

from __future__ import annotations

import csv
import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .models import FamilyDescriptor, MonitorConfig

# Load variables from a .env file if present (project root).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env")

logger = logging.getLogger(__name__)


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "y")


def _parse_int(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        return default


def _split_list(raw: Optional[str], sep: str = ",") -> List[str]:
    return [s.strip() for s in (raw or "").split(sep) if s.strip()]


# ---- Files ------------------------------------------------------------------

MONITORS_CSV_PATH: str = _get_env("MONITORS_CSV_PATH", "data.csv")
PROXIES_PATH: str = _get_env("PROXIES_PATH", "proxies.txt")

# ---- Upstream ---------------------------------------------------------------

# Retailer origin. Should not include a trailing slash.
BASE_URL: str = _get_env("BASE_URL", "https://www.apple.com")

REQUEST_TIMEOUT_SECONDS: int = _parse_int(_get_env("REQUEST_TIMEOUT_SECONDS"), 5)

# "random" or "round_robin" over the endpoint/path variants.
REQUEST_VARIANT_MODE: str = (_get_env("REQUEST_VARIANT_MODE", "random") or "random").strip().lower()

# Attempts for the startup catalog lookup (family mode).
CATALOG_RETRY_ATTEMPTS: int = _parse_int(_get_env("CATALOG_RETRY_ATTEMPTS"), 3)

# ---- Notifications ----------------------------------------------------------

# 0 disables the LRU bound.
DEDUP_MAX_ENTRIES: int = _parse_int(_get_env("DEDUP_MAX_ENTRIES"), 10000)

WEBHOOK_USERNAME: str = _get_env("WEBHOOK_USERNAME", "pickup-monitor")

# ---- Runtime ----------------------------------------------------------------

MAX_WORKERS: int = _parse_int(_get_env("MAX_WORKERS"), 8)

# Logging level: DEBUG, INFO, WARNING, ERROR.
LOG_LEVEL: str = _get_env("LOG_LEVEL", "INFO")
LOG_FILE: Optional[str] = _get_env("LOG_FILE", "pickup-monitor.log") or None


# ---- Monitor rows -----------------------------------------------------------

def parse_family(raw: str) -> Optional[FamilyDescriptor]:
    """Parse `model,cap1+cap2,carrier,screen` into a FamilyDescriptor."""
    parts = _split_list(raw)
    if len(parts) < 4:
        return None
    model, capacities, carrier, screen_size = parts[:4]
    return FamilyDescriptor(
        model=model,
        capacities=tuple(_split_list(capacities, "+")),
        carrier=carrier,
        screen_size=screen_size,
    )


def parse_monitor_row(row: dict) -> MonitorConfig:
    """Build a MonitorConfig from one CSV row.

    Raises ValueError for unparseable numeric columns.
    """
    def col(name: str) -> str:
        return (row.get(name) or "").strip()

    use_family = _parse_bool(col("useFamily"))
    return MonitorConfig(
        channel_id=col("channelid"),
        country=col("country"),
        products=tuple(_split_list(col("products"))),
        zip_code=col("zip"),
        max_distance=float(col("maxDistance") or "inf"),
        webhook_url=col("webhookURL"),
        banned_stores=tuple(_split_list(col("bannedStores"))),
        handle_exception_delay=int(col("handleExceptionDelay") or 5000),
        normal_monitor_delay=int(col("normalMonitorDelay") or 5000),
        notification_timeout=int(col("notificationTimeout") or 60000),
        use_family=use_family,
        family=parse_family(col("family")) if use_family else None,
    )


def load_monitors(path: Optional[str] = None) -> List[MonitorConfig]:
    """Read every monitor row from the CSV file.

    Rows that fail to parse are logged and skipped.
    """
    path = path or MONITORS_CSV_PATH
    monitors: List[MonitorConfig] = []
    with open(path, newline="", encoding="utf-8") as fh:
        for lineno, row in enumerate(csv.DictReader(fh), start=2):
            try:
                monitors.append(parse_monitor_row(row))
            except ValueError:
                logger.exception("Skipping malformed monitor row at %s:%d", path, lineno)
    logger.info("Loaded %d monitor(s) from %s", len(monitors), path)
    return monitors


# ---- Validation --------------------------------------------------------------

def validate() -> None:
    """Validate required configuration parameters."""
    if not Path(MONITORS_CSV_PATH).is_file():
        raise RuntimeError(
            f"Monitor CSV not found at {MONITORS_CSV_PATH!r}. Set MONITORS_CSV_PATH."
        )


__all__ = [
    "MONITORS_CSV_PATH",
    "PROXIES_PATH",
    "BASE_URL",
    "REQUEST_TIMEOUT_SECONDS",
    "REQUEST_VARIANT_MODE",
    "CATALOG_RETRY_ATTEMPTS",
    "DEDUP_MAX_ENTRIES",
    "WEBHOOK_USERNAME",
    "MAX_WORKERS",
    "LOG_LEVEL",
    "LOG_FILE",
    "load_monitors",
    "parse_family",
    "parse_monitor_row",
    "validate",
]
