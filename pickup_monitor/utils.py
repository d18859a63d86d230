"""Helper utilities.

HTTP session construction, the retry decorator used for one-shot lookups,
reschedule jitter and logging setup live here so the loop modules stay
focused on monitoring.
"""

from __future__ import annotations

import logging
import os
import random
import time
from logging.handlers import RotatingFileHandler
from typing import Any, Callable, Dict, Optional

import requests
from requests import Response
from tenacity import (after_log, retry, retry_if_exception_type,
                      stop_after_attempt, wait_exponential)


logger = logging.getLogger(__name__)

# The upstream serves its JSON endpoints to crawlers without a session cookie.
DEFAULT_HEADERS: Dict[str, str] = {
    "Accept": "application/json",
    "Accept-Language": "en-US,en,q=0.9",
    "Pragma": "no-cache",
    "User-Agent": "Googlebot",
}

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_http_session() -> requests.Session:
    """Return a new HTTP session carrying the crawler headers.

    Caller is responsible for closing the session or letting it be
    garbage collected.
    """
    session = requests.Session()
    session.headers.update(DEFAULT_HEADERS)
    return session


class HTTPError(Exception):
    """Raised when an HTTP request returns a non-success status."""


def raise_for_status(resp: Response) -> None:
    try:
        resp.raise_for_status()
    except requests.RequestException as e:
        raise HTTPError(str(e)) from e


def retryable_request(attempts: int = 3) -> Callable[..., Callable[..., Response]]:
    """Decorator factory applying the retry policy to an HTTP call.

    The decorated function must accept a `requests.Session` as its first
    argument, followed by URL and optional kwargs, and return a
    `requests.Response`.  Network errors and HTTP error statuses are
    retried with exponential back-off between 1 and 10 seconds; the last
    error is re-raised once `attempts` is exhausted.
    """

    def decorate(method: Callable[..., Response]) -> Callable[..., Response]:
        @retry(
            reraise=True,
            stop=stop_after_attempt(max(1, attempts)),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=(
                retry_if_exception_type(requests.RequestException)
                | retry_if_exception_type(HTTPError)
            ),
            after=after_log(logger, logging.WARNING),
        )
        def wrapper(session: requests.Session, url: str, **kwargs: Any) -> Response:
            response = method(session, url, **kwargs)
            raise_for_status(response)
            return response

        return wrapper

    return decorate


def jittered_delay(delay_ms: int, rng: Optional[random.Random] = None) -> float:
    """Return the reschedule delay in seconds: `delay_ms` plus 0..999 ms."""
    rng = rng or random
    return (max(0, int(delay_ms)) + rng.randint(0, 999)) / 1000.0


def now_ms() -> int:
    return int(time.time() * 1000)


def setup_logging(
    *,
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = 5_000_000,
    backup_count: int = 3,
) -> None:
    root = logging.getLogger()

    # Avoid duplicate handlers when setup runs more than once.
    for h in list(root.handlers):
        root.removeHandler(h)

    root.setLevel(getattr(logging, (level or "INFO").upper(), logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


__all__ = [
    "DEFAULT_HEADERS",
    "HTTPError",
    "get_http_session",
    "jittered_delay",
    "now_ms",
    "raise_for_status",
    "retryable_request",
    "setup_logging",
]
