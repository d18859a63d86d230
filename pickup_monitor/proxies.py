"""Rotating forward-proxy pool."""

from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Iterable, List, Optional

from .models import ProxyDescriptor

logger = logging.getLogger(__name__)


class ProxyPool:
    """Read-only list of proxies, one picked uniformly at random per call.

    An empty pool means direct connections.
    """

    def __init__(self, proxies: Iterable[ProxyDescriptor] = (), rng: Optional[random.Random] = None) -> None:
        self._proxies: List[ProxyDescriptor] = list(proxies)
        self._rng = rng or random.Random()

    def __len__(self) -> int:
        return len(self._proxies)

    def pick_random(self) -> Optional[ProxyDescriptor]:
        if not self._proxies:
            return None
        return self._rng.choice(self._proxies)

    @classmethod
    def from_lines(cls, lines: Iterable[str], rng: Optional[random.Random] = None) -> "ProxyPool":
        return cls((ProxyDescriptor.parse(l) for l in lines if l.strip()), rng=rng)


def load_proxy_file(path: str) -> ProxyPool:
    """Load `host:port:user:password` lines, creating an empty file if absent."""
    p = Path(path)
    if not p.exists():
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text("", encoding="utf-8")
        logger.info("%s not found, created empty proxy list", path)
    pool = ProxyPool.from_lines(p.read_text(encoding="utf-8").splitlines())
    logger.info("Loaded %d proxies from %s", len(pool), path)
    return pool


__all__ = ["ProxyPool", "load_proxy_file"]
