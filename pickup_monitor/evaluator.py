"""Per-store availability evaluation."""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from typing import Callable, List, Optional

from .models import (AvailabilityMessage, MonitorConfig, NotificationResult,
                     StoreRecord, is_unavailable)

logger = logging.getLogger(__name__)

NotifyFn = Callable[[str, StoreRecord, AvailabilityMessage], NotificationResult]


def store_in_range(store: StoreRecord, settings: MonitorConfig) -> bool:
    if store.distance > settings.max_distance:
        return False
    if store.name in settings.banned_stores:
        return False
    return True


def _evaluate_product(product: str, store: StoreRecord, notify: NotifyFn) -> Optional[NotificationResult]:
    try:
        message = store.parts.get(product)
        if message is None:
            logger.debug("No availability for %s at %s", product, store.name)
            return None
        logger.debug("%s at %s: %s", message.title, store.name, message.quote)
        if is_unavailable(message.quote):
            return None
        return notify(product, store, message)
    except Exception:
        logger.exception("Error evaluating %s at %s", product, store.name)
        return None


def evaluate_store(
    store: StoreRecord,
    settings: MonitorConfig,
    notify: NotifyFn,
    executor: Optional[Executor] = None,
) -> List[NotificationResult]:
    """Dispatch notifications for every available configured product at `store`.

    Stores out of range or on the ban list produce nothing.  Unavailable
    products are skipped without touching notification history.  Returns
    the Notifier's result for each product it was called for.
    """
    if not store_in_range(store, settings):
        return []

    if executor is None:
        outcomes = [_evaluate_product(p, store, notify) for p in settings.products]
    else:
        futures = [executor.submit(_evaluate_product, p, store, notify) for p in settings.products]
        outcomes = [f.result() for f in futures]
    return [r for r in outcomes if r is not None]


__all__ = ["evaluate_store", "store_in_range"]
