from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, List, Optional

from . import client, config, notifier
from .dedup import InMemoryNotificationStore, NotificationStore
from .evaluator import evaluate_store
from .models import (AvailabilityMessage, AvailabilityResult, MonitorConfig,
                     NotificationResult, NotifyStatus, ProxyDescriptor,
                     StoreRecord)
from .proxies import ProxyPool, load_proxy_file
from .utils import jittered_delay, setup_logging

logger = logging.getLogger(__name__)


class CycleReason(str, Enum):
    SUCCESS = "success"
    SOFT_FAILURE = "soft_failure"
    EXCEPTION = "exception"
    STOPPED = "stopped"


@dataclass
class CycleOutcome:
    reason: CycleReason
    delay: Optional[float]    # seconds until the next cycle, None when stopped
    results: List[NotificationResult] = field(default_factory=list)

    def count(self, status: NotifyStatus) -> int:
        return sum(1 for r in self.results if r.status is status)


class Monitor:
    """Polling loop for one monitor row.

    `run_cycle` performs one fetch/evaluate pass and reports which of the
    three reschedule paths applies; `run_forever` sleeps and repeats until
    a cycle reports STOPPED.
    """

    def __init__(
        self,
        settings: MonitorConfig,
        proxies: ProxyPool,
        history: NotificationStore,
        *,
        policy: Optional[client.RequestVariantPolicy] = None,
        max_workers: Optional[int] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
        fetch: Callable[..., AvailabilityResult] = client.fetch_availability,
        notify: Callable[..., NotificationResult] = notifier.notify,
    ) -> None:
        self.settings = settings
        self.proxies = proxies
        self.history = history
        self.policy = policy or client.default_policy()
        self.max_workers = max_workers or config.MAX_WORKERS
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._fetch = fetch
        self._notify = notify

    def _delay(self, delay_ms: int) -> float:
        return jittered_delay(delay_ms, self._rng)

    def run_cycle(self) -> CycleOutcome:
        s = self.settings
        if not s.zip_code:
            logger.error("No zip code given for channel %s; monitor stopped", s.channel_id)
            return CycleOutcome(CycleReason.STOPPED, None)

        try:
            proxy = self.proxies.pick_random()
            logger.info("Checking product availability for products: %s", ",".join(s.products))
            availability = self._fetch(s.country, s.products, s.zip_code, proxy, policy=self.policy)

            if availability.error_message:
                logger.warning("Upstream error for channel %s: %s", s.channel_id, availability.error_message)
                return CycleOutcome(CycleReason.SOFT_FAILURE, self._delay(s.normal_monitor_delay))

            results = self._evaluate_stores(availability.stores, proxy)
            outcome = CycleOutcome(CycleReason.SUCCESS, self._delay(s.normal_monitor_delay), results)
            logger.info(
                "Checked %d store(s) for channel %s: %d sent, %d suppressed, %d failed",
                len(availability.stores), s.channel_id,
                outcome.count(NotifyStatus.SENT),
                outcome.count(NotifyStatus.SUPPRESSED),
                outcome.count(NotifyStatus.FAILED),
            )
            return outcome
        except Exception:
            logger.exception("Availability check failed for channel %s", s.channel_id)
            return CycleOutcome(CycleReason.EXCEPTION, self._delay(s.handle_exception_delay))

    def _evaluate_stores(self, stores: List[StoreRecord], proxy: Optional[ProxyDescriptor]) -> List[NotificationResult]:
        if not stores:
            return []

        def notify(product: str, store: StoreRecord, message: AvailabilityMessage) -> NotificationResult:
            return self._notify(product, store, message, self.settings, proxy, self.history, policy=self.policy)

        # Separate pools: store tasks block on product tasks.
        with ThreadPoolExecutor(self.max_workers, thread_name_prefix="store") as store_pool, \
                ThreadPoolExecutor(self.max_workers, thread_name_prefix="product") as product_pool:
            futures = [store_pool.submit(self._evaluate_store, store, notify, product_pool) for store in stores]
            results: List[NotificationResult] = []
            for f in futures:
                results.extend(f.result())
        return results

    def _evaluate_store(self, store: StoreRecord, notify, executor: Executor) -> List[NotificationResult]:
        try:
            return evaluate_store(store, self.settings, notify, executor)
        except Exception:
            logger.exception("Error evaluating store %s", store.name)
            return []

    def run_forever(self) -> None:
        while True:
            outcome = self.run_cycle()
            if outcome.reason is CycleReason.STOPPED:
                return
            logger.debug("Next check for channel %s in %.3fs (%s)", self.settings.channel_id, outcome.delay, outcome.reason.value)
            self._sleep(outcome.delay)


def resolve_products(settings: MonitorConfig) -> Optional[MonitorConfig]:
    """Expand family-mode rows into explicit product ids."""
    if not settings.use_family:
        return settings
    family = settings.family
    if family is None:
        logger.error("Channel %s uses family mode without a valid family descriptor", settings.channel_id)
        return None
    try:
        products = client.fetch_catalog_products(
            settings.country, family.model, family.capacities, family.carrier, family.screen_size,
        )
    except Exception:
        logger.exception("Failed to resolve family %s for channel %s", family.model, settings.channel_id)
        return None
    if not products:
        logger.error("Family %s matched no products for channel %s", family.model, settings.channel_id)
        return None
    return replace(settings, products=tuple(products))


def _run_monitor(settings: MonitorConfig, proxies: ProxyPool, history: NotificationStore) -> None:
    resolved = resolve_products(settings)
    if resolved is None:
        return
    Monitor(resolved, proxies, history).run_forever()


def main() -> None:
    """Load monitor rows and run one polling thread per row."""
    config.validate()
    setup_logging(level=config.LOG_LEVEL, log_file=config.LOG_FILE)
    logger.info("Initializing app")

    proxies = load_proxy_file(config.PROXIES_PATH)
    history = InMemoryNotificationStore(max_entries=config.DEDUP_MAX_ENTRIES)
    monitors = config.load_monitors()
    if not monitors:
        logger.warning("No monitors configured in %s", config.MONITORS_CSV_PATH)
        return

    threads = []
    for i, settings in enumerate(monitors):
        t = threading.Thread(
            target=_run_monitor,
            args=(settings, proxies, history),
            name=f"monitor-{settings.channel_id or i}",
            daemon=True,
        )
        t.start()
        threads.append(t)

    for t in threads:
        t.join()


if __name__ == "__main__":
    main()
