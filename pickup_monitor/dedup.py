"""Notification de-duplication state.

A record is kept per composite key (product title, store, message) with the
last message sent and when.  A repeat of the same message for a key is
suppressed until the cooldown has elapsed.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class NotificationRecord:
    message: str
    timestamp: int   # ms since epoch


def notification_key(title: str, store: str, message: str) -> str:
    return f"{title}_{store}_{message}"


class NotificationStore(ABC):
    """Storage for last-sent notification records."""

    def __init__(self, cooldown_ms: int) -> None:
        self.cooldown_ms = cooldown_ms

    @abstractmethod
    def get(self, key: str) -> Optional[NotificationRecord]:
        ...

    @abstractmethod
    def put(self, key: str, record: NotificationRecord) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    def should_suppress(self, key: str, message: str, now: int, cooldown_ms: Optional[int] = None) -> bool:
        cooldown = self.cooldown_ms if cooldown_ms is None else cooldown_ms
        prior = self.get(key)
        if prior is None:
            return False
        return prior.message == message and now - prior.timestamp < cooldown

    def record_sent(self, key: str, message: str, now: int) -> None:
        self.delete(key)
        self.put(key, NotificationRecord(message=message, timestamp=now))

    def check_and_record(self, key: str, message: str, now: int, cooldown_ms: Optional[int] = None) -> bool:
        """Record the send unless suppressed. Returns True when the caller may send."""
        if self.should_suppress(key, message, now, cooldown_ms):
            return False
        self.record_sent(key, message, now)
        return True


class InMemoryNotificationStore(NotificationStore):
    """Process-local store, least-recently-used eviction past `max_entries`.

    `max_entries=0` keeps every record for the process lifetime.
    """

    def __init__(self, cooldown_ms: int = 0, max_entries: int = 0) -> None:
        super().__init__(cooldown_ms)
        self.max_entries = max_entries
        self._records: "OrderedDict[str, NotificationRecord]" = OrderedDict()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return key in self._records

    def get(self, key: str) -> Optional[NotificationRecord]:
        with self._lock:
            record = self._records.get(key)
            if record is not None:
                self._records.move_to_end(key)
            return record

    def put(self, key: str, record: NotificationRecord) -> None:
        with self._lock:
            self._records[key] = record
            self._records.move_to_end(key)
            if self.max_entries > 0:
                while len(self._records) > self.max_entries:
                    self._records.popitem(last=False)

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def check_and_record(self, key: str, message: str, now: int, cooldown_ms: Optional[int] = None) -> bool:
        # Check and record under one lock so concurrent triggers for a key send once.
        with self._lock:
            return super().check_and_record(key, message, now, cooldown_ms)


__all__ = [
    "InMemoryNotificationStore",
    "NotificationRecord",
    "NotificationStore",
    "notification_key",
]
