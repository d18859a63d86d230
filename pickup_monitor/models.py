"""Data types shared by the monitor components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote


@dataclass(frozen=True)
class FamilyDescriptor:
    model: str
    capacities: Tuple[str, ...]
    carrier: str          # "N/A" leaves the carrier unconstrained
    screen_size: str


@dataclass(frozen=True)
class MonitorConfig:
    """Settings for one monitor row. Loaded once, never mutated."""

    channel_id: str
    country: str
    products: Tuple[str, ...]
    zip_code: str
    max_distance: float
    webhook_url: str
    banned_stores: Tuple[str, ...] = ()
    handle_exception_delay: int = 5000   # ms
    normal_monitor_delay: int = 5000     # ms
    notification_timeout: int = 60000    # ms
    use_family: bool = False
    family: Optional[FamilyDescriptor] = None


@dataclass(frozen=True)
class ProxyDescriptor:
    host: str
    port: str
    username: str = ""
    password: str = ""

    @classmethod
    def parse(cls, line: str) -> "ProxyDescriptor":
        # Malformed lines are not rejected; they fail at connect time.
        parts = line.strip().split(":", 3)
        parts += [""] * (4 - len(parts))
        return cls(*parts)

    @property
    def url(self) -> str:
        auth = f"{quote(self.username, safe='')}:{quote(self.password, safe='')}@" if self.username else ""
        return f"http://{auth}{self.host}:{self.port}"

    def as_requests_proxies(self) -> Dict[str, str]:
        return {"http": self.url, "https": self.url}


PICKUP_UNAVAILABLE = "Apple Store Pickup is currently unavailable"

# Case-sensitive substrings; any match classifies a quote as unavailable.
UNAVAILABLE_MESSAGES: Tuple[str, ...] = (
    "Currently unavailable",
    "Unavailable for pickup at",
    PICKUP_UNAVAILABLE,
    "In-store availability on",
)


def is_unavailable(quote: str) -> bool:
    return any(phrase in quote for phrase in UNAVAILABLE_MESSAGES)


@dataclass(frozen=True)
class AvailabilityMessage:
    title: str
    quote: str

    @property
    def available(self) -> bool:
        return not is_unavailable(self.quote)


@dataclass
class StoreRecord:
    name: str
    state: str
    distance: float
    image_url: str
    address: str
    distance_with_unit: str
    parts: Dict[str, AvailabilityMessage] = field(default_factory=dict)


@dataclass
class AvailabilityResult:
    stores: List[StoreRecord]
    error_message: Optional[str] = None


@dataclass
class ProductDetails:
    image: Optional[str] = None
    price: Optional[str] = None
    currency: Optional[str] = None


class NotifyStatus(str, Enum):
    SENT = "sent"
    SUPPRESSED = "suppressed"
    FAILED = "failed"


@dataclass
class NotificationResult:
    status: NotifyStatus
    product: str
    store: str
    message: str
    payload: Optional[dict] = None
    error: Optional[str] = None

    @property
    def sent(self) -> bool:
        return self.status is NotifyStatus.SENT


__all__ = [
    "PICKUP_UNAVAILABLE",
    "UNAVAILABLE_MESSAGES",
    "is_unavailable",
    "AvailabilityMessage",
    "AvailabilityResult",
    "FamilyDescriptor",
    "MonitorConfig",
    "NotificationResult",
    "NotifyStatus",
    "ProductDetails",
    "ProxyDescriptor",
    "StoreRecord",
]
