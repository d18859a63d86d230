"""Discord-style webhook notifier.

Sends one embed per (product, store) availability message.  Delivery is
best effort: nothing here raises, every call reports a NotificationResult.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

import requests

from . import client, config
from .dedup import NotificationStore, notification_key
from .models import (PICKUP_UNAVAILABLE, AvailabilityMessage, MonitorConfig,
                     NotificationResult, NotifyStatus, ProductDetails,
                     ProxyDescriptor, StoreRecord, is_unavailable)
from .utils import get_http_session, now_ms

logger = logging.getLogger(__name__)

RED = 16711680
GREEN = 65280


def _embed_color(quote: str) -> int:
    if is_unavailable(quote) or quote == PICKUP_UNAVAILABLE:
        return RED
    return GREEN


def _footer_timestamp(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return now.strftime("%b %d, %Y, %I:%M:%S %p")


def build_payload(
    product: str,
    product_url: str,
    store: StoreRecord,
    message: AvailabilityMessage,
    details: Optional[ProductDetails],
    *,
    username: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Build the webhook body for one availability message.

    Without a known price the Price field is left out entirely; the webhook
    service rejects embeds carrying an empty field value.  Without a product
    image the store image is used as the thumbnail.
    """
    details = details or ProductDetails()
    fields = [
        {"name": "Store", "value": store.address, "inline": True},
        {"name": "Distance", "value": store.distance_with_unit, "inline": True},
        {"name": "SKU", "value": product, "inline": True},
    ]
    if details.price is not None:
        price = f"{details.price} {details.currency}" if details.currency else details.price
        fields.append({"name": "Price", "value": price, "inline": True})

    embed = {
        "title": message.title,
        "description": message.quote,
        "url": product_url,
        "color": _embed_color(message.quote),
        "fields": fields,
        "footer": {"text": _footer_timestamp(now)},
        "thumbnail": {"url": details.image or store.image_url},
    }
    return {"username": username or config.WEBHOOK_USERNAME, "embeds": [embed]}


def notify(
    product: str,
    store: StoreRecord,
    message: AvailabilityMessage,
    settings: MonitorConfig,
    proxy: Optional[ProxyDescriptor],
    history: NotificationStore,
    *,
    session: Optional[requests.Session] = None,
    policy: Optional[client.RequestVariantPolicy] = None,
    clock: Callable[[], int] = now_ms,
) -> NotificationResult:
    def result(status: NotifyStatus, **kw) -> NotificationResult:
        return NotificationResult(status, product=product, store=store.name, message=message.quote, **kw)

    if not settings.webhook_url:
        logger.warning("No webhook URL set for channel %s", settings.channel_id)
        return result(NotifyStatus.FAILED, error="no webhook URL")

    key = notification_key(message.title, store.name, message.quote)
    # Recorded before delivery; a failed POST is not re-sent until the cooldown ends.
    if not history.check_and_record(key, message.quote, clock(), settings.notification_timeout):
        logger.debug("Suppressed repeat notification %s", key)
        return result(NotifyStatus.SUPPRESSED)

    close_session = False
    if session is None:
        session = get_http_session()
        close_session = True

    try:
        try:
            details = client.fetch_product_details(settings.country, product, proxy, session=session)
        except Exception:
            logger.exception("Product details lookup failed for %s; using store image", product)
            details = None

        policy = policy or client.default_policy()
        product_url = f"{config.BASE_URL.rstrip('/')}{policy.shop_path(settings.country)}/product/{product}"
        payload = build_payload(product, product_url, store, message, details)

        logger.info("Sending notification %s - %s", message.title, message.quote)
        resp = session.post(
            settings.webhook_url,
            json=payload,
            proxies=proxy.as_requests_proxies() if proxy else None,
            timeout=config.REQUEST_TIMEOUT_SECONDS,
        )
        resp.raise_for_status()
        return result(NotifyStatus.SENT, payload=payload)
    except Exception as e:
        logger.exception("Failed to deliver notification for %s at %s", product, store.name)
        return result(NotifyStatus.FAILED, error=str(e))
    finally:
        if close_session:
            session.close()


__all__ = ["build_payload", "notify", "GREEN", "RED"]
