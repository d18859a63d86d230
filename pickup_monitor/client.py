"""Upstream availability client.

Talks to the retailer's pickup-availability endpoints, the SEO metadata
endpoint (product image/price) and the product-locator catalog.  Two
availability endpoints and two shop path prefixes are rotated through a
`RequestVariantPolicy` so consecutive polls do not share one request shape.
"""

from __future__ import annotations

import itertools
import json
import logging
import random
import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import requests
from bs4 import BeautifulSoup

from . import config
from .models import (AvailabilityMessage, AvailabilityResult, ProductDetails,
                     ProxyDescriptor, StoreRecord)
from .utils import get_http_session, raise_for_status, retryable_request

logger = logging.getLogger(__name__)

PICKUP_MESSAGE_ENDPOINT = "/retail/pickup-message"
FULFILLMENT_MESSAGES_ENDPOINT = "/fulfillment-messages"
ENDPOINTS: Tuple[str, ...] = (PICKUP_MESSAGE_ENDPOINT, FULFILLMENT_MESSAGES_ENDPOINT)


class UpstreamError(Exception):
    """Raised when an upstream response cannot be interpreted."""


class RequestVariantPolicy:
    """Chooses the shop path prefix and endpoint for each request.

    `random` picks both independently with equal odds; `round_robin` walks
    every (prefix, endpoint) combination in order.
    """

    MODES = ("random", "round_robin")

    def __init__(
        self,
        mode: str = "random",
        *,
        endpoints: Sequence[str] = ENDPOINTS,
        rng: Optional[random.Random] = None,
    ) -> None:
        if mode not in self.MODES:
            raise ValueError(f"Unknown request variant mode: {mode!r}")
        self.mode = mode
        self.endpoints = tuple(endpoints)
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._combos = itertools.cycle(itertools.product((False, True), self.endpoints))
        self._paths = itertools.cycle((False, True))

    @staticmethod
    def _path(country: str, edu: bool) -> str:
        return f"/{country}-edu/shop" if edu else f"/{country}/shop"

    def shop_path(self, country: str) -> str:
        if self.mode == "round_robin":
            with self._lock:
                edu = next(self._paths)
        else:
            edu = self._rng.random() < 0.5
        return self._path(country, edu)

    def next_variant(self, country: str) -> Tuple[str, str]:
        """Return `(shop_path, endpoint)` for the next availability request."""
        if self.mode == "round_robin":
            with self._lock:
                edu, endpoint = next(self._combos)
        else:
            edu = self._rng.random() < 0.5
            endpoint = self._rng.choice(self.endpoints)
        return self._path(country, edu), endpoint


_default_policy: Optional[RequestVariantPolicy] = None
_default_policy_lock = threading.Lock()


def default_policy() -> RequestVariantPolicy:
    """Process-wide policy shared by every monitor thread."""
    global _default_policy
    with _default_policy_lock:
        if _default_policy is None:
            _default_policy = RequestVariantPolicy(config.REQUEST_VARIANT_MODE)
        return _default_policy


def _get(session: requests.Session, url: str, **kwargs: Any) -> requests.Response:
    return session.get(url, **kwargs)


def _proxies(proxy: Optional[ProxyDescriptor]) -> Optional[Dict[str, str]]:
    return proxy.as_requests_proxies() if proxy else None


def _json_body(resp: requests.Response) -> Any:
    try:
        payload = resp.json()
    except ValueError as e:
        raise UpstreamError(f"Response is not JSON (HTTP {resp.status_code})") from e
    if not isinstance(payload, dict):
        raise UpstreamError("Unexpected top-level response shape")
    return payload.get("body")


# ---------------------------
# Availability
# ---------------------------

def build_availability_params(products: Iterable[str], zip_code: str) -> List[Tuple[str, str]]:
    params: List[Tuple[str, str]] = [("pl", "true"), ("mts.0", "regular")]
    params.extend((f"parts.{i}", product) for i, product in enumerate(products))
    params.append(("location", zip_code))
    return params


def normalize_pickup_body(body: Any, endpoint: str) -> Dict[str, Any]:
    """Map either endpoint's body onto `{"stores": [...], "errorMessage": ...}`."""
    if endpoint == PICKUP_MESSAGE_ENDPOINT:
        result = body
    elif endpoint == FULFILLMENT_MESSAGES_ENDPOINT:
        try:
            result = body["content"]["pickupMessage"]
        except (KeyError, TypeError) as e:
            raise UpstreamError("Fulfillment response missing content.pickupMessage") from e
    else:
        raise UpstreamError(f"Invalid endpoint: {endpoint}")
    if not isinstance(result, dict):
        raise UpstreamError(f"Unexpected pickup body from {endpoint}")
    return result


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_store(raw: Dict[str, Any]) -> StoreRecord:
    retail = raw.get("retailStore") or {}
    address = retail.get("address") or {}

    parts: Dict[str, AvailabilityMessage] = {}
    for product, bundle in (raw.get("partsAvailability") or {}).items():
        regular = ((bundle or {}).get("messageTypes") or {}).get("regular") or {}
        quote = regular.get("storePickupQuote")
        if quote is None:
            logger.debug("No pickup quote for %s at %s", product, raw.get("storeName"))
            continue
        parts[product] = AvailabilityMessage(
            title=regular.get("storePickupProductTitle") or product,
            quote=str(quote),
        )

    return StoreRecord(
        name=raw.get("storeName") or "",
        state=raw.get("state") or "",
        distance=_to_float(raw.get("storedistance")),
        image_url=raw.get("storeImageUrl") or "",
        address=address.get("twoLineAddress") or "",
        distance_with_unit=retail.get("distanceWithUnit") or "",
        parts=parts,
    )


def fetch_availability(
    country: str,
    products: Sequence[str],
    zip_code: str,
    proxy: Optional[ProxyDescriptor] = None,
    *,
    session: Optional[requests.Session] = None,
    policy: Optional[RequestVariantPolicy] = None,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> AvailabilityResult:
    """Fetch pickup availability for `products` near `zip_code`.

    Network errors, HTTP error statuses and malformed bodies raise; an
    application-level error message is returned in the result instead.
    """
    policy = policy or default_policy()
    shop_path, endpoint = policy.next_variant(country)
    url = f"{(base_url or config.BASE_URL).rstrip('/')}{shop_path}{endpoint}"

    close_session = False
    if session is None:
        session = get_http_session()
        close_session = True

    try:
        logger.debug("GET %s (proxy=%s)", url, proxy.host if proxy else "direct")
        resp = _get(
            session,
            url,
            params=build_availability_params(products, zip_code),
            proxies=_proxies(proxy),
            timeout=timeout or config.REQUEST_TIMEOUT_SECONDS,
        )
        logger.info("HTTP response status code: %s", resp.status_code)
        raise_for_status(resp)
        body = _json_body(resp)
    finally:
        if close_session:
            session.close()

    if body is None:
        raise UpstreamError(f"Empty body from {endpoint}")
    result = normalize_pickup_body(body, endpoint)

    error_message = result.get("errorMessage")
    raw_stores = result.get("stores") or []
    if not isinstance(raw_stores, list):
        raise UpstreamError("stores is not a list")
    return AvailabilityResult(
        stores=[parse_store(s) for s in raw_stores if isinstance(s, dict)],
        error_message=error_message or None,
    )


# ---------------------------
# Product details (SEO metadata)
# ---------------------------

def _decode_microdata(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    text = str(raw or "").strip()
    if text.startswith("<"):
        soup = BeautifulSoup(text, "html.parser")
        tag = soup.select_one('script[type="application/ld+json"]') or soup.find("script")
        text = (tag.string or "") if tag else ""
    data = json.loads(text)
    if isinstance(data, list):
        data = data[0] if data else {}
    return data


def parse_product_details(body: Dict[str, Any]) -> ProductDetails:
    microdata = _decode_microdata(body["marketingData"]["microdataList"][0])

    image = microdata.get("image")
    if isinstance(image, list):
        image = image[0] if image else None

    offers = microdata.get("offers") or {}
    offer = offers[0] if isinstance(offers, list) and offers else offers
    if not isinstance(offer, dict):
        offer = {}
    price = offer.get("price")
    return ProductDetails(
        image=image or None,
        price=str(price) if price is not None else None,
        currency=offer.get("priceCurrency") or None,
    )


def fetch_product_details(
    country: str,
    product_id: str,
    proxy: Optional[ProxyDescriptor] = None,
    *,
    session: Optional[requests.Session] = None,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> Optional[ProductDetails]:
    """Return image/price/currency for a product, or None when the body is empty."""
    base = (base_url or config.BASE_URL).rstrip("/")
    query = json.dumps(
        {"product": product_id, "refererUrl": f"{base}/{country}/shop"},
        separators=(",", ":"),
    )

    close_session = False
    if session is None:
        session = get_http_session()
        close_session = True

    try:
        logger.info("Getting product details for %s", product_id)
        resp = _get(
            session,
            f"{base}/{country}/shop/updateSEO",
            params={"m": query},
            proxies=_proxies(proxy),
            timeout=timeout or config.REQUEST_TIMEOUT_SECONDS,
        )
        raise_for_status(resp)
        body = _json_body(resp)
    finally:
        if close_session:
            session.close()

    if not body:
        logger.warning("No product details found from updateSEO for %s", product_id)
        return None
    return parse_product_details(body)


# ---------------------------
# Product-locator catalog (family mode)
# ---------------------------

def filter_catalog(
    products: Iterable[Dict[str, Any]],
    capacities: Sequence[str],
    carrier: str,
    screen_size: str,
) -> List[str]:
    matching: List[str] = []
    for p in products:
        if p.get("dimensionCapacity") not in capacities:
            continue
        if p.get("dimensionScreensize") != screen_size:
            continue
        if carrier != "N/A" and p.get("carrierModel") != carrier:
            continue
        part = p.get("partNumber")
        if part:
            matching.append(part)
    return matching


def fetch_catalog_products(
    country: str,
    family: str,
    capacities: Sequence[str],
    carrier: str,
    screen_size: str,
    *,
    session: Optional[requests.Session] = None,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
    attempts: Optional[int] = None,
) -> List[str]:
    """Resolve a product family to the part numbers matching the filters.

    Always a direct connection; retried with back-off since it runs once
    at startup.
    """
    base = (base_url or config.BASE_URL).rstrip("/")
    get = retryable_request(attempts or config.CATALOG_RETRY_ATTEMPTS)(_get)

    close_session = False
    if session is None:
        session = get_http_session()
        close_session = True

    try:
        logger.info("Getting products for family %s", family)
        resp = get(
            session,
            f"{base}/{country}/shop/product-locator-meta",
            params={"family": family},
            timeout=timeout or config.REQUEST_TIMEOUT_SECONDS,
        )
        body = _json_body(resp)
    finally:
        if close_session:
            session.close()

    try:
        catalog = body["productLocatorOverlayData"]["productLocatorMeta"]["products"]
    except (KeyError, TypeError) as e:
        raise UpstreamError(f"Unexpected product-locator response for {family}") from e

    matching = filter_catalog(catalog, capacities, carrier, screen_size)
    logger.info("Family %s resolved to %d product(s)", family, len(matching))
    return matching


__all__ = [
    "ENDPOINTS",
    "FULFILLMENT_MESSAGES_ENDPOINT",
    "PICKUP_MESSAGE_ENDPOINT",
    "RequestVariantPolicy",
    "UpstreamError",
    "build_availability_params",
    "default_policy",
    "fetch_availability",
    "fetch_catalog_products",
    "fetch_product_details",
    "filter_catalog",
    "normalize_pickup_body",
    "parse_product_details",
    "parse_store",
]
