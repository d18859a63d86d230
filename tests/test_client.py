from __future__ import annotations

import json
import random

import pytest
import requests

from pickup_monitor import client
from pickup_monitor.client import (FULFILLMENT_MESSAGES_ENDPOINT,
                                   PICKUP_MESSAGE_ENDPOINT, RequestVariantPolicy,
                                   UpstreamError)
from pickup_monitor.utils import HTTPError

RAW_STORE = {
    "storeName": "Fifth Avenue",
    "state": "NY",
    "storedistance": 3.2,
    "storeImageUrl": "https://img.test/store.jpg",
    "retailStore": {
        "distanceWithUnit": "3.2 mi",
        "address": {"twoLineAddress": "767 Fifth Ave\nNew York, NY 10153"},
    },
    "partsAvailability": {
        "MX1": {
            "messageTypes": {
                "regular": {
                    "storePickupProductTitle": "iPhone Pro 128GB",
                    "storePickupQuote": "Available Today",
                }
            }
        }
    },
}


def test_round_robin_walks_every_variant():
    policy = RequestVariantPolicy("round_robin")
    seen = [policy.next_variant("us") for _ in range(4)]

    assert seen == [
        ("/us/shop", PICKUP_MESSAGE_ENDPOINT),
        ("/us/shop", FULFILLMENT_MESSAGES_ENDPOINT),
        ("/us-edu/shop", PICKUP_MESSAGE_ENDPOINT),
        ("/us-edu/shop", FULFILLMENT_MESSAGES_ENDPOINT),
    ]
    assert policy.next_variant("us") == seen[0]


def test_random_policy_uses_both_prefixes_and_endpoints():
    policy = RequestVariantPolicy("random", rng=random.Random(7))
    seen = {policy.next_variant("gb") for _ in range(200)}

    assert {path for path, _ in seen} == {"/gb/shop", "/gb-edu/shop"}
    assert {endpoint for _, endpoint in seen} == set(client.ENDPOINTS)


def test_unknown_policy_mode_is_rejected():
    with pytest.raises(ValueError):
        RequestVariantPolicy("weighted")


def test_availability_params_enumerate_parts():
    assert client.build_availability_params(["MX1", "MX2"], "10001") == [
        ("pl", "true"),
        ("mts.0", "regular"),
        ("parts.0", "MX1"),
        ("parts.1", "MX2"),
        ("location", "10001"),
    ]


def test_normalize_both_endpoint_shapes():
    flat = {"stores": [RAW_STORE]}
    nested = {"content": {"pickupMessage": flat}}

    assert client.normalize_pickup_body(flat, PICKUP_MESSAGE_ENDPOINT) == flat
    assert client.normalize_pickup_body(nested, FULFILLMENT_MESSAGES_ENDPOINT) == flat


def test_unknown_endpoint_is_an_error():
    with pytest.raises(UpstreamError):
        client.normalize_pickup_body({}, "/other")


def test_fulfillment_shape_missing_content_is_an_error():
    with pytest.raises(UpstreamError):
        client.normalize_pickup_body({"stores": []}, FULFILLMENT_MESSAGES_ENDPOINT)


def test_parse_store_reads_nested_fields():
    store = client.parse_store(RAW_STORE)

    assert store.name == "Fifth Avenue"
    assert store.distance == 3.2
    assert store.distance_with_unit == "3.2 mi"
    assert store.address.startswith("767 Fifth Ave")
    assert store.parts["MX1"].title == "iPhone Pro 128GB"
    assert store.parts["MX1"].quote == "Available Today"


def test_parse_store_tolerates_missing_sections():
    store = client.parse_store({"storeName": "Bare", "partsAvailability": {"MX1": {}}})

    assert store.distance == 0.0
    assert store.address == ""
    assert store.parts == {}


def test_fetch_availability_fulfillment_variant(fake_session, make_response):
    session = fake_session(get=[make_response({"body": {"content": {"pickupMessage": {"stores": [RAW_STORE]}}}})])
    policy = RequestVariantPolicy("round_robin")
    policy.next_variant("us")  # advance to the fulfillment endpoint

    result = client.fetch_availability(
        "us", ["MX1"], "10001", session=session, policy=policy, base_url="https://shop.test",
    )

    url, kwargs = session.gets[0]
    assert url == "https://shop.test/us/shop/fulfillment-messages"
    assert kwargs["timeout"] == 5
    assert kwargs["proxies"] is None
    assert result.error_message is None
    assert [s.name for s in result.stores] == ["Fifth Avenue"]
    assert not session.closed


def test_fetch_availability_soft_error(fake_session, make_response):
    session = fake_session(get=[make_response({"body": {"stores": [], "errorMessage": "Invalid location"}})])

    result = client.fetch_availability(
        "us", ["MX1"], "bogus", session=session, policy=RequestVariantPolicy("round_robin"),
    )

    assert result.error_message == "Invalid location"
    assert result.stores == []


def test_fetch_availability_http_error_raises(fake_session, make_response):
    session = fake_session(get=[make_response({}, 503)])

    with pytest.raises(HTTPError):
        client.fetch_availability("us", ["MX1"], "10001", session=session)


def test_fetch_availability_network_error_raises(fake_session):
    session = fake_session(get=[requests.ConnectionError("refused")])

    with pytest.raises(requests.ConnectionError):
        client.fetch_availability("us", ["MX1"], "10001", session=session)


def test_fetch_availability_empty_body_raises(fake_session, make_response):
    session = fake_session(get=[make_response({"head": {}})])

    with pytest.raises(UpstreamError):
        client.fetch_availability("us", ["MX1"], "10001", session=session)


def test_product_details_parsed_from_microdata(fake_session, make_response):
    microdata = {"image": ["https://img.test/a.png"], "offers": [{"price": 1099.0, "priceCurrency": "USD"}]}
    session = fake_session(get=[make_response({"body": {"marketingData": {"microdataList": [json.dumps(microdata)]}}})])

    details = client.fetch_product_details("us", "MX1", session=session, base_url="https://shop.test")

    url, kwargs = session.gets[0]
    assert url == "https://shop.test/us/shop/updateSEO"
    assert json.loads(kwargs["params"]["m"]) == {"product": "MX1", "refererUrl": "https://shop.test/us/shop"}
    assert details.image == "https://img.test/a.png"
    assert details.price == "1099.0"
    assert details.currency == "USD"


def test_product_details_from_script_wrapped_microdata():
    blob = '<script type="application/ld+json">{"image": "https://img.test/b.png", "offers": {"price": "5"}}</script>'
    details = client.parse_product_details({"marketingData": {"microdataList": [blob]}})

    assert details.image == "https://img.test/b.png"
    assert details.price == "5"
    assert details.currency is None


def test_product_details_empty_body_is_none(fake_session, make_response):
    session = fake_session(get=[make_response({"body": {}})])

    assert client.fetch_product_details("us", "MX1", session=session) is None


CATALOG = [
    {"partNumber": "A", "dimensionCapacity": "128GB", "dimensionScreensize": "6.1", "carrierModel": "UNLOCKED"},
    {"partNumber": "B", "dimensionCapacity": "256GB", "dimensionScreensize": "6.1", "carrierModel": "VERIZON"},
    {"partNumber": "C", "dimensionCapacity": "512GB", "dimensionScreensize": "6.1", "carrierModel": "UNLOCKED"},
    {"partNumber": "D", "dimensionCapacity": "128GB", "dimensionScreensize": "6.7", "carrierModel": "UNLOCKED"},
]


def test_catalog_filter_with_unconstrained_carrier():
    assert client.filter_catalog(CATALOG, ["128GB", "256GB"], "N/A", "6.1") == ["A", "B"]


def test_catalog_filter_with_carrier():
    assert client.filter_catalog(CATALOG, ["128GB", "256GB"], "VERIZON", "6.1") == ["B"]


def test_fetch_catalog_products(fake_session, make_response):
    body = {"body": {"productLocatorOverlayData": {"productLocatorMeta": {"products": CATALOG}}}}
    session = fake_session(get=[make_response(body)])

    products = client.fetch_catalog_products(
        "us", "iphone15pro", ["128GB", "256GB"], "N/A", "6.1",
        session=session, base_url="https://shop.test", attempts=1,
    )

    url, kwargs = session.gets[0]
    assert url == "https://shop.test/us/shop/product-locator-meta"
    assert kwargs["params"] == {"family": "iphone15pro"}
    assert "proxies" not in kwargs
    assert products == ["A", "B"]


def test_fetch_catalog_products_bad_shape(fake_session, make_response):
    session = fake_session(get=[make_response({"body": {}})])

    with pytest.raises(UpstreamError):
        client.fetch_catalog_products("us", "x", ["128GB"], "N/A", "6.1", session=session, attempts=1)


def test_default_policy_is_shared_across_threads(monkeypatch):
    import threading

    monkeypatch.setattr(client, "_default_policy", None)
    barrier = threading.Barrier(8)
    seen = []

    def grab():
        barrier.wait()
        seen.append(client.default_policy())

    threads = [threading.Thread(target=grab) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(seen) == 8
    assert all(p is seen[0] for p in seen)
