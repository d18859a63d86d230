from __future__ import annotations

import json

import pytest
import requests

from pickup_monitor.models import AvailabilityMessage, MonitorConfig, StoreRecord


def _response(payload, status: int = 200) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp._content = json.dumps(payload).encode("utf-8")
    resp.encoding = "utf-8"
    resp.url = "https://upstream.test/"
    resp.headers["Content-Type"] = "application/json"
    return resp


class FakeSession:
    """Stands in for requests.Session; replays queued responses or raises queued errors."""

    def __init__(self, get=(), post=()):
        self._get = list(get)
        self._post = list(post)
        self.gets = []
        self.posts = []
        self.closed = False

    @staticmethod
    def _next(queue):
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        self.gets.append((url, kwargs))
        return self._next(self._get)

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        return self._next(self._post)

    def close(self):
        self.closed = True


@pytest.fixture
def make_response():
    return _response


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def settings() -> MonitorConfig:
    return MonitorConfig(
        channel_id="123",
        country="us",
        products=("MX1", "MX2"),
        zip_code="10001",
        max_distance=50,
        webhook_url="https://hooks.test/webhook",
        banned_stores=("Closed Store",),
        handle_exception_delay=30000,
        normal_monitor_delay=5000,
        notification_timeout=60000,
    )


@pytest.fixture
def store() -> StoreRecord:
    return StoreRecord(
        name="Fifth Avenue",
        state="NY",
        distance=3.2,
        image_url="https://img.test/store.jpg",
        address="767 Fifth Ave\nNew York, NY 10153",
        distance_with_unit="3.2 mi",
        parts={
            "MX1": AvailabilityMessage("iPhone Pro 128GB", "Available Today"),
            "MX2": AvailabilityMessage("iPhone Pro 256GB", "Currently unavailable at Fifth Avenue"),
        },
    )
