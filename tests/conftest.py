"""Shared fixtures for viewlog tests."""
from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from viewlog_server.main import create_app
from viewlog_server.models import FallbackLocation, RequestEvent, ResolvedLocation
from viewlog_server.settings import Settings


class RecordingSink:
    """Keeps emitted events in memory; can be told to reject event names."""

    def __init__(self):
        self.events = []
        self.fail_on = set()

    def emit(self, event_name, fields):
        if event_name in self.fail_on:
            raise RuntimeError(f"sink rejected {event_name}")
        self.events.append((event_name, fields))

    def named(self, event_name):
        return [fields for name, fields in self.events if name == event_name]


class FakeResolver:
    """Answers each lookup with a location whose city is the address itself."""

    def __init__(self, delays=None):
        self.calls = []
        self.delays = delays or {}

    async def resolve(self, ip):
        self.calls.append(ip)
        await asyncio.sleep(self.delays.get(ip, 0))
        if not ip:
            return FallbackLocation(country_emoji="🏠")
        return ResolvedLocation(
            country="Germany",
            country_code="DE",
            region="BE",
            region_name="Land Berlin",
            city=ip,
            zip="10115",
            lat=52.52,
            lon=13.405,
            timezone="Europe/Berlin",
            isp="Example ISP",
            org="Example Org",
            as_="AS64500 Example",
            country_emoji="🇩🇪",
        )


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def make_resolver():
    return FakeResolver


@pytest.fixture
def make_event():
    def _make(**overrides):
        data = dict(
            request_id="req-1",
            hostname="example.com",
            remote_address="203.0.113.7",
            method="GET",
            url="/",
            http_version="1.1",
            status_code="200",
            referrer=None,
            headers={"host": "example.com"},
            body=None,
            user_agent="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                       "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            received_at="2024-01-01T00:00:00+00:00",
            response_time_ms=1.25,
        )
        data.update(overrides)
        return RequestEvent(**data)
    return _make


@pytest.fixture
def settings():
    return Settings(port=8080, env="test")


@pytest.fixture
def test_app(settings, sink, resolver):
    """Create test FastAPI app."""
    return create_app(settings, sink=sink, resolver=resolver)


@pytest.fixture
def client(test_app):
    """Create test client; the lifespan runs so pending views are drained on exit."""
    with TestClient(test_app) as c:
        yield c


@pytest.fixture
def settle(test_app):
    """Wait for every scheduled view of a live client to be emitted."""
    def _settle(c):
        c.portal.call(test_app.state.pipeline.drain)
    return _settle
