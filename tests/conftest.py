from datetime import datetime, timezone

import pytest
import pytest_asyncio

import db
from gateway.services.gateway import Gateway
from gateway.utils.delivery import DeliveryResult, DeliveryStatus

NOW = datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc)


class FakeQuietHours:
    def __init__(self, quiet_users=()):
        self.quiet_users = set(quiet_users)
        self.calls = []

    async def is_quiet_hours(self, user_id):
        self.calls.append(user_id)
        return user_id in self.quiet_users


class FakeRateLimit:
    def __init__(self, denied_users=()):
        self.denied_users = set(denied_users)
        self.calls = []

    async def can_send_proactive(self, user_id):
        self.calls.append(user_id)
        return user_id not in self.denied_users


class FakeProfiles:
    def __init__(self, addresses=None):
        self.addresses = {"u1": "+15550000001", "u2": "+15550000002"} if addresses is None else addresses

    async def get_contact_address(self, user_id):
        return self.addresses.get(user_id)


class FakeDelivery:
    """Records sends; ``failures`` maps content → error text, ``explode`` holds contents that raise."""

    def __init__(self, failures=None, explode=()):
        self.failures = failures or {}
        self.explode = set(explode)
        self.sent = []

    async def send(self, address, content, media_url=None):
        if content in self.explode:
            raise ConnectionError("provider unreachable")
        if content in self.failures:
            return DeliveryResult(status="failed", error_code="40310", error_message=self.failures[content])
        self.sent.append((address, content, media_url))
        return DeliveryResult(provider_id=f"msg-{len(self.sent)}", status="queued")

    async def check_delivery(self, provider_id):
        return DeliveryStatus(status="delivered")


@pytest_asyncio.fixture
async def store(tmp_path, monkeypatch):
    """Fresh SQLite database per test."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}")
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()


@pytest.fixture
def quiet():
    return FakeQuietHours()


@pytest.fixture
def limits():
    return FakeRateLimit()


@pytest.fixture
def profiles():
    return FakeProfiles()


@pytest.fixture
def delivery():
    return FakeDelivery()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def gateway(store, delivery, quiet, limits, profiles, clock):
    return Gateway(
        delivery=delivery,
        quiet_hours=quiet,
        rate_limit=limits,
        profiles=profiles,
        channel="sms",
        batch_size=50,
        wake_hour=7,
        wake_timezone="UTC",
        timeout=5,
        clock=clock,
    )
