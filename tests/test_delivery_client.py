from types import SimpleNamespace

import pytest

from gateway.utils.delivery import TelnyxDeliveryClient


class FakeMessages:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def send(self, **params):
        self.calls.append(params)
        if self.error:
            raise self.error
        return self.response

    def retrieve(self, provider_id):
        self.calls.append(provider_id)
        if self.error:
            raise self.error
        return self.response


def _client(messages, **kwargs):
    return TelnyxDeliveryClient(
        api_key="KEY", from_number="+15559990000", client=SimpleNamespace(messages=messages), **kwargs
    )


def _message(msg_id="40317159-1", status="queued", errors=()):
    return SimpleNamespace(
        data=SimpleNamespace(id=msg_id, to=[SimpleNamespace(status=status)], errors=list(errors))
    )


@pytest.mark.asyncio
async def test_send_success_maps_provider_fields():
    messages = FakeMessages(response=_message())
    client = _client(messages, messaging_profile_id="profile-1")

    result = await client.send("+15550000001", "Pay rent", "https://example.com/r.png")

    assert result.ok
    assert result.provider_id == "40317159-1"
    assert result.status == "queued"
    assert messages.calls == [
        {
            "from_": "+15559990000",
            "to": "+15550000001",
            "text": "Pay rent",
            "media_urls": ["https://example.com/r.png"],
            "messaging_profile_id": "profile-1",
        }
    ]


@pytest.mark.asyncio
async def test_send_exception_becomes_failed_result():
    client = _client(FakeMessages(error=RuntimeError("socket closed")))

    result = await client.send("+15550000001", "Pay rent")

    assert not result.ok
    assert result.status == "failed"
    assert result.error_message == "socket closed"
    assert result.provider_id is None


@pytest.mark.asyncio
async def test_unconfigured_client_fails_outside_dev_mode():
    client = TelnyxDeliveryClient(api_key="", from_number="", dev_mode=False)
    result = await client.send("+15550000001", "hello")
    assert result.status == "failed"
    assert result.error_message == "Telnyx credentials not configured"


@pytest.mark.asyncio
async def test_dev_mode_fakes_delivery():
    client = TelnyxDeliveryClient(api_key="", from_number="", dev_mode=True)
    result = await client.send("+15550000001", "hello")
    assert result.ok
    assert result.provider_id.startswith("dev-")

    status = await client.check_delivery(result.provider_id)
    assert status.status == "delivered"


@pytest.mark.asyncio
async def test_check_delivery_reads_status_and_error_code():
    messages = FakeMessages(response=_message(status="delivery_failed", errors=[{"code": 40008}]))
    status = await _client(messages).check_delivery("40317159-1")
    assert status.status == "delivery_failed"
    assert status.error_code == "40008"
    assert messages.calls == ["40317159-1"]


@pytest.mark.asyncio
async def test_check_delivery_exception_is_contained():
    status = await _client(FakeMessages(error=ValueError("bad id"))).check_delivery("nope")
    assert status.status == "unknown"
    assert status.error_message == "bad id"
