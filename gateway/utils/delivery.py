"""Delivery client: the only place that talks to the messaging provider.

Pure adapter, no policy. Every provider-side problem comes back as a
``failed`` result; nothing raised by the SDK escapes ``send`` or
``check_delivery``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol
from uuid import uuid4

import telnyx
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from config import settings

_LOGGER = logging.getLogger(__name__)

FAILED = "failed"


class DeliveryResult(BaseModel):
    provider_id: Optional[str] = None
    status: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != FAILED


class DeliveryStatus(BaseModel):
    status: str
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class DeliveryClient(Protocol):
    async def send(
        self, address: str, content: str, media_url: Optional[str] = None
    ) -> DeliveryResult: ...

    async def check_delivery(self, provider_id: str) -> DeliveryStatus: ...


def _first_error(body: Any) -> tuple[Optional[str], Optional[str]]:
    """Pull (code, message) out of a Telnyx ``{"errors": [...]}`` body."""
    if isinstance(body, dict):
        errors = body.get("errors") or []
        if errors and isinstance(errors[0], dict):
            err = errors[0]
            code = err.get("code")
            return (str(code) if code is not None else None,
                    err.get("detail") or err.get("title"))
    return None, None


def _recipient_status(message: Any) -> str:
    recipients = getattr(message, "to", None) or []
    if recipients:
        status = getattr(recipients[0], "status", None)
        if status:
            return str(status)
    return "queued"


class TelnyxDeliveryClient:
    """``DeliveryClient`` backed by the Telnyx messaging API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_number: Optional[str] = None,
        messaging_profile_id: Optional[str] = None,
        dev_mode: Optional[bool] = None,
        client: Any = None,
    ):
        self.api_key = api_key if api_key is not None else settings.TELNYX_API_KEY
        self.from_number = from_number if from_number is not None else settings.TELNYX_FROM_NUMBER
        self.messaging_profile_id = (
            messaging_profile_id
            if messaging_profile_id is not None
            else settings.TELNYX_MESSAGING_PROFILE_ID
        )
        self.dev_mode = settings.GATEWAY_DEV_MODE if dev_mode is None else dev_mode
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or bool(self.api_key and self.from_number)

    def _sdk(self):
        if self._client is None:
            self._client = telnyx.Telnyx(api_key=self.api_key)
        return self._client

    # ------------------------------------------------------------------
    # send
    # ------------------------------------------------------------------
    def _send_blocking(self, address: str, content: str, media_url: Optional[str]):
        params: dict[str, Any] = {"from_": self.from_number, "to": address, "text": content}
        if media_url:
            params["media_urls"] = [media_url]
        if self.messaging_profile_id:
            params["messaging_profile_id"] = self.messaging_profile_id
        return self._sdk().messages.send(**params)

    async def send(
        self, address: str, content: str, media_url: Optional[str] = None
    ) -> DeliveryResult:
        if not self.configured:
            if self.dev_mode:
                _LOGGER.info("[SMS] DEV mode: would send to %s: %s", address, content)
                return DeliveryResult(provider_id=f"dev-{uuid4()}", status="queued")
            return DeliveryResult(status=FAILED, error_message="Telnyx credentials not configured")

        try:
            response = await asyncio.to_thread(self._send_blocking, address, content, media_url)
        except telnyx.APIStatusError as exc:
            code, message = _first_error(exc.body)
            _LOGGER.warning("Telnyx rejected message to %s: %s", address, exc)
            return DeliveryResult(
                status=FAILED,
                error_code=code or str(exc.status_code),
                error_message=message or str(exc),
            )
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Telnyx send to %s failed: %s", address, exc)
            return DeliveryResult(status=FAILED, error_message=str(exc))

        message = getattr(response, "data", response)
        return DeliveryResult(
            provider_id=getattr(message, "id", None),
            status=_recipient_status(message),
        )

    # ------------------------------------------------------------------
    # check_delivery
    # ------------------------------------------------------------------
    @retry(
        wait=wait_random_exponential(multiplier=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type((telnyx.APIConnectionError, telnyx.APITimeoutError)),
        reraise=True,
    )
    def _retrieve_blocking(self, provider_id: str):
        return self._sdk().messages.retrieve(provider_id)

    async def check_delivery(self, provider_id: str) -> DeliveryStatus:
        if not self.configured:
            if self.dev_mode and provider_id.startswith("dev-"):
                return DeliveryStatus(status="delivered")
            return DeliveryStatus(status="unknown", error_message="Telnyx credentials not configured")

        try:
            response = await asyncio.to_thread(self._retrieve_blocking, provider_id)
        except telnyx.APIStatusError as exc:
            code, message = _first_error(exc.body)
            return DeliveryStatus(
                status="unknown",
                error_code=code or str(exc.status_code),
                error_message=message or str(exc),
            )
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Telnyx status lookup for %s failed: %s", provider_id, exc)
            return DeliveryStatus(status="unknown", error_message=str(exc))

        message = getattr(response, "data", response)
        errors = getattr(message, "errors", None) or []
        code = None
        if errors:
            first = errors[0]
            code = first.get("code") if isinstance(first, dict) else getattr(first, "code", None)
        return DeliveryStatus(
            status=_recipient_status(message),
            error_code=str(code) if code is not None else None,
        )
