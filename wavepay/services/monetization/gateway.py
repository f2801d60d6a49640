"""Paystack adapter: transaction initialize/verify and webhook signatures.

Every call is bounded by `gateway_timeout_seconds`. Transport failures,
timeouts, non-2xx answers and bodies that do not parse into the expected
shape all surface as `GatewayUnavailable` so callers can leave the purchase
`pending` and retry.
"""

import hashlib
import hmac
from time import perf_counter
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from wavepay.common.config import settings
from wavepay.common.logging import logger
from wavepay.common.metrics import gateway_errors_total, gateway_request_seconds
from wavepay.services.monetization.errors import GatewayUnavailable

# Paystack transaction statuses that mean the charge will never succeed.
DEFINITIVE_FAILURE_STATUSES = frozenset({"failed", "reversed"})
AUTH_FAILURE_STATUS_CODES = frozenset({401, 403})


class GatewayInitialization(BaseModel):
    authorization_url: str
    access_code: str | None = None
    reference: str


class GatewayVerification(BaseModel):
    reference: str
    status: str
    amount: int | None = None
    currency: str | None = None
    gateway_response: str | None = None

    @property
    def paid(self) -> bool:
        return self.status == "success"

    @property
    def definitively_failed(self) -> bool:
        return self.status in DEFINITIVE_FAILURE_STATUSES


class _Envelope(BaseModel):
    status: bool
    message: str = ""
    data: dict[str, Any] | None = None


def sign_payload(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA512 of the raw webhook body."""

    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


class PaystackGateway:
    """Thin async client for the Paystack transaction API."""

    def __init__(
        self,
        secret_key: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        service_name: str = "monetization",
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.paystack_secret_key
        self.base_url = (base_url or settings.paystack_base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.gateway_timeout_seconds
        self.transport = transport
        self.service_name = service_name

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        if not signature:
            return False
        expected = sign_payload(raw_body, self.secret_key)
        return hmac.compare_digest(expected, signature)

    async def _call(self, operation: str, method: str, path: str, json_body: dict | None = None) -> _Envelope:
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        started = perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                resp = await client.request(method, path, headers=headers, json=json_body)
            envelope = _Envelope.model_validate(resp.json())
        except (httpx.HTTPError, ValueError, ValidationError) as exc:
            gateway_errors_total.labels(service=self.service_name, operation=operation).inc()
            logger.error("gateway_call_failed operation=%s error=%s", operation, exc)
            raise GatewayUnavailable() from exc
        finally:
            gateway_request_seconds.labels(service=self.service_name, operation=operation).observe(
                max(0.0, perf_counter() - started)
            )
        # A rejected key is our misconfiguration, not a verdict on the charge.
        if resp.status_code >= 500 or resp.status_code in AUTH_FAILURE_STATUS_CODES:
            gateway_errors_total.labels(service=self.service_name, operation=operation).inc()
            logger.error("gateway_unusable_response operation=%s status_code=%s", operation, resp.status_code)
            raise GatewayUnavailable()
        return envelope

    async def initialize(
        self,
        email: str,
        amount: int,
        currency: str,
        reference: str,
        metadata: dict[str, Any],
        callback_url: str | None = None,
    ) -> GatewayInitialization:
        envelope = await self._call(
            "initialize",
            "POST",
            "/transaction/initialize",
            {
                "email": email,
                "amount": amount,
                "currency": currency,
                "reference": reference,
                "callback_url": callback_url or f"{settings.frontend_url}/payment/callback",
                "metadata": metadata,
            },
        )
        if not envelope.status or envelope.data is None:
            logger.error("gateway_initialize_rejected reference=%s message=%s", reference, envelope.message)
            raise GatewayUnavailable(envelope.message or "Failed to initialize payment")
        try:
            return GatewayInitialization.model_validate(envelope.data)
        except ValidationError as exc:
            raise GatewayUnavailable() from exc

    async def verify(self, reference: str) -> GatewayVerification:
        """Look up the transaction; `status=False` envelopes read as not paid."""

        envelope = await self._call("verify", "GET", f"/transaction/verify/{reference}")
        if not envelope.status or envelope.data is None:
            return GatewayVerification(reference=reference, status="failed", gateway_response=envelope.message)
        try:
            return GatewayVerification.model_validate({"reference": reference, **envelope.data})
        except ValidationError as exc:
            raise GatewayUnavailable() from exc
