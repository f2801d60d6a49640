"""HTTP surface for purchases, webhooks, quotas and spotlight credits.

Authentication happens upstream: internal routes require the shared API key
and trust the `x-user-id` / `x-user-email` headers the gateway sets. The
webhook route is public and authenticated by its HMAC signature instead.
"""

from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

import redis
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from wavepay.common.config import settings
from wavepay.common.db import SessionLocal
from wavepay.common.logging import configure_logging, logger, trace_id_ctx
from wavepay.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from wavepay.common.tracing import instrument_app, setup_tracing
from wavepay.services.monetization.errors import (
    GatewayUnavailable,
    ListingNotFound,
    ListingRequired,
    PurchaseNotFound,
    UnknownPurchaseType,
    UnsupportedCurrency,
)
from wavepay.services.monetization.ratelimit import TokenBucket
from wavepay.services.monetization.schemas import InitializePaymentRequest, VerifyPaymentRequest
from wavepay.services.monetization.service import MonetizationService

configure_logging()
setup_tracing(settings.service_name)
logger.info("startup_config=%s", settings.redacted())
service = MonetizationService(SessionLocal, service_name=settings.service_name)
rate_limiter = TokenBucket(redis.Redis.from_url(settings.redis_url, decode_responses=True))


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run outbox publisher, spam-counter worker and subscription janitor."""

    service.start_background()
    yield
    await service.stop_background()


app = FastAPI(title="WavePay Monetization", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    trace_id_ctx.set(request.headers.get("x-correlation-id") or str(uuid4()))
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


def get_service() -> MonetizationService:
    return service


def get_rate_limiter() -> TokenBucket:
    return rate_limiter


def current_user_id(
    x_api_key: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
) -> str:
    """Reject callers without the API key or a forwarded user id."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")
    if not x_user_id:
        raise HTTPException(status_code=401, detail="missing user")
    return x_user_id


def gateway_unavailable_response(exc: GatewayUnavailable) -> JSONResponse:
    return JSONResponse(status_code=503, content={"success": False, "message": exc.message, "retryable": True})


@app.post("/payments/initialize")
async def initialize_payment(
    req: InitializePaymentRequest,
    user_id: str = Depends(current_user_id),
    x_user_email: str | None = Header(default=None),
    svc: MonetizationService = Depends(get_service),
    limiter: TokenBucket = Depends(get_rate_limiter),
):
    """Create a pending purchase and return the gateway checkout URL."""

    limiter.enforce(user_id)
    if not x_user_email:
        raise HTTPException(status_code=400, detail="missing user email")
    try:
        result = await svc.ledger.initialize(user_id, x_user_email, req.type, req.listing_id, req.currency)
    except (UnknownPurchaseType, UnsupportedCurrency, ListingRequired) as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except ListingNotFound as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except GatewayUnavailable as exc:
        return gateway_unavailable_response(exc)
    return result.model_dump(by_alias=True)


@app.post("/payments/verify")
async def verify_payment(
    req: VerifyPaymentRequest,
    user_id: str = Depends(current_user_id),
    svc: MonetizationService = Depends(get_service),
    limiter: TokenBucket = Depends(get_rate_limiter),
):
    """Client-initiated reconciliation after the checkout redirect."""

    limiter.enforce(user_id)
    try:
        result = await svc.ledger.verify(req.reference, source="client")
    except PurchaseNotFound as exc:
        return {"success": False, "message": exc.message}
    except GatewayUnavailable as exc:
        return gateway_unavailable_response(exc)
    return result.model_dump(by_alias=True, exclude={"retryable"})


@app.post("/payments/webhook")
async def payment_webhook(
    request: Request,
    x_paystack_signature: str | None = Header(default=None),
    svc: MonetizationService = Depends(get_service),
):
    """Gateway callback; the signature covers the raw request body."""

    raw_body = await request.body()
    try:
        ack = await svc.ledger.handle_webhook(raw_body, x_paystack_signature)
    except GatewayUnavailable:
        # Non-2xx makes the processor redeliver later.
        return JSONResponse(status_code=503, content={"status": "retry"})
    return ack


@app.get("/monetization/status")
def monetization_status(user_id: str = Depends(current_user_id), svc: MonetizationService = Depends(get_service)):
    status = svc.quota.status(user_id)
    if status is None:
        raise HTTPException(status_code=404, detail="user not found")
    return {**status.model_dump(by_alias=True, mode="json"), **svc.catalog.as_table()}


@app.get("/monetization/chat-limit")
def chat_limit(user_id: str = Depends(current_user_id), svc: MonetizationService = Depends(get_service)):
    return svc.quota.check_chat_limit(user_id).model_dump(by_alias=True)


@app.get("/monetization/post-limit")
def post_limit(user_id: str = Depends(current_user_id), svc: MonetizationService = Depends(get_service)):
    return svc.quota.check_post_limit(user_id).model_dump(by_alias=True)


@app.get("/monetization/offer-limit")
def offer_limit(user_id: str = Depends(current_user_id), svc: MonetizationService = Depends(get_service)):
    return svc.quota.check_offer_limit(user_id).model_dump(by_alias=True)


@app.get("/monetization/listing-limit")
def listing_limit(user_id: str = Depends(current_user_id), svc: MonetizationService = Depends(get_service)):
    return svc.quota.check_listing_limit(user_id).model_dump(by_alias=True)


@app.get("/monetization/pricing")
def pricing(svc: MonetizationService = Depends(get_service)):
    """Public price table and tier limits."""

    return svc.catalog.as_table()


@app.post("/monetization/use-spotlight-credit/{listing_id}")
def use_spotlight_credit(
    listing_id: str,
    user_id: str = Depends(current_user_id),
    svc: MonetizationService = Depends(get_service),
):
    """Spend one premium spotlight credit; failures come back as a failed result."""

    return svc.dispatcher.use_spotlight_credit(user_id, listing_id).model_dump(by_alias=True, mode="json")


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}
