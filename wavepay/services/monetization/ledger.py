"""Purchase ledger: initialize, verify and webhook reconciliation.

Purchases move `pending -> completed | failed` exactly once. The completed
transition is a conditional UPDATE guarded by `(id, status, state_version)`
issued in the same transaction as the activation effects, so when a webhook
and a client verify race on one reference only the caller whose UPDATE
matched applies the effects; the other observes `completed` and returns the
idempotent success.
"""

import json
from datetime import datetime
from uuid import uuid4

from sqlalchemy import select, update

from wavepay.common.db import utcnow
from wavepay.common.events import ACTIVATION_COMPLETED_TOPIC
from wavepay.common.logging import bind_purchase, logger
from wavepay.common.metrics import (
    duplicate_verifications_skipped_total,
    purchases_completed_total,
    purchases_failed_total,
    purchases_initialized_total,
    webhook_events_total,
)
from wavepay.common.outbox import enqueue_event
from wavepay.common.state_machine import COMPLETED, FAILED, PENDING, is_terminal, validate_transition
from wavepay.common.tracing import traced
from wavepay.services.monetization.activation import ActivationDispatcher
from wavepay.services.monetization.errors import InvalidSignature, ListingNotFound, ListingRequired, PurchaseNotFound
from wavepay.services.monetization.gateway import PaystackGateway
from wavepay.services.monetization.models import Listing, OutboxEvent, Purchase, PurchaseTimeline, User
from wavepay.services.monetization.pricing import DEFAULT_CATALOG, Currency, PricingCatalog, PurchaseType, Tier
from wavepay.services.monetization.schemas import InitializePaymentResponse, VerifyResult

CHARGE_SUCCESS_EVENT = "charge.success"

ALREADY_COMPLETED_MESSAGE = "This transaction was already completed."
VERIFICATION_FAILED_MESSAGE = "Payment verification failed."
NOT_CONFIRMED_MESSAGE = "Payment has not been confirmed yet."


def make_reference(purchase_type: PurchaseType, user_id: str, now: datetime) -> str:
    """`BW_<type>_<user prefix>_<epoch ms>_<nonce>`; unique per call."""

    return f"BW_{purchase_type.value}_{user_id[:8]}_{int(now.timestamp() * 1000)}_{uuid4().hex[:6]}"


class PurchaseLedger:
    def __init__(
        self,
        session_factory,
        gateway: PaystackGateway,
        dispatcher: ActivationDispatcher,
        catalog: PricingCatalog = DEFAULT_CATALOG,
        clock=utcnow,
        service_name: str = "monetization",
    ) -> None:
        self.session_factory = session_factory
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.catalog = catalog
        self.clock = clock
        self.service_name = service_name

    async def initialize(
        self,
        user_id: str,
        email: str,
        purchase_type: str,
        listing_id: str | None = None,
        currency: str | None = None,
    ) -> InitializePaymentResponse:
        """Record a pending purchase at catalog price and open a gateway checkout.

        If the gateway call fails the purchase stays `pending`; it is never
        marked failed here because no charge was attempted.
        """

        purchase_type = PurchaseType.parse(purchase_type)
        currency = Currency.parse(currency)
        if purchase_type.requires_listing and not listing_id:
            raise ListingRequired()
        now = self.clock()

        with self.session_factory() as db:
            user = db.get(User, user_id)
            tier = user.tier if user is not None else Tier.FREE.value
            if purchase_type.requires_listing and db.get(Listing, listing_id) is None:
                raise ListingNotFound()
            amount = self.catalog.price(purchase_type, currency, tier)
            reference = make_reference(purchase_type, user_id, now)
            purchase = Purchase(
                user_id=user_id,
                type=purchase_type.value,
                amount_minor_units=amount,
                currency=currency.value,
                listing_id=listing_id if purchase_type.requires_listing else None,
                external_reference=reference,
                status=PENDING,
            )
            db.add(purchase)
            db.flush()
            db.add(
                PurchaseTimeline(purchase_id=purchase.id, from_state=None, to_state=PENDING, reason="purchase_initialized")
            )
            db.commit()

        with bind_purchase(reference, user_id):
            purchases_initialized_total.labels(service=self.service_name, purchase_type=purchase_type.value).inc()
            logger.info(
                "purchase_initialized reference=%s type=%s amount=%s currency=%s",
                reference,
                purchase_type.value,
                amount,
                currency.value,
            )
            checkout = await self.gateway.initialize(
                email=email,
                amount=amount,
                currency=currency.value,
                reference=reference,
                metadata={
                    "userId": user_id,
                    "type": purchase_type.value,
                    "listingId": listing_id,
                    "currency": currency.value,
                },
            )
        return InitializePaymentResponse(authorization_url=checkout.authorization_url, reference=reference)

    def _load(self, reference: str) -> Purchase:
        with self.session_factory() as db:
            purchase = db.execute(
                select(Purchase).where(Purchase.external_reference == reference)
            ).scalar_one_or_none()
        if purchase is None:
            raise PurchaseNotFound()
        return purchase

    def _transition(self, db, purchase: Purchase, new_status: str, reason: str, now: datetime) -> bool:
        """Apply one validated transition as a compare-and-set.

        Returns False when another caller already moved the purchase; the
        in-memory row is only updated on success.
        """

        validate_transition(purchase.status, new_status)
        from_status = purchase.status
        current_version = purchase.state_version
        result = db.execute(
            update(Purchase)
            .where(
                Purchase.id == purchase.id,
                Purchase.status == from_status,
                Purchase.state_version == current_version,
            )
            .values(status=new_status, state_version=current_version + 1, updated_at=now)
        )
        if result.rowcount != 1:
            return False
        purchase.status = new_status
        purchase.state_version = current_version + 1
        db.add(PurchaseTimeline(purchase_id=purchase.id, from_state=from_status, to_state=new_status, reason=reason))
        return True

    @staticmethod
    def _restore_pending(purchase: Purchase) -> None:
        purchase.status = PENDING
        purchase.state_version -= 1

    def _current_status(self, purchase_id: str) -> str:
        with self.session_factory() as db:
            return db.execute(select(Purchase.status).where(Purchase.id == purchase_id)).scalar_one()

    def _lost_race(self, purchase: Purchase, source: str) -> VerifyResult:
        status = self._current_status(purchase.id)
        if status == COMPLETED:
            duplicate_verifications_skipped_total.labels(service=self.service_name, source=source).inc()
            logger.info("purchase_already_completed reference=%s source=%s", purchase.external_reference, source)
            return VerifyResult(success=True, message=ALREADY_COMPLETED_MESSAGE)
        return VerifyResult(success=False, message=VERIFICATION_FAILED_MESSAGE)

    def _fail(self, purchase: Purchase, reason: str, source: str) -> VerifyResult:
        with self.session_factory() as db:
            if not self._transition(db, purchase, FAILED, reason, self.clock()):
                db.rollback()
                return self._lost_race(purchase, source)
            db.commit()
        purchases_failed_total.labels(service=self.service_name, purchase_type=purchase.type).inc()
        logger.warning("purchase_failed reference=%s reason=%s", purchase.external_reference, reason)
        return VerifyResult(success=False, message=VERIFICATION_FAILED_MESSAGE)

    def _complete(self, purchase: Purchase, source: str) -> VerifyResult:
        now = self.clock()
        with self.session_factory() as db:
            if not self._transition(db, purchase, COMPLETED, f"gateway_confirmed:{source}", now):
                db.rollback()
                return self._lost_race(purchase, source)
            try:
                outcome = self.dispatcher.activate(db, purchase, now)
            except Exception:
                db.rollback()
                self._restore_pending(purchase)
                logger.exception("activation_crashed reference=%s", purchase.external_reference)
                raise
            if not outcome.result.success:
                # Effects and the completed transition roll back together.
                db.rollback()
                self._restore_pending(purchase)
                logger.error(
                    "activation_failed reference=%s type=%s error=%s",
                    purchase.external_reference,
                    purchase.type,
                    outcome.result.error,
                )
                return VerifyResult(success=False, message=outcome.result.message)
            enqueue_event(
                db,
                OutboxEvent,
                topic=ACTIVATION_COMPLETED_TOPIC,
                aggregate_type="purchase",
                aggregate_id=purchase.id,
                payload={
                    "purchaseId": purchase.id,
                    "reference": purchase.external_reference,
                    "userId": purchase.user_id,
                    "type": purchase.type,
                    "listingId": purchase.listing_id,
                    "message": outcome.result.message,
                    "result": outcome.result.model_dump(mode="json", by_alias=True),
                },
            )
            db.commit()

        for hook in outcome.after_commit:
            try:
                hook()
            except Exception as exc:
                logger.error("after_commit_hook_failed reference=%s error=%s", purchase.external_reference, exc)
        purchases_completed_total.labels(service=self.service_name, purchase_type=purchase.type).inc()
        logger.info("purchase_completed reference=%s type=%s source=%s", purchase.external_reference, purchase.type, source)
        return VerifyResult(success=True, message=outcome.result.message)

    async def verify(self, reference: str, source: str = "client") -> VerifyResult:
        """Reconcile one purchase against the gateway; safe to call repeatedly.

        Raises `PurchaseNotFound` for unknown references and
        `GatewayUnavailable` when the processor cannot be reached, leaving
        the purchase `pending`.
        """

        with traced("purchase.verify", {"purchase.reference": reference, "purchase.source": source}):
            purchase = self._load(reference)
            with bind_purchase(reference, purchase.user_id):
                return await self._reconcile(purchase, source)

    async def _reconcile(self, purchase: Purchase, source: str) -> VerifyResult:
        reference = purchase.external_reference
        if purchase.status == COMPLETED:
            duplicate_verifications_skipped_total.labels(service=self.service_name, source=source).inc()
            return VerifyResult(success=True, message=ALREADY_COMPLETED_MESSAGE)
        if is_terminal(purchase.status):
            return VerifyResult(success=False, message=VERIFICATION_FAILED_MESSAGE)

        verification = await self.gateway.verify(reference)
        if verification.definitively_failed:
            return self._fail(purchase, f"gateway_status:{verification.status}", source)
        if not verification.paid:
            logger.info("purchase_not_yet_paid reference=%s gateway_status=%s", reference, verification.status)
            return VerifyResult(success=False, message=NOT_CONFIRMED_MESSAGE)
        if verification.amount is not None and verification.amount < purchase.amount_minor_units:
            return self._fail(purchase, "amount_mismatch", source)
        if verification.currency and verification.currency.upper() != purchase.currency:
            return self._fail(purchase, "currency_mismatch", source)
        return self._complete(purchase, source)

    def authenticate_webhook(self, raw_body: bytes, signature: str | None) -> dict:
        if not self.gateway.verify_signature(raw_body, signature):
            raise InvalidSignature()
        try:
            event = json.loads(raw_body)
        except ValueError as exc:
            raise InvalidSignature("unparseable webhook body") from exc
        if not isinstance(event, dict):
            raise InvalidSignature("unexpected webhook body")
        return event

    async def handle_webhook(self, raw_body: bytes, signature: str | None) -> dict:
        """Authenticate and act on one gateway webhook delivery.

        Returns the acknowledgement body. Bad signatures are logged and
        acknowledged without touching state. `GatewayUnavailable` propagates
        so the HTTP layer can ask the processor to redeliver.
        """

        try:
            event = self.authenticate_webhook(raw_body, signature)
        except InvalidSignature as exc:
            webhook_events_total.labels(service=self.service_name, event="unknown", outcome="invalid_signature").inc()
            logger.warning("webhook_rejected reason=%s", exc.message)
            return {"status": "invalid signature"}

        event_type = str(event.get("event", ""))
        if event_type != CHARGE_SUCCESS_EVENT:
            webhook_events_total.labels(service=self.service_name, event=event_type, outcome="ignored").inc()
            logger.info("webhook_ignored event=%s", event_type)
            return {"status": "ok"}

        data = event.get("data") or {}
        reference = data.get("reference") if isinstance(data, dict) else None
        if not reference:
            webhook_events_total.labels(service=self.service_name, event=event_type, outcome="missing_reference").inc()
            logger.warning("webhook_missing_reference event=%s", event_type)
            return {"status": "ok"}

        try:
            result = await self.verify(str(reference), source="webhook")
        except PurchaseNotFound:
            webhook_events_total.labels(service=self.service_name, event=event_type, outcome="unknown_reference").inc()
            logger.warning("webhook_unknown_reference reference=%s", reference)
            return {"status": "ok"}
        webhook_events_total.labels(
            service=self.service_name,
            event=event_type,
            outcome="processed" if result.success else "not_completed",
        ).inc()
        return {"status": "ok"}
