"""Webhook reconciliation: advance order payment state from gateway callbacks.

Deliveries are at-least-once and unordered. Every delivery is answered with
200 once it parses; the status lattice in the order store keeps repeated or
late events from moving an order backwards, and the delivery log skips
repeated event ids and replays misses once the checkout path attaches the
charge id.
"""

from datetime import datetime, timezone

from sqlalchemy import or_, select, update

from paybridge.common.errors import InvalidTransition, ReconciliationMiss
from paybridge.common.logging import charge_id_ctx, logger, order_id_ctx
from paybridge.common.metrics import (
    duplicate_events_skipped_total,
    rejected_transitions_total,
    webhook_events_total,
)
from paybridge.common.state_machine import PaymentStatus
from paybridge.services.orders.models import Order
from paybridge.services.orders.store import OrderPaymentStore
from paybridge.services.webhooks.models import WebhookDelivery
from paybridge.services.webhooks.schemas import ReconcileOutcome, WebhookEvent, WebhookEventType

EVENT_TARGETS: dict[WebhookEventType, PaymentStatus] = {
    WebhookEventType.CHARGE_PAID: PaymentStatus.PAID,
    WebhookEventType.ORDER_PAID: PaymentStatus.PAID,
    WebhookEventType.CHARGE_PAYMENT_FAILED: PaymentStatus.FAILED,
    WebhookEventType.CHARGE_REFUNDED: PaymentStatus.REFUNDED,
    WebhookEventType.CHARGE_CANCELED: PaymentStatus.CANCELED,
}

# A repeated event id with one of these outcomes is not processed again.
FINAL_OUTCOMES = {
    ReconcileOutcome.APPLIED.value,
    ReconcileOutcome.UNCHANGED.value,
    ReconcileOutcome.IGNORED.value,
    ReconcileOutcome.REJECTED_TRANSITION.value,
}


class WebhookReconciler:
    """Maps gateway events onto order payment status through the order store."""

    def __init__(self, store: OrderPaymentStore, session_factory, service_name: str = "webhooks") -> None:
        self.store = store
        self.session_factory = session_factory
        self.service_name = service_name

    def reconcile(self, event: WebhookEvent) -> ReconcileOutcome:
        """Apply one delivery. Never raises: failures are logged and reported as `error`."""

        charge_token = charge_id_ctx.set(event.reference_id)
        try:
            try:
                if event.event_id and self._already_processed(event.event_id):
                    logger.info("duplicate webhook skipped event_id=%s type=%s", event.event_id, event.event_type)
                    duplicate_events_skipped_total.labels(service=self.service_name).inc()
                    outcome = ReconcileOutcome.DUPLICATE
                else:
                    outcome = self._apply(event)
            except ReconciliationMiss as exc:
                logger.info("webhook_reconciliation_miss type=%s reference_id=%s", event.event_type, exc.reference_id)
                outcome = ReconcileOutcome.MISS
            except Exception as exc:
                logger.exception("webhook_processing_failed type=%s error=%s", event.event_type, exc)
                outcome = ReconcileOutcome.ERROR

            try:
                self._record_delivery(event, outcome)
            except Exception as exc:
                logger.exception("webhook_delivery_log_failed type=%s error=%s", event.event_type, exc)
            else:
                if outcome is ReconcileOutcome.MISS:
                    outcome = self._retry_after_miss(event)

            webhook_events_total.labels(
                service=self.service_name,
                event_type=event.event_type,
                outcome=outcome.value,
            ).inc()
            return outcome
        finally:
            charge_id_ctx.reset(charge_token)

    def _retry_after_miss(self, event: WebhookEvent) -> ReconcileOutcome:
        # The checkout may have attached the charge id between our lookup and the
        # delivery log write, in which case its own replay ran before this row existed.
        try:
            applied = self.replay_deferred(event.reference_id, event.gateway_order_id)
        except Exception as exc:
            logger.exception("webhook_replay_after_miss_failed type=%s error=%s", event.event_type, exc)
            return ReconcileOutcome.MISS
        return ReconcileOutcome.APPLIED if applied else ReconcileOutcome.MISS

    def replay_deferred(self, charge_id: str, gateway_order_id: str | None = None) -> int:
        """Re-apply deliveries that missed because they beat the checkout's own write.

        Returns how many replayed deliveries changed the order.
        """

        references = [charge_id] + ([gateway_order_id] if gateway_order_id else [])
        with self.session_factory() as db:
            deferred = list(
                db.execute(
                    select(WebhookDelivery)
                    .where(
                        WebhookDelivery.outcome == ReconcileOutcome.MISS.value,
                        WebhookDelivery.replayed_at.is_(None),
                        WebhookDelivery.reference_id.in_(references),
                    )
                    .order_by(WebhookDelivery.received_at)
                ).scalars()
            )

        applied = 0
        for delivery in deferred:
            event = WebhookEvent.from_raw(
                delivery.event_type,
                delivery.reference_id,
                delivery.gateway_event_id,
                delivery.payload or {},
            )
            try:
                outcome = self._apply(event)
            except ReconciliationMiss:
                continue
            if outcome is ReconcileOutcome.APPLIED:
                applied += 1
            with self.session_factory() as db:
                db.execute(
                    update(WebhookDelivery)
                    .where(WebhookDelivery.delivery_id == delivery.delivery_id)
                    .values(replayed_at=datetime.now(timezone.utc), replay_outcome=outcome.value)
                )
                db.commit()
            logger.info(
                "deferred_webhook_replayed type=%s reference_id=%s outcome=%s",
                event.event_type,
                event.reference_id,
                outcome.value,
            )
        return applied

    def _apply(self, event: WebhookEvent) -> ReconcileOutcome:
        event_type = WebhookEventType.parse(event.event_type)
        if event_type is None:
            # Deliberately acknowledged without effect.
            logger.info("webhook_ignored type=%s", event.event_type)
            return ReconcileOutcome.IGNORED
        target = EVENT_TARGETS[event_type]

        order = self._lookup(event_type, event.reference_id)
        if order is None:
            return self._link_by_order_code(event, event_type, target)

        order_token = order_id_ctx.set(order.order_id)
        try:
            changed = self.store.set_payment_status(
                order.order_id,
                target.value,
                reason=f"webhook:{event_type.value}",
                event_id=event.event_id,
            )
        except InvalidTransition as exc:
            return self._rejected(order.order_id, exc)
        finally:
            order_id_ctx.reset(order_token)
        return ReconcileOutcome.APPLIED if changed else ReconcileOutcome.UNCHANGED

    def _link_by_order_code(
        self, event: WebhookEvent, event_type: WebhookEventType, target: PaymentStatus
    ) -> ReconcileOutcome:
        """Attach a charge whose creation response never reached checkout.

        The gateway echoes our order id as the order `code`; the order must
        still be waiting for its first charge id.
        """

        charge_id, gateway_order_id = self._charge_reference(event, event_type)
        order = self.store.get_order(event.order_code) if event.order_code and charge_id else None
        if order is None or order.payment_id is not None:
            raise ReconciliationMiss(event.reference_id)

        order_token = order_id_ctx.set(order.order_id)
        try:
            self.store.attach_payment_id(
                order.order_id,
                charge_id,
                target.value,
                gateway_order_id=gateway_order_id,
                reason=f"webhook:{event_type.value}",
            )
            self.store.resolve_unconfirmed_attempts(order.order_id, "RECOVERED", charge_id)
            logger.info(
                "charge_linked_by_order_code order_id=%s charge_id=%s status=%s",
                order.order_id,
                charge_id,
                target.value,
            )
        except InvalidTransition as exc:
            return self._rejected(order.order_id, exc)
        finally:
            order_id_ctx.reset(order_token)
        return ReconcileOutcome.APPLIED

    @staticmethod
    def _charge_reference(event: WebhookEvent, event_type: WebhookEventType) -> tuple[str | None, str | None]:
        if not event_type.matches_gateway_order:
            return event.reference_id, event.gateway_order_id
        # order.* payloads carry the order itself; the charge sits in `charges`.
        charges = (event.raw_payload.get("data") or {}).get("charges") or []
        charge_id = charges[0].get("id") if charges and isinstance(charges[0], dict) else None
        return (str(charge_id).strip() or None) if charge_id else None, event.reference_id

    def _rejected(self, order_id: str, exc: InvalidTransition) -> ReconcileOutcome:
        logger.warning("webhook_transition_rejected order_id=%s from=%s to=%s", order_id, exc.current, exc.new)
        rejected_transitions_total.labels(service=self.service_name, from_status=exc.current, to_status=exc.new).inc()
        return ReconcileOutcome.REJECTED_TRANSITION

    def _lookup(self, event_type: WebhookEventType, reference_id: str) -> Order | None:
        if event_type.matches_gateway_order:
            return self.store.get_by_gateway_order_id(reference_id)
        return self.store.get_by_charge_id(reference_id)

    def _already_processed(self, event_id: str) -> bool:
        with self.session_factory() as db:
            existing = db.execute(
                select(WebhookDelivery.delivery_id)
                .where(
                    WebhookDelivery.gateway_event_id == event_id,
                    or_(
                        WebhookDelivery.outcome.in_(FINAL_OUTCOMES),
                        WebhookDelivery.replay_outcome.in_(FINAL_OUTCOMES),
                    ),
                )
                .limit(1)
            ).scalar_one_or_none()
        return existing is not None

    def _record_delivery(self, event: WebhookEvent, outcome: ReconcileOutcome) -> None:
        with self.session_factory() as db:
            db.add(
                WebhookDelivery(
                    gateway_event_id=event.event_id,
                    event_type=event.event_type,
                    reference_id=event.reference_id,
                    outcome=outcome.value,
                    payload=event.raw_payload,
                )
            )
            db.commit()
