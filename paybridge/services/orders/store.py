"""Order Payment Store: the single chokepoint for order payment state.

Both writers (checkout orchestrator and webhook reconciler) change status only
through `set_payment_status` / `attach_payment_id` / `reopen_for_retry`, which
validate the transition against the status lattice and write one row with an
optimistic `(order_id, payment_status, state_version)` guard.
"""

from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import exists, select, update

from paybridge.common.errors import ConcurrentUpdateError, InvalidTransition, OrderNotFound, OrderNotPayable
from paybridge.common.logging import logger
from paybridge.common.money import minor_units
from paybridge.common.state_machine import (
    PAYABLE_STATUSES,
    UNSETTLED_STATUSES,
    PaymentStatus,
    is_noop,
    validate_transition,
)
from paybridge.services.orders.models import ChargeAttempt, Order, OrderItem, PaymentTimeline

# Charge attempt result for a charge call whose outcome the gateway never confirmed.
UNCONFIRMED_RESULT = "UNKNOWN"


class OrderPaymentStore:
    """Keyed access to order payment state by order id and gateway charge id."""

    def __init__(self, session_factory, max_write_attempts: int = 3) -> None:
        self.session_factory = session_factory
        self.max_write_attempts = max_write_attempts

    def create_order(
        self,
        customer_id: str,
        items: list[dict],
        content_cents: int = 0,
        content_word_count: int = 0,
        currency: str = "BRL",
        order_id: str | None = None,
    ) -> Order:
        """Insert a `pending` order; the total is derived from its lines plus content."""

        total = sum(minor_units(item["amount_cents"]) * item.get("quantity", 1) for item in items)
        total += minor_units(content_cents)
        with self.session_factory() as db:
            order = Order(
                customer_id=customer_id,
                currency=currency.upper(),
                total_cents=total,
                content_cents=content_cents,
                content_word_count=content_word_count,
                payment_status=PaymentStatus.PENDING.value,
                state_version=0,
            )
            if order_id is not None:
                order.order_id = order_id
            db.add(order)
            db.flush()
            for position, item in enumerate(items):
                db.add(
                    OrderItem(
                        order_id=order.order_id,
                        position=position,
                        code=item.get("code") or f"ITEM_{position + 1}",
                        description=item.get("description") or f"Item {position + 1}",
                        amount_cents=item["amount_cents"],
                        quantity=item.get("quantity", 1),
                    )
                )
            db.add(
                PaymentTimeline(
                    order_id=order.order_id,
                    from_state=None,
                    to_state=PaymentStatus.PENDING.value,
                    reason="order_created",
                )
            )
            db.commit()
            order_id = order.order_id
        return self.get_order(order_id)

    def get_order(self, order_id: str) -> Order | None:
        with self.session_factory() as db:
            return db.get(Order, order_id)

    def get_by_charge_id(self, charge_id: str) -> Order | None:
        with self.session_factory() as db:
            return db.execute(select(Order).where(Order.payment_id == charge_id)).scalar_one_or_none()

    def get_by_gateway_order_id(self, gateway_order_id: str) -> Order | None:
        with self.session_factory() as db:
            return db.execute(
                select(Order).where(Order.gateway_order_id == gateway_order_id)
            ).scalar_one_or_none()

    def timeline(self, order_id: str) -> list[PaymentTimeline]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(PaymentTimeline)
                    .where(PaymentTimeline.order_id == order_id)
                    .order_by(PaymentTimeline.created_at)
                ).scalars()
            )

    def list_unsettled(self, limit: int = 100) -> list[Order]:
        """Orders holding a charge id whose final status is still unknown."""

        with self.session_factory() as db:
            return list(
                db.execute(
                    select(Order)
                    .where(
                        Order.payment_status.in_([status.value for status in UNSETTLED_STATUSES]),
                        Order.payment_id.is_not(None),
                    )
                    .order_by(Order.updated_at)
                    .limit(limit)
                ).scalars()
            )

    def list_unconfirmed(self, limit: int = 100) -> list[Order]:
        """Pending orders without a charge id whose last charge call ended with an unknown outcome."""

        with self.session_factory() as db:
            return list(
                db.execute(
                    select(Order)
                    .where(
                        Order.payment_status == PaymentStatus.PENDING.value,
                        Order.payment_id.is_(None),
                        exists().where(
                            ChargeAttempt.order_id == Order.order_id,
                            ChargeAttempt.result == UNCONFIRMED_RESULT,
                        ),
                    )
                    .order_by(Order.updated_at)
                    .limit(limit)
                ).scalars()
            )

    def set_payment_status(
        self, order_id: str, status: str, reason: str, event_id: str | None = None
    ) -> bool:
        """Move an order to `status`; returns False when it already was there."""

        return self._write(order_id, PaymentStatus(status), reason, event_id)

    def attach_payment_id(
        self,
        order_id: str,
        charge_id: str,
        status: str,
        gateway_order_id: str | None = None,
        payment_method: str | None = None,
        reason: str = "charge_created",
    ) -> bool:
        """Record the gateway charge for a fresh attempt together with its first status."""

        def precondition(order: Order) -> None:
            if order.payment_id is not None and order.payment_id != charge_id:
                raise OrderNotPayable(f"order {order_id} already holds charge {order.payment_id}")

        values = {"payment_id": charge_id, "gateway_order_id": gateway_order_id}
        if payment_method is not None:
            values["payment_method"] = payment_method
        try:
            return self._write(order_id, PaymentStatus(status), reason, None, values, precondition)
        except InvalidTransition:
            order = self.get_order(order_id)
            if order is None or order.payment_id != charge_id:
                raise
        # A webhook already linked this charge and moved it further along; keep its status.
        missing = {key: value for key, value in values.items() if value is not None and getattr(order, key) is None}
        logger.info(
            "charge_already_attached order_id=%s charge_id=%s status=%s", order_id, charge_id, order.payment_status
        )
        if not missing:
            return False
        return self._write(order_id, PaymentStatus(order.payment_status), reason, None, missing)

    def reopen_for_retry(self, order_id: str) -> Order:
        """Return a failed/canceled order to `pending` and drop its old charge id."""

        def precondition(order: Order) -> None:
            if PaymentStatus(order.payment_status) not in PAYABLE_STATUSES:
                raise OrderNotPayable(f"order {order_id} is {order.payment_status}")
            if order.payment_status == PaymentStatus.PENDING.value and order.payment_id is not None:
                raise OrderNotPayable(f"order {order_id} already holds charge {order.payment_id}")

        self._write(
            order_id,
            PaymentStatus.PENDING,
            "checkout_retry",
            None,
            {"payment_id": None, "gateway_order_id": None},
            precondition,
        )
        return self.get_order(order_id)

    def record_charge_attempt(
        self,
        order_id: str,
        payment_method: str,
        result: str,
        gateway_order_id: str | None = None,
        gateway_charge_id: str | None = None,
        error_code: str | None = None,
        latency_ms: int = 0,
        raw_response: dict | None = None,
    ) -> None:
        with self.session_factory() as db:
            db.add(
                ChargeAttempt(
                    order_id=order_id,
                    payment_method=payment_method,
                    result=result,
                    gateway_order_id=gateway_order_id,
                    gateway_charge_id=gateway_charge_id,
                    error_code=error_code,
                    latency_ms=latency_ms,
                    raw_response=raw_response,
                )
            )
            db.commit()

    def unconfirmed_attempt(self, order_id: str) -> ChargeAttempt | None:
        with self.session_factory() as db:
            return db.execute(
                select(ChargeAttempt)
                .where(ChargeAttempt.order_id == order_id, ChargeAttempt.result == UNCONFIRMED_RESULT)
                .limit(1)
            ).scalars().first()

    def resolve_unconfirmed_attempts(self, order_id: str, result: str, gateway_charge_id: str | None = None) -> int:
        """Close out unknown-outcome attempts once the gateway has told us what happened."""

        with self.session_factory() as db:
            updated = db.execute(
                update(ChargeAttempt)
                .where(ChargeAttempt.order_id == order_id, ChargeAttempt.result == UNCONFIRMED_RESULT)
                .values(result=result, gateway_charge_id=gateway_charge_id)
            ).rowcount
            db.commit()
        return updated

    def charge_attempts(self, order_id: str) -> list[ChargeAttempt]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(ChargeAttempt)
                    .where(ChargeAttempt.order_id == order_id)
                    .order_by(ChargeAttempt.created_at)
                ).scalars()
            )

    def _write(
        self,
        order_id: str,
        new_status: PaymentStatus,
        reason: str,
        event_id: str | None,
        values: dict | None = None,
        precondition: Callable[[Order], None] | None = None,
    ) -> bool:
        """Apply one validated status write with optimistic concurrency.

        A lost race re-reads the row and re-validates, so concurrent duplicate
        deliveries converge on the same final state.
        """

        values = values or {}
        for attempt in range(1, self.max_write_attempts + 1):
            with self.session_factory() as db:
                order = db.get(Order, order_id)
                if order is None:
                    raise OrderNotFound(order_id)
                if precondition is not None:
                    precondition(order)
                current = order.payment_status
                status_changes = not is_noop(current, new_status.value)
                if status_changes:
                    validate_transition(current, new_status.value)
                elif not values or all(getattr(order, key) == value for key, value in values.items()):
                    return False

                result = db.execute(
                    update(Order)
                    .where(
                        Order.order_id == order_id,
                        Order.payment_status == current,
                        Order.state_version == order.state_version,
                    )
                    .values(
                        payment_status=new_status.value,
                        state_version=order.state_version + 1,
                        updated_at=datetime.now(timezone.utc),
                        **values,
                    )
                )
                if result.rowcount != 1:
                    db.rollback()
                    logger.warning(
                        "order_write_conflict order_id=%s attempt=%s target=%s", order_id, attempt, new_status.value
                    )
                    continue
                if status_changes:
                    db.add(
                        PaymentTimeline(
                            order_id=order_id,
                            from_state=current,
                            to_state=new_status.value,
                            reason=reason,
                            event_id=event_id,
                        )
                    )
                db.commit()
                logger.info(
                    "order_payment_status order_id=%s from=%s to=%s reason=%s",
                    order_id,
                    current,
                    new_status.value,
                    reason,
                )
                return True
        raise ConcurrentUpdateError(
            f"optimistic concurrency conflict for order {order_id} after {self.max_write_attempts} attempts"
        )
