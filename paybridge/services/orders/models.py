"""Order store database models.

This DB is the source of truth for order payment state, the charge attempts
that produced it and the timeline of every status change.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from paybridge.common.db import Base, JSONPayload


class Order(Base):
    """Current payment state of one order (owned by the checkout flow)."""

    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    customer_id: Mapped[str] = mapped_column(String, index=True)
    currency: Mapped[str] = mapped_column(String(3), default="BRL")
    total_cents: Mapped[int] = mapped_column(Integer)
    content_cents: Mapped[int] = mapped_column(Integer, default=0)
    content_word_count: Mapped[int] = mapped_column(Integer, default=0)
    payment_method: Mapped[str | None] = mapped_column(String, nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True, unique=True)
    gateway_order_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True, unique=True)
    payment_status: Mapped[str] = mapped_column(String, index=True, default="pending")
    state_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order", lazy="selectin", order_by="OrderItem.position"
    )


class OrderItem(Base):
    """One purchased line; amounts are per unit, in minor units."""

    __tablename__ = "order_items"

    item_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.order_id"), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)
    code: Mapped[str] = mapped_column(String)
    description: Mapped[str] = mapped_column(String)
    amount_cents: Mapped[int] = mapped_column(Integer)
    quantity: Mapped[int] = mapped_column(Integer, default=1)

    order: Mapped[Order] = relationship(back_populates="items")


class PaymentTimeline(Base):
    """Immutable audit trail of every payment status change."""

    __tablename__ = "payment_timeline"

    timeline_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.order_id"), index=True)
    from_state: Mapped[str | None] = mapped_column(String, nullable=True)
    to_state: Mapped[str] = mapped_column(String)
    reason: Mapped[str] = mapped_column(String)
    event_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ChargeAttempt(Base):
    """Gateway outcome of one charge call, stored verbatim for audit."""

    __tablename__ = "charge_attempts"

    attempt_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.order_id"), index=True)
    payment_method: Mapped[str] = mapped_column(String)
    result: Mapped[str] = mapped_column(String)
    gateway_order_id: Mapped[str | None] = mapped_column(String, nullable=True)
    gateway_charge_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    error_code: Mapped[str | None] = mapped_column(String, nullable=True)
    latency_ms: Mapped[int] = mapped_column(Integer, default=0)
    raw_response: Mapped[dict | None] = mapped_column(JSONPayload, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
