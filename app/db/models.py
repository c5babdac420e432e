import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Integer,
    JSON,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.catalog import PRODUCT_ID, Tier
from app.db.base import Base


class OrderStatus(enum.StrEnum):
    CREATED = "created"
    PAID = "paid"


class CheckoutSessionStatus(enum.StrEnum):
    PENDING = "pending"
    PAID = "paid"


class WebhookSource(enum.StrEnum):
    STRIPE = "stripe"
    CAL = "cal"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    __tablename__ = "orders"

    order_uuid: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, values_callable=_enum_values, name="orderstatus"),
        default=OrderStatus.CREATED,
        index=True,
    )
    product_id: Mapped[str] = mapped_column(String(64), default=PRODUCT_ID)
    tier_id: Mapped[Tier | None] = mapped_column(
        Enum(Tier, values_callable=_enum_values, name="tier")
    )
    addon_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    customer_email: Mapped[str | None] = mapped_column(String(320))
    stripe_session_id: Mapped[str | None] = mapped_column(String(255), index=True)
    email_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class CheckoutSession(Base):
    __tablename__ = "checkout_sessions"

    session_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    order_id: Mapped[str | None] = mapped_column(String(255), index=True)
    order_uuid: Mapped[str | None] = mapped_column(String(36), index=True)
    tier_id: Mapped[Tier] = mapped_column(Enum(Tier, values_callable=_enum_values, name="tier"))
    addon_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    total: Mapped[float] = mapped_column(Numeric(10, 2))
    deposit: Mapped[float] = mapped_column(Numeric(10, 2))
    remaining: Mapped[float] = mapped_column(Numeric(10, 2))
    currency: Mapped[str] = mapped_column(String(3), default="usd")
    customer_email: Mapped[str | None] = mapped_column(String(320))
    status: Mapped[CheckoutSessionStatus] = mapped_column(
        Enum(CheckoutSessionStatus, values_callable=_enum_values, name="checkoutsessionstatus"),
        default=CheckoutSessionStatus.PENDING,
    )
    live: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class OnboardingSubmission(Base):
    __tablename__ = "onboarding_submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    config_json: Mapped[dict] = mapped_column(JSON, default=dict)
    asset_links: Mapped[list[str]] = mapped_column(JSON, default=list)
    stripped_keys: Mapped[list[str]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class ProcessedWebhookEvent(Base):
    __tablename__ = "processed_webhook_events"
    __table_args__ = (UniqueConstraint("source", "event_key", name="uq_processed_webhook_events_source_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[WebhookSource] = mapped_column(
        Enum(WebhookSource, values_callable=_enum_values, name="webhooksource")
    )
    event_key: Mapped[str] = mapped_column(String(255))
    event_type: Mapped[str | None] = mapped_column(String(128))
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class EmailDispatch(Base):
    __tablename__ = "email_dispatches"

    order_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
