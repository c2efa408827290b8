from datetime import date, datetime, timezone
from enum import Enum as StrEnumBase
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base


def utcnow() -> datetime:
    # Stored naive in UTC so SQLite and PostgreSQL round-trip the same values.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class OrderType(str, StrEnumBase):
    CHRISTMAS = "CHRISTMAS"
    REWARD = "REWARD"
    SPECIAL_OCCASION = "SPECIAL_OCCASION"


class GiftOrderStatus(str, StrEnumBase):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    ORDERED = "ORDERED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class ApprovedBy(str, StrEnumBase):
    SYSTEM = "SYSTEM"
    PARENT = "PARENT"


class SpecialRequestKind(str, StrEnumBase):
    EARLY_GIFT = "early_gift"
    FRIEND_GIFT = "friend_gift"


class SpecialRequestStatus(str, StrEnumBase):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class LedgerStatus(str, StrEnumBase):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class WalletEntryType(str, StrEnumBase):
    TOP_UP = "TOP_UP"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"


class NeighborEntryType(str, StrEnumBase):
    DONATION = "DONATION"
    REFUND = "REFUND"
    ADJUSTMENT = "ADJUSTMENT"


class PointsReason(str, StrEnumBase):
    MAGIC_VOTE = "MAGIC_VOTE"
    GIFT_ORDER = "GIFT_ORDER"
    GIFT_REFUND = "GIFT_REFUND"
    SPECIAL_REQUEST = "SPECIAL_REQUEST"
    YEARLY_RESET = "YEARLY_RESET"


child_gift_list = Table(
    "child_gift_list",
    Base.metadata,
    Column("child_id", ForeignKey("children.id", ondelete="CASCADE"), primary_key=True),
    Column("catalog_item_id", ForeignKey("catalog_items.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    parent: Mapped["Parent | None"] = relationship(back_populates="user", uselist=False)


class Parent(Base):
    __tablename__ = "parents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(320), index=True, nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)

    # Materialized fold over SUCCEEDED wallet ledger entries.
    wallet_balance_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    stripe_default_payment_method_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    has_payment_method: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_method_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)

    # Christmas settings
    allow_early_gifts: Mapped[bool] = mapped_column(Boolean, default=False)
    allow_friend_gifts: Mapped[bool] = mapped_column(Boolean, default=True)
    max_friend_gift_value: Mapped[float] = mapped_column(Numeric(10, 2), default=25)
    monthly_budget_goal: Mapped[int] = mapped_column(Integer, default=200)
    reminder_emails: Mapped[bool] = mapped_column(Boolean, default=True)
    shipping_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    setup_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    lists_finalized: Mapped[bool] = mapped_column(Boolean, default=False)
    lists_finalized_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    total_gift_cost_cents: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped[User] = relationship(back_populates="parent")
    children: Mapped[list["Child"]] = relationship(
        back_populates="parent",
        cascade="all, delete-orphan",
        order_by="Child.id",
    )
    wallet_ledger: Mapped[list["WalletLedgerEntry"]] = relationship(
        back_populates="parent",
        cascade="all, delete-orphan",
        order_by="WalletLedgerEntry.id",
    )
    approval_settings: Mapped["GiftApprovalSettings | None"] = relationship(
        back_populates="parent",
        uselist=False,
        cascade="all, delete-orphan",
    )


class WalletLedgerEntry(Base):
    __tablename__ = "wallet_ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    parent_id: Mapped[int] = mapped_column(ForeignKey("parents.id", ondelete="CASCADE"), index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Signed: debits are negative.
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd")
    status: Mapped[str] = mapped_column(String(20), default=LedgerStatus.PENDING.value, index=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    stripe_checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    parent: Mapped[Parent] = relationship(back_populates="wallet_ledger")


class Child(Base):
    __tablename__ = "children"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    parent_id: Mapped[int] = mapped_column(ForeignKey("parents.id", ondelete="CASCADE"), index=True)
    display_name: Mapped[str] = mapped_column(String(120), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    percent_allocation: Mapped[int] = mapped_column(Integer, default=0)
    score365: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Materialized fold over SUCCEEDED neighbor ledger entries.
    neighbor_balance_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    donations_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    share_slug: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, default=lambda: uuid4().hex[:12]
    )
    donor_count: Mapped[int] = mapped_column(Integer, default=0)
    donor_total_cents: Mapped[int] = mapped_column(Integer, default=0)
    gift_list_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    gift_list_locked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    parent: Mapped[Parent] = relationship(back_populates="children")
    gift_list: Mapped[list["CatalogItem"]] = relationship(secondary=child_gift_list, order_by="CatalogItem.id")
    neighbor_ledger: Mapped[list["NeighborLedgerEntry"]] = relationship(
        back_populates="child",
        cascade="all, delete-orphan",
        order_by="NeighborLedgerEntry.id",
    )
    special_requests: Mapped[list["SpecialGiftRequest"]] = relationship(
        back_populates="child",
        cascade="all, delete-orphan",
        order_by="SpecialGiftRequest.id",
    )

    __table_args__ = (
        CheckConstraint("score365 >= 0 AND score365 <= 365", name="ck_children_score365_range"),
        CheckConstraint("neighbor_balance_cents >= 0", name="ck_children_neighbor_balance_non_negative"),
    )

    @property
    def early_gift_requests(self) -> list["SpecialGiftRequest"]:
        return [r for r in self.special_requests if r.kind == SpecialRequestKind.EARLY_GIFT.value]

    @property
    def friend_gift_requests(self) -> list["SpecialGiftRequest"]:
        return [r for r in self.special_requests if r.kind == SpecialRequestKind.FRIEND_GIFT.value]


class NeighborLedgerEntry(Base):
    __tablename__ = "neighbor_ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    child_id: Mapped[int] = mapped_column(ForeignKey("children.id", ondelete="CASCADE"), index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd")
    status: Mapped[str] = mapped_column(String(20), default=LedgerStatus.PENDING.value, index=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    stripe_checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    from_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    from_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    child: Mapped[Child] = relationship(back_populates="neighbor_ledger")


class CatalogItem(Base):
    __tablename__ = "catalog_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    brand: Mapped[str | None] = mapped_column(String(120), nullable=True)
    price: Mapped[float | None] = mapped_column(Numeric(10, 2), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    product_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    retailer: Mapped[str | None] = mapped_column(String(120), nullable=True)
    category: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("price IS NULL OR price >= 0", name="ck_catalog_items_price_non_negative"),
    )


class GiftOrder(Base):
    __tablename__ = "gift_orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    child_id: Mapped[int] = mapped_column(ForeignKey("children.id", ondelete="CASCADE"), index=True)
    parent_id: Mapped[int] = mapped_column(ForeignKey("parents.id", ondelete="CASCADE"), index=True)
    catalog_item_id: Mapped[int | None] = mapped_column(
        ForeignKey("catalog_items.id", ondelete="SET NULL"), nullable=True
    )

    order_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=GiftOrderStatus.PENDING_APPROVAL.value, nullable=False, index=True
    )
    magic_points_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    # How an approved order was paid for, so cancellations refund exactly.
    points_from_score: Mapped[int] = mapped_column(Integer, default=0)
    points_from_neighbor_cents: Mapped[int] = mapped_column(Integer, default=0)

    gift_title: Mapped[str] = mapped_column(String(255), nullable=False)
    gift_brand: Mapped[str | None] = mapped_column(String(120), nullable=True)
    gift_price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    gift_image_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    retailer_product_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    retailer: Mapped[str | None] = mapped_column(String(120), nullable=True)

    recipient_name: Mapped[str] = mapped_column(String(120), nullable=False)
    shipping_address: Mapped[dict] = mapped_column(JSON, nullable=False)

    external_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    estimated_delivery_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    actual_delivery_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(10), nullable=True)
    parent_approval_note: Mapped[str | None] = mapped_column(String(500), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # Bumped on every status change.
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    christmas_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_christmas_eligible: Mapped[bool] = mapped_column(Boolean, default=False)
    behavior_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    child: Mapped[Child] = relationship()
    catalog_item: Mapped[CatalogItem | None] = relationship()

    __table_args__ = (
        CheckConstraint("magic_points_cost >= 0", name="ck_gift_orders_cost_non_negative"),
        Index("ix_gift_orders_status_type", "status", "order_type"),
        Index("ix_gift_orders_child_type_created", "child_id", "order_type", "created_at"),
        Index("ix_gift_orders_christmas", "christmas_year", "is_christmas_eligible"),
    )


class GiftApprovalSettings(Base):
    __tablename__ = "gift_approval_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    parent_id: Mapped[int] = mapped_column(ForeignKey("parents.id", ondelete="CASCADE"), unique=True)
    max_reward_gifts_per_year: Mapped[int] = mapped_column(Integer, default=2)
    max_reward_gift_price: Mapped[float] = mapped_column(Numeric(10, 2), default=50)
    require_approval_over: Mapped[float] = mapped_column(Numeric(10, 2), default=25)
    auto_approve_rewards: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_approve_christmas: Mapped[bool] = mapped_column(Boolean, default=True)
    email_on_gift_request: Mapped[bool] = mapped_column(Boolean, default=True)
    email_on_gift_shipped: Mapped[bool] = mapped_column(Boolean, default=True)
    email_on_gift_delivered: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    parent: Mapped[Parent] = relationship(back_populates="approval_settings")

    __table_args__ = (
        CheckConstraint(
            "max_reward_gifts_per_year >= 0 AND max_reward_gifts_per_year <= 5",
            name="ck_gift_approval_settings_max_rewards_range",
        ),
    )


class SpecialGiftRequest(Base):
    """Early gift or friend gift asked for by a child, answered by the parent."""

    __tablename__ = "special_gift_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    child_id: Mapped[int] = mapped_column(ForeignKey("children.id", ondelete="CASCADE"), index=True)
    catalog_item_id: Mapped[int | None] = mapped_column(
        ForeignKey("catalog_items.id", ondelete="SET NULL"), nullable=True
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=SpecialRequestStatus.PENDING.value, index=True)

    gift_title: Mapped[str] = mapped_column(String(255), nullable=False)
    gift_price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    gift_image_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    requested_points: Mapped[int] = mapped_column(Integer, nullable=False)
    points_from_score: Mapped[int] = mapped_column(Integer, default=0)
    points_from_neighbor_cents: Mapped[int] = mapped_column(Integer, default=0)

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    friend_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    friend_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    message: Mapped[str | None] = mapped_column(String(200), nullable=True)

    parent_response: Mapped[str | None] = mapped_column(String(300), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    child: Mapped[Child] = relationship(back_populates="special_requests")

    __table_args__ = (
        CheckConstraint("requested_points > 0", name="ck_special_gift_requests_points_positive"),
    )


class MagicVote(Base):
    """One parent vote per child per calendar day."""

    __tablename__ = "magic_votes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    parent_id: Mapped[int] = mapped_column(ForeignKey("parents.id", ondelete="CASCADE"), index=True)
    child_id: Mapped[int] = mapped_column(ForeignKey("children.id", ondelete="CASCADE"), index=True)
    vote_date: Mapped[date] = mapped_column(Date, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("parent_id", "child_id", "vote_date", name="uq_magic_votes_daily"),
    )


class PointsTransaction(Base):
    """Audit trail of every change to a child's magic points."""

    __tablename__ = "points_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    child_id: Mapped[int] = mapped_column(ForeignKey("children.id", ondelete="CASCADE"), index=True)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    score_delta: Mapped[int] = mapped_column(Integer, default=0)
    neighbor_cents_delta: Mapped[int] = mapped_column(Integer, default=0)
    score_after: Mapped[int] = mapped_column(Integer, nullable=False)
    neighbor_cents_after: Mapped[int] = mapped_column(Integer, nullable=False)
    gift_order_id: Mapped[int | None] = mapped_column(
        ForeignKey("gift_orders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    special_request_id: Mapped[int | None] = mapped_column(
        ForeignKey("special_gift_requests.id", ondelete="SET NULL"), nullable=True
    )
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
