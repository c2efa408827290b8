"""Gift requests, parent approvals and fulfillment updates.

Points move only when an order enters APPROVED (system auto-approval or a
parent decision) and move back when an APPROVED order is cancelled or fails.
Services flush but never commit; the route commits once per request.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.config import settings
from app.core.errors import Forbidden, InsufficientPoints, InvalidState, LimitExceeded, NotFound, WindowClosed
from app.models.models import (
    ApprovedBy,
    CatalogItem,
    Child,
    GiftApprovalSettings,
    GiftOrder,
    GiftOrderStatus,
    OrderType,
    Parent,
    PointsReason,
)
from app.services import points
from app.services.order_state import COUNTED_REWARD_STATUSES, transition_order
from app.services.policy import (
    available_points,
    calendar_year_bounds,
    get_christmas_window,
    is_christmas_window,
    magic_points_cost,
)


logger = logging.getLogger("santa.gifts")

DEMO_SHIPPING_ADDRESS = {
    "street": "123 North Pole Way",
    "city": "Christmas Town",
    "state": "North Pole",
    "zip_code": "00001",
    "country": "US",
}

SETTINGS_FIELDS = (
    "max_reward_gifts_per_year",
    "max_reward_gift_price",
    "require_approval_over",
    "auto_approve_rewards",
    "auto_approve_christmas",
    "email_on_gift_request",
    "email_on_gift_shipped",
    "email_on_gift_delivered",
)


@dataclass(frozen=True)
class GiftRequestResult:
    order: GiftOrder
    points_deducted: int
    remaining_points: int
    requires_approval: bool
    message: str


@dataclass(frozen=True)
class ApprovalResult:
    order: GiftOrder
    points_deducted: int
    remaining_points: int
    message: str


@dataclass(frozen=True)
class RewardGiftStats:
    used_reward_gifts: int
    max_reward_gifts: int
    remaining_reward_gifts: int
    max_reward_gift_price: float


async def get_owned_child(
    db: AsyncSession,
    *,
    parent: Parent,
    child_id: int,
    with_requests: bool = False,
) -> Child:
    stmt = select(Child).where(Child.id == child_id)
    if with_requests:
        stmt = stmt.options(selectinload(Child.special_requests), selectinload(Child.gift_list))
    child = (await db.execute(stmt)).scalar_one_or_none()
    if child is None:
        raise NotFound("Child not found")
    if child.parent_id != parent.id:
        raise Forbidden("Child does not belong to this parent")
    return child


async def get_or_create_approval_settings(db: AsyncSession, parent: Parent) -> GiftApprovalSettings:
    result = await db.execute(
        select(GiftApprovalSettings).where(GiftApprovalSettings.parent_id == parent.id)
    )
    approval_settings = result.scalar_one_or_none()
    if approval_settings is None:
        approval_settings = GiftApprovalSettings(
            parent_id=parent.id,
            max_reward_gifts_per_year=settings.default_max_reward_gifts_per_year,
            max_reward_gift_price=settings.default_max_reward_gift_price,
            require_approval_over=settings.default_require_approval_over,
            auto_approve_rewards=settings.default_auto_approve_rewards,
            auto_approve_christmas=settings.default_auto_approve_christmas,
            email_on_gift_request=True,
            email_on_gift_shipped=True,
            email_on_gift_delivered=True,
        )
        db.add(approval_settings)
        await db.flush()
    return approval_settings


async def update_gift_settings(
    db: AsyncSession,
    *,
    parent: Parent,
    changes: dict[str, Any],
) -> GiftApprovalSettings:
    approval_settings = await get_or_create_approval_settings(db, parent)
    for key, value in changes.items():
        if key in SETTINGS_FIELDS and value is not None:
            setattr(approval_settings, key, value)
    await db.flush()
    logger.info("Gift settings updated parent_id=%s fields=%s", parent.id, sorted(changes))
    return approval_settings


async def count_reward_gifts(db: AsyncSession, *, child_id: int, year: int) -> int:
    start, end = calendar_year_bounds(year)
    result = await db.execute(
        select(func.count(GiftOrder.id)).where(
            GiftOrder.child_id == child_id,
            GiftOrder.order_type == OrderType.REWARD.value,
            GiftOrder.status.in_([status.value for status in COUNTED_REWARD_STATUSES]),
            GiftOrder.requested_at >= start,
            GiftOrder.requested_at < end,
        )
    )
    return result.scalar_one()


async def get_reward_gift_stats(
    db: AsyncSession,
    *,
    parent: Parent,
    child: Child,
    now: datetime,
) -> RewardGiftStats:
    approval_settings = await get_or_create_approval_settings(db, parent)
    used = await count_reward_gifts(db, child_id=child.id, year=now.year)
    maximum = approval_settings.max_reward_gifts_per_year
    return RewardGiftStats(
        used_reward_gifts=used,
        max_reward_gifts=maximum,
        remaining_reward_gifts=max(0, maximum - used),
        max_reward_gift_price=float(approval_settings.max_reward_gift_price),
    )


def _should_auto_approve(
    order_type: OrderType,
    approval_settings: GiftApprovalSettings,
    price: float | None,
    now: datetime,
) -> bool:
    if order_type is OrderType.CHRISTMAS:
        return bool(approval_settings.auto_approve_christmas) and is_christmas_window(now)
    if order_type is OrderType.REWARD:
        return (
            bool(approval_settings.auto_approve_rewards)
            and price is not None
            and float(price) <= float(approval_settings.require_approval_over)
        )
    return False


async def _check_reward_limits(
    db: AsyncSession,
    *,
    approval_settings: GiftApprovalSettings,
    child_id: int,
    price: float | None,
    year: int,
) -> None:
    used = await count_reward_gifts(db, child_id=child_id, year=year)
    if used >= approval_settings.max_reward_gifts_per_year:
        raise LimitExceeded(
            f"Maximum reward gifts ({approval_settings.max_reward_gifts_per_year}) already used this year"
        )
    if price is not None and float(price) > float(approval_settings.max_reward_gift_price):
        raise LimitExceeded(
            f"Gift price (${float(price):.2f}) exceeds maximum reward gift price "
            f"(${float(approval_settings.max_reward_gift_price):.2f})"
        )


def _shipping_for(parent: Parent, child: Child, shipping_address: dict[str, Any] | None) -> dict[str, Any]:
    address = dict(shipping_address or parent.shipping_address or DEMO_SHIPPING_ADDRESS)
    address.setdefault("recipient_name", child.display_name)
    return address


async def _approve(
    db: AsyncSession,
    *,
    order: GiftOrder,
    child: Child,
    approval_settings: GiftApprovalSettings,
    approved_by: ApprovedBy,
    now: datetime,
    note: str | None = None,
) -> points.Deduction:
    if order.order_type == OrderType.REWARD.value:
        # Serialize slot use per child before recounting
        await db.execute(select(Child.id).where(Child.id == child.id).with_for_update())
        await _check_reward_limits(
            db,
            approval_settings=approval_settings,
            child_id=child.id,
            price=order.gift_price,
            year=order.requested_at.year,
        )
    await transition_order(
        db,
        order,
        GiftOrderStatus.APPROVED,
        approved_at=now,
        approved_by=approved_by.value,
        parent_approval_note=note,
    )
    deduction = await points.deduct_points(
        db,
        child=child,
        points=order.magic_points_cost,
        reason=PointsReason.GIFT_ORDER,
        gift_order_id=order.id,
        note=f"Gift order {order.id}: {order.gift_title}"[:255],
    )
    order.points_from_score = deduction.from_score
    order.points_from_neighbor_cents = deduction.from_neighbor_cents
    await db.flush()
    return deduction


async def request_gift(
    db: AsyncSession,
    *,
    parent: Parent,
    child_id: int,
    catalog_item_id: int,
    order_type: OrderType,
    now: datetime,
    behavior_reason: str | None = None,
    shipping_address: dict[str, Any] | None = None,
) -> GiftRequestResult:
    child = await get_owned_child(db, parent=parent, child_id=child_id)
    item = await db.get(CatalogItem, catalog_item_id)
    if item is None or not item.is_active:
        raise NotFound("Gift not found in catalog")

    cost = magic_points_cost(item.price)
    have = available_points(child.score365, child.neighbor_balance_cents)
    if cost > have:
        raise InsufficientPoints(f"Not enough magic points. Need {cost}, have {have}")

    approval_settings = await get_or_create_approval_settings(db, parent)

    if order_type is OrderType.REWARD:
        await _check_reward_limits(
            db,
            approval_settings=approval_settings,
            child_id=child.id,
            price=item.price,
            year=now.year,
        )

    if order_type is OrderType.CHRISTMAS and not is_christmas_window(now):
        window = get_christmas_window(now=now)
        raise WindowClosed(
            "Christmas gifts can only be requested during the Christmas window "
            f"(December {settings.christmas_window_start_day}-{settings.christmas_window_end_day}). "
            f"Window opens in {window.days_until_start} days."
        )

    address = _shipping_for(parent, child, shipping_address)
    order = GiftOrder(
        child_id=child.id,
        parent_id=parent.id,
        catalog_item_id=item.id,
        order_type=order_type.value,
        status=GiftOrderStatus.PENDING_APPROVAL.value,
        magic_points_cost=cost,
        gift_title=item.title,
        gift_brand=item.brand,
        gift_price=item.price or 0,
        gift_image_url=item.image_url,
        retailer_product_url=item.product_url,
        retailer=item.retailer,
        recipient_name=address["recipient_name"],
        shipping_address=address,
        is_christmas_eligible=order_type is OrderType.CHRISTMAS,
        christmas_year=now.year if order_type is OrderType.CHRISTMAS else None,
        behavior_reason=behavior_reason,
        requested_at=now,
    )
    db.add(order)
    await db.flush()

    deducted = 0
    if _should_auto_approve(order_type, approval_settings, item.price, now):
        deduction = await _approve(
            db,
            order=order,
            child=child,
            approval_settings=approval_settings,
            approved_by=ApprovedBy.SYSTEM,
            now=now,
        )
        deducted = deduction.points
        message = f"Gift approved! {cost} magic points deducted."
        logger.info("Gift auto-approved order_id=%s child_id=%s cost=%s", order.id, child.id, cost)
    else:
        message = "Gift request submitted for parent approval."
        logger.info("Gift requested order_id=%s child_id=%s cost=%s", order.id, child.id, cost)

    return GiftRequestResult(
        order=order,
        points_deducted=deducted,
        remaining_points=available_points(child.score365, child.neighbor_balance_cents),
        requires_approval=order.status == GiftOrderStatus.PENDING_APPROVAL.value,
        message=message,
    )


async def get_owned_order(db: AsyncSession, *, parent: Parent, gift_order_id: int) -> GiftOrder:
    order = await db.get(GiftOrder, gift_order_id)
    if order is None:
        raise NotFound("Gift order not found")
    if order.parent_id != parent.id:
        raise Forbidden("Gift order does not belong to this parent")
    return order


async def approve_gift_request(
    db: AsyncSession,
    *,
    parent: Parent,
    gift_order_id: int,
    approved: bool,
    now: datetime,
    note: str | None = None,
) -> ApprovalResult:
    order = await get_owned_order(db, parent=parent, gift_order_id=gift_order_id)
    if order.status != GiftOrderStatus.PENDING_APPROVAL.value:
        raise InvalidState("Gift order is not pending approval")
    child = await db.get(Child, order.child_id)

    if not approved:
        await transition_order(
            db,
            order,
            GiftOrderStatus.CANCELLED,
            parent_approval_note=note,
            closed_at=now,
        )
        logger.info("Gift denied order_id=%s parent_id=%s", order.id, parent.id)
        return ApprovalResult(
            order=order,
            points_deducted=0,
            remaining_points=available_points(child.score365, child.neighbor_balance_cents),
            message="Gift request cancelled.",
        )

    have = available_points(child.score365, child.neighbor_balance_cents)
    if order.magic_points_cost > have:
        raise InsufficientPoints("Child no longer has enough magic points")

    approval_settings = await get_or_create_approval_settings(db, parent)
    deduction = await _approve(
        db,
        order=order,
        child=child,
        approval_settings=approval_settings,
        approved_by=ApprovedBy.PARENT,
        now=now,
        note=note,
    )
    logger.info("Gift approved order_id=%s parent_id=%s cost=%s", order.id, parent.id, deduction.points)
    return ApprovalResult(
        order=order,
        points_deducted=deduction.points,
        remaining_points=available_points(child.score365, child.neighbor_balance_cents),
        message=f"Gift approved! {deduction.points} magic points deducted from {child.display_name}.",
    )


async def get_pending_approvals(db: AsyncSession, *, parent: Parent) -> list[GiftOrder]:
    result = await db.execute(
        select(GiftOrder)
        .options(selectinload(GiftOrder.child))
        .where(
            GiftOrder.parent_id == parent.id,
            GiftOrder.status == GiftOrderStatus.PENDING_APPROVAL.value,
        )
        .order_by(GiftOrder.requested_at.desc(), GiftOrder.id.desc())
    )
    return list(result.scalars().all())


async def get_gift_history(db: AsyncSession, *, child: Child, limit: int = 20) -> list[GiftOrder]:
    result = await db.execute(
        select(GiftOrder)
        .where(GiftOrder.child_id == child.id)
        .order_by(GiftOrder.created_at.desc(), GiftOrder.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_orders(
    db: AsyncSession,
    *,
    status: GiftOrderStatus | None = None,
    limit: int = 100,
) -> list[GiftOrder]:
    stmt = select(GiftOrder).order_by(GiftOrder.created_at.desc(), GiftOrder.id.desc()).limit(limit)
    if status is not None:
        stmt = stmt.where(GiftOrder.status == status.value)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def update_order_status(
    db: AsyncSession,
    *,
    gift_order_id: int,
    status: GiftOrderStatus,
    now: datetime,
    tracking_number: str | None = None,
    external_order_id: str | None = None,
) -> GiftOrder:
    """Fulfillment update. Cancelling or failing an APPROVED order refunds its points."""
    order = await db.get(GiftOrder, gift_order_id)
    if order is None:
        raise NotFound("Gift order not found")
    previous = GiftOrderStatus(order.status)

    values: dict[str, Any] = {}
    if status is GiftOrderStatus.ORDERED:
        days = (
            settings.christmas_delivery_days
            if order.order_type == OrderType.CHRISTMAS.value
            else settings.standard_delivery_days
        )
        values["estimated_delivery_date"] = now + timedelta(days=days)
        if external_order_id:
            values["external_order_id"] = external_order_id
    elif status is GiftOrderStatus.SHIPPED:
        if tracking_number:
            values["tracking_number"] = tracking_number
    elif status is GiftOrderStatus.DELIVERED:
        values["actual_delivery_date"] = now
        values["closed_at"] = now
    elif status in (GiftOrderStatus.CANCELLED, GiftOrderStatus.FAILED):
        values["closed_at"] = now

    await transition_order(db, order, status, **values)

    if previous is GiftOrderStatus.APPROVED and status in (GiftOrderStatus.CANCELLED, GiftOrderStatus.FAILED):
        child = await db.get(Child, order.child_id)
        await points.refund_points(
            db,
            child=child,
            from_score=order.points_from_score or 0,
            from_neighbor_cents=order.points_from_neighbor_cents or 0,
            gift_order_id=order.id,
            note=f"Refund for gift order {order.id}",
        )
    await db.flush()
    logger.info("Order status changed order_id=%s %s -> %s", order.id, previous.value, status.value)
    return order
