"""Early gifts and gifts for friends.

A child asks, the parent answers. Points are checked when the request is made
but only deducted when the parent approves it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from app.core.errors import (
    FeatureDisabled,
    Forbidden,
    GiftWorkflowError,
    InsufficientPoints,
    InvalidState,
    LimitExceeded,
    NotFound,
)
from app.models.models import (
    CatalogItem,
    Child,
    Parent,
    PointsReason,
    SpecialGiftRequest,
    SpecialRequestKind,
    SpecialRequestStatus,
)
from app.services import points
from app.services.policy import available_points


logger = logging.getLogger("santa.special_requests")


@dataclass(frozen=True)
class SpecialResponseResult:
    request: SpecialGiftRequest
    points_deducted: int
    remaining_points: int
    message: str


async def _load_gift(db: AsyncSession, catalog_item_id: int) -> CatalogItem:
    gift = await db.get(CatalogItem, catalog_item_id)
    if gift is None:
        raise NotFound("Gift not found")
    if not gift.price or not gift.image_url:
        raise GiftWorkflowError("Gift missing required data")
    return gift


def _check_points(child: Child, requested_points: int) -> None:
    have = available_points(child.score365, child.neighbor_balance_cents)
    if requested_points > have:
        raise InsufficientPoints(f"Not enough magic points. Need {requested_points}, have {have}")


async def create_early_gift_request(
    db: AsyncSession,
    *,
    parent: Parent,
    child: Child,
    catalog_item_id: int,
    reason: str,
    requested_points: int,
    now: datetime,
) -> SpecialGiftRequest:
    """``child`` must be loaded with its gift list."""
    if not parent.allow_early_gifts:
        raise FeatureDisabled("Early gifts are not enabled")
    gift = await _load_gift(db, catalog_item_id)
    if all(item.id != gift.id for item in child.gift_list):
        raise GiftWorkflowError("Gift not in child's gift list")
    _check_points(child, requested_points)

    request = SpecialGiftRequest(
        child_id=child.id,
        catalog_item_id=gift.id,
        kind=SpecialRequestKind.EARLY_GIFT.value,
        status=SpecialRequestStatus.PENDING.value,
        gift_title=gift.title,
        gift_price=gift.price,
        gift_image_url=gift.image_url,
        requested_points=requested_points,
        reason=reason,
        requested_at=now,
    )
    db.add(request)
    await db.flush()
    logger.info("Early gift requested id=%s child_id=%s points=%s", request.id, child.id, requested_points)
    return request


async def create_friend_gift_request(
    db: AsyncSession,
    *,
    parent: Parent,
    child: Child,
    catalog_item_id: int,
    friend_name: str,
    friend_address: str,
    message: str,
    requested_points: int,
    now: datetime,
) -> SpecialGiftRequest:
    if not parent.allow_friend_gifts:
        raise FeatureDisabled("Friend gifts are not enabled")
    gift = await _load_gift(db, catalog_item_id)
    _check_points(child, requested_points)
    limit = float(parent.max_friend_gift_value or 0)
    if float(gift.price) > limit:
        raise LimitExceeded(f"Gift price ${float(gift.price):.2f} exceeds friend gift limit of ${limit:.2f}")

    request = SpecialGiftRequest(
        child_id=child.id,
        catalog_item_id=gift.id,
        kind=SpecialRequestKind.FRIEND_GIFT.value,
        status=SpecialRequestStatus.PENDING.value,
        gift_title=gift.title,
        gift_price=gift.price,
        gift_image_url=gift.image_url,
        requested_points=requested_points,
        friend_name=friend_name,
        friend_address=friend_address,
        message=message,
        requested_at=now,
    )
    db.add(request)
    await db.flush()
    logger.info("Friend gift requested id=%s child_id=%s points=%s", request.id, child.id, requested_points)
    return request


async def list_pending_special_requests(db: AsyncSession, *, parent: Parent) -> list[SpecialGiftRequest]:
    result = await db.execute(
        select(SpecialGiftRequest)
        .join(Child, Child.id == SpecialGiftRequest.child_id)
        .options(selectinload(SpecialGiftRequest.child))
        .where(
            Child.parent_id == parent.id,
            SpecialGiftRequest.status == SpecialRequestStatus.PENDING.value,
        )
        .order_by(SpecialGiftRequest.requested_at.desc(), SpecialGiftRequest.id.desc())
    )
    return list(result.scalars().all())


async def respond_special_request(
    db: AsyncSession,
    *,
    parent: Parent,
    request_id: int,
    approve: bool,
    now: datetime,
    parent_response: str | None = None,
) -> SpecialResponseResult:
    request = await db.get(SpecialGiftRequest, request_id)
    if request is None:
        raise NotFound("Request not found")
    child = await db.get(Child, request.child_id)
    if child.parent_id != parent.id:
        raise Forbidden("Request does not belong to this parent")
    if request.status != SpecialRequestStatus.PENDING.value:
        raise InvalidState("Request has already been answered")

    target = SpecialRequestStatus.APPROVED if approve else SpecialRequestStatus.DENIED
    values = {"status": target.value, "responded_at": now, "parent_response": parent_response}
    result = await db.execute(
        update(SpecialGiftRequest)
        .where(
            SpecialGiftRequest.id == request.id,
            SpecialGiftRequest.status == SpecialRequestStatus.PENDING.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Special request CAS failed id=%s", request.id)
        raise InvalidState("Request has already been answered")
    for key, value in values.items():
        set_committed_value(request, key, value)

    deducted = 0
    if approve:
        deduction = await points.deduct_points(
            db,
            child=child,
            points=request.requested_points,
            reason=PointsReason.SPECIAL_REQUEST,
            special_request_id=request.id,
            note=f"{request.kind} {request.id}: {request.gift_title}"[:255],
        )
        request.points_from_score = deduction.from_score
        request.points_from_neighbor_cents = deduction.from_neighbor_cents
        deducted = deduction.points
        message = f"Request approved! {deducted} magic points deducted from {child.display_name}."
    else:
        message = "Request denied."
    await db.flush()
    logger.info("Special request answered id=%s status=%s", request.id, target.value)
    return SpecialResponseResult(
        request=request,
        points_deducted=deducted,
        remaining_points=available_points(child.score365, child.neighbor_balance_cents),
        message=message,
    )
