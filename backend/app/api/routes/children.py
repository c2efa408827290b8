import logging

from fastapi import APIRouter, Query, Request, Response, status
from sqlalchemy import select

from app.api.deps import CurrentParentDep, DbSessionDep, NowDep
from app.core.audit import AuditAction, audit_log, audit_special_request_action
from app.core.config import settings
from app.core.errors import InvalidState, NotFound
from app.core.gift_metrics import gift_metrics
from app.core.mailer import send_special_request_email
from app.core.rate_limit import check_rate_limit
from app.models.models import CatalogItem, Child, PointsTransaction
from app.schemas.family import (
    CatalogItemPublic,
    ChildCreate,
    ChildPublic,
    ChildUpdate,
    EarlyGiftRequestCreate,
    FriendGiftRequestCreate,
    GiftListUpdate,
    MagicVoteRequest,
    MagicVoteResponse,
    PointsTransactionPublic,
    SpecialRequestPublic,
)
from app.schemas.gifts import GiftOrderPublic, RewardGiftStatsPublic
from app.services import gift_orders, points, special_requests
from app.services.policy import available_points, magic_points_cost


router = APIRouter(prefix="/children", tags=["children"])
logger = logging.getLogger("santa.children")


def _child_public(child: Child) -> ChildPublic:
    data = ChildPublic.model_validate(child)
    data.available_points = available_points(child.score365, child.neighbor_balance_cents)
    return data


def _item_public(item: CatalogItem) -> CatalogItemPublic:
    data = CatalogItemPublic.model_validate(item)
    data.magic_points = magic_points_cost(item.price)
    return data


@router.post("", response_model=ChildPublic, status_code=status.HTTP_201_CREATED)
async def create_child(payload: ChildCreate, db: DbSessionDep, parent: CurrentParentDep) -> ChildPublic:
    child = Child(parent_id=parent.id, **payload.model_dump())
    db.add(child)
    await db.commit()
    await db.refresh(child)
    logger.info("Child created child_id=%s parent_id=%s", child.id, parent.id)
    return _child_public(child)


@router.get("", response_model=list[ChildPublic])
async def list_children(db: DbSessionDep, parent: CurrentParentDep) -> list[ChildPublic]:
    result = await db.execute(select(Child).where(Child.parent_id == parent.id).order_by(Child.id))
    return [_child_public(child) for child in result.scalars().all()]


@router.get("/{child_id}", response_model=ChildPublic)
async def get_child(child_id: int, db: DbSessionDep, parent: CurrentParentDep) -> ChildPublic:
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id)
    return _child_public(child)


@router.patch("/{child_id}", response_model=ChildPublic)
async def update_child(
    child_id: int,
    payload: ChildUpdate,
    db: DbSessionDep,
    parent: CurrentParentDep,
) -> ChildPublic:
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id)
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(child, key, value)
    await db.commit()
    await db.refresh(child)
    return _child_public(child)


@router.delete("/{child_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_child(child_id: int, db: DbSessionDep, parent: CurrentParentDep) -> Response:
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id)
    await db.delete(child)
    await db.commit()
    logger.info("Child deleted child_id=%s parent_id=%s", child_id, parent.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{child_id}/gift-list", response_model=list[CatalogItemPublic])
async def get_gift_list(child_id: int, db: DbSessionDep, parent: CurrentParentDep) -> list[CatalogItemPublic]:
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id, with_requests=True)
    return [_item_public(item) for item in child.gift_list]


@router.post("/{child_id}/gift-list", response_model=list[CatalogItemPublic], status_code=status.HTTP_201_CREATED)
async def add_to_gift_list(
    child_id: int,
    payload: GiftListUpdate,
    db: DbSessionDep,
    parent: CurrentParentDep,
) -> list[CatalogItemPublic]:
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id, with_requests=True)
    if child.gift_list_locked:
        raise InvalidState("Gift list is locked for this season")
    item = await db.get(CatalogItem, payload.catalog_item_id)
    if item is None or not item.is_active:
        raise NotFound("Gift not found in catalog")
    if all(existing.id != item.id for existing in child.gift_list):
        child.gift_list.append(item)
    await db.commit()
    return [_item_public(entry) for entry in child.gift_list]


@router.delete("/{child_id}/gift-list/{catalog_item_id}", response_model=list[CatalogItemPublic])
async def remove_from_gift_list(
    child_id: int,
    catalog_item_id: int,
    db: DbSessionDep,
    parent: CurrentParentDep,
) -> list[CatalogItemPublic]:
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id, with_requests=True)
    if child.gift_list_locked:
        raise InvalidState("Gift list is locked for this season")
    child.gift_list = [item for item in child.gift_list if item.id != catalog_item_id]
    await db.commit()
    return [_item_public(item) for item in child.gift_list]


@router.post("/{child_id}/magic", response_model=MagicVoteResponse)
async def add_magic(
    child_id: int,
    payload: MagicVoteRequest,
    request: Request,
    db: DbSessionDep,
    parent: CurrentParentDep,
    now: NowDep,
) -> MagicVoteResponse:
    check_rate_limit(request, key_suffix="magic", user_id=parent.user_id)
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id)
    result = await points.add_magic_points(db, parent=parent, child=child, points=payload.points, now=now)
    await db.commit()
    gift_metrics.incr("magic_votes")
    audit_log(
        AuditAction.MAGIC_VOTE,
        request=request,
        user_id=parent.user_id,
        details={"child_id": child.id, "points": result.points_added},
    )
    return MagicVoteResponse(
        points_added=result.points_added,
        new_score=result.new_score,
        wallet_balance_cents=result.wallet_balance_cents,
    )


@router.get("/{child_id}/gifts", response_model=list[GiftOrderPublic])
async def gift_history(
    child_id: int,
    db: DbSessionDep,
    parent: CurrentParentDep,
    limit: int = Query(default=20, ge=1, le=100),
) -> list[GiftOrderPublic]:
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id)
    orders = await gift_orders.get_gift_history(db, child=child, limit=limit)
    return [GiftOrderPublic.model_validate(order) for order in orders]


@router.get("/{child_id}/reward-stats", response_model=RewardGiftStatsPublic)
async def reward_stats(
    child_id: int,
    db: DbSessionDep,
    parent: CurrentParentDep,
    now: NowDep,
) -> RewardGiftStatsPublic:
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id)
    stats = await gift_orders.get_reward_gift_stats(db, parent=parent, child=child, now=now)
    await db.commit()
    return RewardGiftStatsPublic(**stats.__dict__)


@router.get("/{child_id}/points-history", response_model=list[PointsTransactionPublic])
async def points_history(
    child_id: int,
    db: DbSessionDep,
    parent: CurrentParentDep,
    limit: int = Query(default=50, ge=1, le=200),
) -> list[PointsTransactionPublic]:
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id)
    result = await db.execute(
        select(PointsTransaction)
        .where(PointsTransaction.child_id == child.id)
        .order_by(PointsTransaction.id.desc())
        .limit(limit)
    )
    return [PointsTransactionPublic.model_validate(row) for row in result.scalars().all()]


@router.get("/{child_id}/special-requests", response_model=list[SpecialRequestPublic])
async def list_child_special_requests(
    child_id: int,
    db: DbSessionDep,
    parent: CurrentParentDep,
) -> list[SpecialRequestPublic]:
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id, with_requests=True)
    return [SpecialRequestPublic.model_validate(item) for item in reversed(child.special_requests)]


@router.post(
    "/{child_id}/early-gift-requests",
    response_model=SpecialRequestPublic,
    status_code=status.HTTP_201_CREATED,
)
async def request_early_gift(
    child_id: int,
    payload: EarlyGiftRequestCreate,
    request: Request,
    db: DbSessionDep,
    parent: CurrentParentDep,
    now: NowDep,
) -> SpecialRequestPublic:
    check_rate_limit(request, max_requests=settings.rate_limit_gift_requests, key_suffix="early", user_id=parent.user_id)
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id, with_requests=True)
    special = await special_requests.create_early_gift_request(
        db,
        parent=parent,
        child=child,
        catalog_item_id=payload.catalog_item_id,
        reason=payload.reason,
        requested_points=payload.requested_points,
        now=now,
    )
    await db.commit()
    gift_metrics.incr("special_requests_created")
    audit_special_request_action(
        AuditAction.SPECIAL_REQUEST_CREATED,
        request,
        parent.user_id,
        special.id,
        child.id,
        details={"kind": special.kind, "points": special.requested_points},
    )
    send_special_request_email(parent.email, child.display_name, special.kind, special.gift_title, special.requested_points)
    return SpecialRequestPublic.model_validate(special)


@router.post(
    "/{child_id}/friend-gift-requests",
    response_model=SpecialRequestPublic,
    status_code=status.HTTP_201_CREATED,
)
async def request_friend_gift(
    child_id: int,
    payload: FriendGiftRequestCreate,
    request: Request,
    db: DbSessionDep,
    parent: CurrentParentDep,
    now: NowDep,
) -> SpecialRequestPublic:
    check_rate_limit(request, max_requests=settings.rate_limit_gift_requests, key_suffix="friend", user_id=parent.user_id)
    child = await gift_orders.get_owned_child(db, parent=parent, child_id=child_id)
    special = await special_requests.create_friend_gift_request(
        db,
        parent=parent,
        child=child,
        catalog_item_id=payload.catalog_item_id,
        friend_name=payload.friend_name,
        friend_address=payload.friend_address,
        message=payload.message,
        requested_points=payload.requested_points,
        now=now,
    )
    await db.commit()
    gift_metrics.incr("special_requests_created")
    audit_special_request_action(
        AuditAction.SPECIAL_REQUEST_CREATED,
        request,
        parent.user_id,
        special.id,
        child.id,
        details={"kind": special.kind, "points": special.requested_points},
    )
    send_special_request_email(parent.email, child.display_name, special.kind, special.gift_title, special.requested_points)
    return SpecialRequestPublic.model_validate(special)
