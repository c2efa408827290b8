import logging
import time

from fastapi import APIRouter, Query, Request

from app.api.deps import CurrentParentDep, DbSessionDep, NowDep
from app.core.audit import AuditAction, audit_gift_action
from app.core.config import settings
from app.core.errors import GiftWorkflowError, InvalidState
from app.core.gift_metrics import gift_metrics
from app.core.mailer import send_gift_request_email
from app.core.rate_limit import check_rate_limit
from app.schemas.gifts import (
    ApprovalRequest,
    ApprovalResponse,
    ChristmasWindowPublic,
    GiftRequestCreate,
    GiftRequestResponse,
    GiftSettingsPublic,
    GiftSettingsUpdate,
    PendingApprovalPublic,
)
from app.services import gift_orders
from app.services.policy import get_christmas_window


router = APIRouter(prefix="/gifts", tags=["gifts"])
logger = logging.getLogger("santa.gifts")


@router.post("/requests", response_model=GiftRequestResponse)
async def create_gift_request(
    payload: GiftRequestCreate,
    request: Request,
    db: DbSessionDep,
    parent: CurrentParentDep,
    now: NowDep,
) -> GiftRequestResponse:
    check_rate_limit(
        request,
        max_requests=settings.rate_limit_gift_requests,
        key_suffix="gift_request",
        user_id=parent.user_id,
    )
    start = time.perf_counter()
    try:
        result = await gift_orders.request_gift(
            db,
            parent=parent,
            child_id=payload.child_id,
            catalog_item_id=payload.catalog_item_id,
            order_type=payload.order_type,
            now=now,
            behavior_reason=payload.behavior_reason,
            shipping_address=payload.shipping_address.model_dump() if payload.shipping_address else None,
        )
        approval_settings = await gift_orders.get_or_create_approval_settings(db, parent)
        notify = approval_settings.email_on_gift_request
        await db.commit()
    except GiftWorkflowError:
        gift_metrics.record_request((time.perf_counter() - start) * 1000, error=True)
        raise
    gift_metrics.record_request((time.perf_counter() - start) * 1000, error=False)

    order = result.order
    gift_metrics.incr("requests_created")
    action = AuditAction.GIFT_REQUESTED
    if not result.requires_approval:
        gift_metrics.incr("auto_approved")
        action = AuditAction.GIFT_AUTO_APPROVED
    audit_gift_action(
        action,
        request,
        parent.user_id,
        order.id,
        order.child_id,
        details={"order_type": order.order_type, "cost": order.magic_points_cost},
    )
    if notify:
        send_gift_request_email(
            parent.email,
            order.recipient_name,
            order.gift_title,
            order.magic_points_cost,
            result.requires_approval,
        )

    return GiftRequestResponse(
        gift_order_id=order.id,
        status=order.status,
        magic_points_deducted=result.points_deducted,
        remaining_magic_points=result.remaining_points,
        requires_approval=result.requires_approval,
        message=result.message,
    )


@router.post("/orders/{gift_order_id}/approval", response_model=ApprovalResponse)
async def decide_gift_request(
    gift_order_id: int,
    payload: ApprovalRequest,
    request: Request,
    db: DbSessionDep,
    parent: CurrentParentDep,
    now: NowDep,
) -> ApprovalResponse:
    start = time.perf_counter()
    try:
        result = await gift_orders.approve_gift_request(
            db,
            parent=parent,
            gift_order_id=gift_order_id,
            approved=payload.approved,
            now=now,
            note=payload.note,
        )
        await db.commit()
    except InvalidState:
        gift_metrics.incr("conflicts")
        gift_metrics.record_approval((time.perf_counter() - start) * 1000, error=True)
        raise
    except GiftWorkflowError:
        gift_metrics.record_approval((time.perf_counter() - start) * 1000, error=True)
        raise
    gift_metrics.record_approval((time.perf_counter() - start) * 1000, error=False)

    order = result.order
    gift_metrics.incr("approved" if payload.approved else "denied")
    audit_gift_action(
        AuditAction.GIFT_APPROVED if payload.approved else AuditAction.GIFT_DENIED,
        request,
        parent.user_id,
        order.id,
        order.child_id,
        details={"points_deducted": result.points_deducted},
    )
    return ApprovalResponse(
        gift_order_id=order.id,
        status=order.status,
        magic_points_deducted=result.points_deducted,
        remaining_magic_points=result.remaining_points,
        message=result.message,
    )


@router.get("/approvals/pending", response_model=list[PendingApprovalPublic])
async def pending_approvals(db: DbSessionDep, parent: CurrentParentDep) -> list[PendingApprovalPublic]:
    orders = await gift_orders.get_pending_approvals(db, parent=parent)
    return [PendingApprovalPublic.model_validate(order) for order in orders]


@router.get("/settings", response_model=GiftSettingsPublic)
async def get_gift_settings(db: DbSessionDep, parent: CurrentParentDep) -> GiftSettingsPublic:
    approval_settings = await gift_orders.get_or_create_approval_settings(db, parent)
    await db.commit()
    return GiftSettingsPublic.model_validate(approval_settings)


@router.put("/settings", response_model=GiftSettingsPublic)
async def put_gift_settings(
    payload: GiftSettingsUpdate,
    db: DbSessionDep,
    parent: CurrentParentDep,
) -> GiftSettingsPublic:
    approval_settings = await gift_orders.update_gift_settings(
        db,
        parent=parent,
        changes=payload.model_dump(exclude_unset=True),
    )
    await db.commit()
    return GiftSettingsPublic.model_validate(approval_settings)


@router.get("/christmas-window", response_model=ChristmasWindowPublic)
async def christmas_window(now: NowDep, year: int | None = Query(default=None, ge=2000, le=2100)) -> ChristmasWindowPublic:
    window = get_christmas_window(year=year, now=now)
    return ChristmasWindowPublic(**window.__dict__)
