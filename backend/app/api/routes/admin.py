from fastapi import APIRouter, Query, Request

from app.api.deps import AdminDep, DbSessionDep, NowDep
from app.core.audit import AuditAction, audit_gift_action
from app.core.errors import InvalidState
from app.core.gift_metrics import gift_metrics
from app.core.mailer import send_gift_status_email
from app.models.models import Child, GiftOrder, GiftOrderStatus, Parent
from app.schemas.gifts import GiftOrderPublic, OrderStatusUpdate
from app.services import gift_orders


router = APIRouter(prefix="/admin", tags=["admin"])

NOTIFY_FIELDS = {
    GiftOrderStatus.SHIPPED: "email_on_gift_shipped",
    GiftOrderStatus.DELIVERED: "email_on_gift_delivered",
}


@router.get("/orders", response_model=list[GiftOrderPublic])
async def list_orders(
    db: DbSessionDep,
    admin: AdminDep,
    status: GiftOrderStatus | None = None,
    limit: int = Query(default=100, ge=1, le=500),
) -> list[GiftOrderPublic]:
    orders = await gift_orders.list_orders(db, status=status, limit=limit)
    return [GiftOrderPublic.model_validate(order) for order in orders]


@router.patch("/orders/{gift_order_id}/status", response_model=GiftOrderPublic)
async def update_order_status(
    gift_order_id: int,
    payload: OrderStatusUpdate,
    request: Request,
    db: DbSessionDep,
    admin: AdminDep,
    now: NowDep,
) -> GiftOrderPublic:
    existing = await db.get(GiftOrder, gift_order_id)
    previous = existing.status if existing is not None else None
    try:
        order = await gift_orders.update_order_status(
            db,
            gift_order_id=gift_order_id,
            status=payload.status,
            now=now,
            tracking_number=payload.tracking_number,
            external_order_id=payload.external_order_id,
        )
    except InvalidState:
        gift_metrics.incr("conflicts")
        raise

    notify_field = NOTIFY_FIELDS.get(payload.status)
    notify = False
    parent = child = None
    if notify_field:
        parent = await db.get(Parent, order.parent_id)
        child = await db.get(Child, order.child_id)
        approval_settings = await gift_orders.get_or_create_approval_settings(db, parent)
        notify = bool(getattr(approval_settings, notify_field))
    await db.commit()

    if previous == GiftOrderStatus.APPROVED.value and payload.status in (
        GiftOrderStatus.CANCELLED,
        GiftOrderStatus.FAILED,
    ):
        gift_metrics.incr("refunds")
    audit_gift_action(
        AuditAction.ORDER_STATUS_CHANGED,
        request,
        admin.id,
        order.id,
        order.child_id,
        details={"from": previous, "to": payload.status.value},
    )
    if notify:
        send_gift_status_email(
            parent.email,
            child.display_name,
            order.gift_title,
            payload.status.value,
            order.tracking_number,
        )
    return GiftOrderPublic.model_validate(order)
