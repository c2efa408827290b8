from fastapi import APIRouter, Request

from app.api.deps import CurrentParentDep, DbSessionDep, NowDep
from app.core.audit import AuditAction, audit_special_request_action
from app.core.errors import InvalidState
from app.core.gift_metrics import gift_metrics
from app.schemas.family import (
    PendingSpecialRequestPublic,
    SpecialRequestPublic,
    SpecialRequestRespond,
    SpecialRequestResponse,
)
from app.services import special_requests


router = APIRouter(prefix="/special-requests", tags=["special-requests"])


@router.get("/pending", response_model=list[PendingSpecialRequestPublic])
async def pending_special_requests(db: DbSessionDep, parent: CurrentParentDep) -> list[PendingSpecialRequestPublic]:
    rows = await special_requests.list_pending_special_requests(db, parent=parent)
    return [
        PendingSpecialRequestPublic(
            **SpecialRequestPublic.model_validate(row).model_dump(),
            child_name=row.child.display_name,
        )
        for row in rows
    ]


@router.post("/{request_id}/respond", response_model=SpecialRequestResponse)
async def respond(
    request_id: int,
    payload: SpecialRequestRespond,
    request: Request,
    db: DbSessionDep,
    parent: CurrentParentDep,
    now: NowDep,
) -> SpecialRequestResponse:
    try:
        result = await special_requests.respond_special_request(
            db,
            parent=parent,
            request_id=request_id,
            approve=payload.approve,
            now=now,
            parent_response=payload.parent_response,
        )
    except InvalidState:
        gift_metrics.incr("conflicts")
        raise
    await db.commit()

    audit_special_request_action(
        AuditAction.SPECIAL_REQUEST_APPROVED if payload.approve else AuditAction.SPECIAL_REQUEST_DENIED,
        request,
        parent.user_id,
        result.request.id,
        result.request.child_id,
        details={"points_deducted": result.points_deducted},
    )
    return SpecialRequestResponse(
        request=SpecialRequestPublic.model_validate(result.request),
        magic_points_deducted=result.points_deducted,
        remaining_points=result.remaining_points,
        message=result.message,
    )
