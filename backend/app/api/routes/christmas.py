import logging

from fastapi import APIRouter, Request

from app.api.deps import CurrentParentDep, DbSessionDep, NowDep
from app.core.audit import AuditAction, audit_log
from app.schemas.family import (
    ChristmasSettingsPublic,
    ChristmasSettingsUpdate,
    FinalizedChildPublic,
    FinalizeResponse,
    ResetResponse,
    ResetStatusPublic,
)
from app.services import season


router = APIRouter(prefix="/christmas", tags=["christmas"])
logger = logging.getLogger("santa.christmas")


@router.get("/settings", response_model=ChristmasSettingsPublic)
async def get_christmas_settings(parent: CurrentParentDep) -> ChristmasSettingsPublic:
    return ChristmasSettingsPublic.model_validate(parent)


@router.put("/settings", response_model=ChristmasSettingsPublic)
async def update_christmas_settings(
    payload: ChristmasSettingsUpdate,
    db: DbSessionDep,
    parent: CurrentParentDep,
) -> ChristmasSettingsPublic:
    for key, value in payload.model_dump(exclude_unset=True).items():
        if value is not None or key == "shipping_address":
            setattr(parent, key, value)
    await db.commit()
    await db.refresh(parent)
    return ChristmasSettingsPublic.model_validate(parent)


@router.post("/finalize", response_model=FinalizeResponse)
async def finalize(request: Request, db: DbSessionDep, parent: CurrentParentDep, now: NowDep) -> FinalizeResponse:
    result = await season.finalize_lists(db, parent=parent, now=now)
    await db.commit()
    audit_log(
        AuditAction.LISTS_FINALIZED,
        request=request,
        user_id=parent.user_id,
        details={"children": len(result.children), "total_cents": result.total_gift_cost_cents},
    )
    return FinalizeResponse(
        finalized_at=result.finalized_at,
        total_gift_cost_cents=result.total_gift_cost_cents,
        children=[FinalizedChildPublic(**child.__dict__) for child in result.children],
    )


@router.get("/reset-status", response_model=ResetStatusPublic)
async def reset_status(parent: CurrentParentDep, now: NowDep) -> ResetStatusPublic:
    status = season.get_reset_status(parent, now)
    return ResetStatusPublic(**status.__dict__)


@router.post("/reset", response_model=ResetResponse)
async def reset(request: Request, db: DbSessionDep, parent: CurrentParentDep, now: NowDep) -> ResetResponse:
    result = await season.reset_for_new_year(db, parent=parent, now=now)
    await db.commit()
    audit_log(
        AuditAction.YEARLY_RESET,
        request=request,
        user_id=parent.user_id,
        details={"children_reset": result.children_reset},
    )
    return ResetResponse(
        children_reset=result.children_reset,
        reset_at=result.reset_at,
        message=f"Reset {result.children_reset} children for the new season.",
    )
