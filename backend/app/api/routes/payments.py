import logging

from fastapi import APIRouter, Header, Query, Request, status
from sqlalchemy import select

from app.api.deps import CurrentParentDep, DbSessionDep, GatewayDep
from app.core.audit import AuditAction, audit_log
from app.core.config import settings
from app.core.rate_limit import check_rate_limit
from app.models.models import LedgerStatus, WalletLedgerEntry
from app.schemas.payments import (
    DonationRequest,
    DonationResponse,
    TopUpRequest,
    TopUpResponse,
    WalletEntryPublic,
    WalletSummary,
    WebhookResponse,
)
from app.services import ledger


router = APIRouter(prefix="/payments", tags=["payments"])
logger = logging.getLogger("santa.payments")


@router.post("/wallet/topup", response_model=TopUpResponse, status_code=status.HTTP_201_CREATED)
async def create_topup(
    payload: TopUpRequest,
    request: Request,
    db: DbSessionDep,
    parent: CurrentParentDep,
    gateway: GatewayDep,
) -> TopUpResponse:
    check_rate_limit(request, key_suffix="topup", user_id=parent.user_id)
    entry, intent = await ledger.create_wallet_topup(
        db,
        parent=parent,
        amount_cents=payload.amount_cents,
        gateway=gateway,
    )
    await db.commit()
    audit_log(
        AuditAction.WALLET_TOPUP_CREATED,
        request=request,
        user_id=parent.user_id,
        details={"entry_id": entry.id, "amount_cents": entry.amount_cents},
    )
    return TopUpResponse(
        entry_id=entry.id,
        amount_cents=entry.amount_cents,
        status=entry.status,
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        publishable_key=settings.stripe_publishable_key or None,
        demo=intent.demo,
    )


@router.get("/wallet", response_model=WalletSummary)
async def get_wallet(
    db: DbSessionDep,
    parent: CurrentParentDep,
    limit: int = Query(default=50, ge=1, le=200),
) -> WalletSummary:
    result = await db.execute(
        select(WalletLedgerEntry)
        .where(WalletLedgerEntry.parent_id == parent.id)
        .order_by(WalletLedgerEntry.id.desc())
        .limit(limit)
    )
    entries = list(result.scalars().all())
    pending = sum(entry.amount_cents for entry in entries if entry.status == LedgerStatus.PENDING.value)
    return WalletSummary(
        wallet_balance_cents=parent.wallet_balance_cents,
        pending_cents=pending,
        entries=[WalletEntryPublic.model_validate(entry) for entry in entries],
    )


@router.post("/donate/{share_slug}", response_model=DonationResponse, status_code=status.HTTP_201_CREATED)
async def donate(
    share_slug: str,
    payload: DonationRequest,
    request: Request,
    db: DbSessionDep,
    gateway: GatewayDep,
) -> DonationResponse:
    check_rate_limit(request, key_suffix="donate")
    child, entry, intent = await ledger.create_neighbor_donation(
        db,
        share_slug=share_slug,
        amount_cents=payload.amount_cents,
        gateway=gateway,
        from_name=payload.from_name,
        from_email=payload.from_email,
        message=payload.message,
    )
    await db.commit()
    audit_log(
        AuditAction.DONATION_CREATED,
        request=request,
        details={"child_id": child.id, "entry_id": entry.id, "amount_cents": entry.amount_cents},
    )
    return DonationResponse(
        entry_id=entry.id,
        child_name=child.display_name,
        amount_cents=entry.amount_cents,
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        publishable_key=settings.stripe_publishable_key or None,
        demo=intent.demo,
    )


@router.post("/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    db: DbSessionDep,
    gateway: GatewayDep,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
) -> WebhookResponse:
    payload = await request.body()
    event = gateway.construct_event(payload, stripe_signature)
    result = await ledger.reconcile_payment_event(db, event)
    await db.commit()
    if result.changed:
        audit_log(
            AuditAction.LEDGER_RECONCILED,
            request=request,
            details={
                "event_type": result.event_type,
                "ledger": result.ledger,
                "entry_id": result.entry_id,
                "status": result.status,
            },
        )
    logger.info(
        "Webhook processed type=%s handled=%s changed=%s",
        result.event_type,
        result.handled,
        result.changed,
    )
    return WebhookResponse(
        handled=result.handled,
        ledger=result.ledger,
        entry_id=result.entry_id,
        status=result.status,
        changed=result.changed,
    )
