"""Wallet and neighbor ledgers.

``Parent.wallet_balance_cents`` and ``Child.neighbor_balance_cents`` are
materialized folds over the SUCCEEDED entries of their ledgers. They are only
ever written by the recompute functions below, which run inside the caller's
transaction.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.core.config import settings
from app.core.errors import FeatureDisabled, LimitExceeded, NotFound
from app.core.payments import PaymentGateway, PaymentIntent
from app.models.models import (
    Child,
    LedgerStatus,
    NeighborEntryType,
    NeighborLedgerEntry,
    Parent,
    WalletEntryType,
    WalletLedgerEntry,
    utcnow,
)


logger = logging.getLogger("santa.ledger")

SUCCESS_EVENTS = {"payment_intent.succeeded", "checkout.session.completed"}
FAILURE_EVENTS = {"payment_intent.payment_failed", "checkout.session.expired"}


def payment_idempotency_key(kind: str, entry_id: int, amount_cents: int) -> str:
    """Stable Stripe idempotency key for the intent backing one ledger entry."""
    raw = f"santa|{kind}:{entry_id}|amt:{amount_cents}"
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:48]
    return f"santa_pi_{digest}"


@dataclass(frozen=True)
class ReconcileResult:
    event_type: str
    handled: bool
    ledger: str | None = None
    entry_id: int | None = None
    status: str | None = None
    changed: bool = False


async def recompute_wallet_balance(db: AsyncSession, parent: Parent) -> int:
    await db.flush()
    folded = (
        select(func.coalesce(func.sum(WalletLedgerEntry.amount_cents), 0))
        .where(
            WalletLedgerEntry.parent_id == parent.id,
            WalletLedgerEntry.status == LedgerStatus.SUCCEEDED.value,
        )
        .scalar_subquery()
    )
    await db.execute(
        update(Parent)
        .where(Parent.id == parent.id)
        .values(wallet_balance_cents=folded)
        .execution_options(synchronize_session=False)
    )
    balance = (
        await db.execute(select(Parent.wallet_balance_cents).where(Parent.id == parent.id))
    ).scalar_one()
    set_committed_value(parent, "wallet_balance_cents", balance)
    return balance


async def recompute_neighbor_balance(db: AsyncSession, child: Child) -> int:
    await db.flush()
    folded = (
        select(func.coalesce(func.sum(NeighborLedgerEntry.amount_cents), 0))
        .where(
            NeighborLedgerEntry.child_id == child.id,
            NeighborLedgerEntry.status == LedgerStatus.SUCCEEDED.value,
        )
        .scalar_subquery()
    )
    await db.execute(
        update(Child)
        .where(Child.id == child.id)
        .values(neighbor_balance_cents=folded)
        .execution_options(synchronize_session=False)
    )
    balance = (
        await db.execute(select(Child.neighbor_balance_cents).where(Child.id == child.id))
    ).scalar_one()
    set_committed_value(child, "neighbor_balance_cents", balance)
    return balance


async def create_wallet_topup(
    db: AsyncSession,
    *,
    parent: Parent,
    amount_cents: int,
    gateway: PaymentGateway,
) -> tuple[WalletLedgerEntry, PaymentIntent]:
    if amount_cents < settings.wallet_topup_min_cents:
        raise LimitExceeded(f"Minimum top-up is ${settings.wallet_topup_min_cents / 100:.2f}")
    if amount_cents > settings.wallet_topup_max_cents:
        raise LimitExceeded(f"Maximum top-up is ${settings.wallet_topup_max_cents / 100:.2f}")

    entry = WalletLedgerEntry(
        parent_id=parent.id,
        type=WalletEntryType.TOP_UP.value,
        amount_cents=amount_cents,
        status=LedgerStatus.PENDING.value,
        description="Wallet top-up",
    )
    db.add(entry)
    await db.flush()

    intent = await gateway.create_payment_intent(
        amount_cents=amount_cents,
        metadata={"type": "wallet_topup", "parent_id": str(parent.id), "amount": str(amount_cents)},
        description=f"Spirit of Santa wallet top-up for {parent.name}",
        receipt_email=parent.email,
        idempotency_key=payment_idempotency_key("wallet_topup", entry.id, amount_cents),
    )
    entry.stripe_payment_intent_id = intent.id
    await db.flush()
    logger.info(
        "Wallet top-up created parent_id=%s entry_id=%s amount_cents=%s intent=%s",
        parent.id,
        entry.id,
        amount_cents,
        intent.id,
    )
    return entry, intent


async def get_child_by_slug(db: AsyncSession, share_slug: str) -> Child:
    child = (await db.execute(select(Child).where(Child.share_slug == share_slug))).scalar_one_or_none()
    if child is None:
        raise NotFound("Child not found")
    return child


async def create_neighbor_donation(
    db: AsyncSession,
    *,
    share_slug: str,
    amount_cents: int,
    gateway: PaymentGateway,
    from_name: str | None = None,
    from_email: str | None = None,
    message: str | None = None,
) -> tuple[Child, NeighborLedgerEntry, PaymentIntent]:
    child = await get_child_by_slug(db, share_slug)
    if not child.donations_enabled:
        raise FeatureDisabled("Donations are not enabled for this child")
    if amount_cents < settings.donation_min_cents:
        raise LimitExceeded(f"Minimum donation is ${settings.donation_min_cents / 100:.2f}")
    if amount_cents > settings.wallet_topup_max_cents:
        raise LimitExceeded(f"Maximum donation is ${settings.wallet_topup_max_cents / 100:.2f}")

    entry = NeighborLedgerEntry(
        child_id=child.id,
        type=NeighborEntryType.DONATION.value,
        amount_cents=amount_cents,
        status=LedgerStatus.PENDING.value,
        from_name=from_name,
        from_email=from_email,
        message=message,
    )
    db.add(entry)
    await db.flush()

    intent = await gateway.create_payment_intent(
        amount_cents=amount_cents,
        metadata={"type": "donation", "child_id": str(child.id), "amount": str(amount_cents)},
        description=f"Neighbor magic for {child.display_name}",
        receipt_email=from_email,
        idempotency_key=payment_idempotency_key("donation", entry.id, amount_cents),
    )
    entry.stripe_payment_intent_id = intent.id
    await db.flush()
    logger.info(
        "Neighbor donation created child_id=%s entry_id=%s amount_cents=%s intent=%s",
        child.id,
        entry.id,
        amount_cents,
        intent.id,
    )
    return child, entry, intent


async def _find_entry(db: AsyncSession, model, *, intent_id: str | None, session_id: str | None):
    if session_id:
        found = (
            await db.execute(select(model).where(model.stripe_checkout_session_id == session_id))
        ).scalar_one_or_none()
        if found is not None:
            return found
    if intent_id:
        return (
            await db.execute(select(model).where(model.stripe_payment_intent_id == intent_id))
        ).scalar_one_or_none()
    return None


async def _settle(db: AsyncSession, model, entry, target: LedgerStatus, intent_id: str | None) -> bool:
    """Flip a PENDING entry to ``target``; False when it was already final."""
    if entry.status != LedgerStatus.PENDING.value:
        return False
    values: dict[str, Any] = {"status": target.value, "updated_at": utcnow()}
    if intent_id and not entry.stripe_payment_intent_id:
        values["stripe_payment_intent_id"] = intent_id
    result = await db.execute(
        update(model)
        .where(model.id == entry.id, model.status == LedgerStatus.PENDING.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    for key, value in values.items():
        set_committed_value(entry, key, value)
    return True


async def reconcile_payment_event(db: AsyncSession, event: dict[str, Any]) -> ReconcileResult:
    """Apply a verified Stripe event to the matching PENDING ledger entry.

    Redelivered events find the entry already final and change nothing.
    """
    event_type = str(event.get("type") or "")
    if event_type in SUCCESS_EVENTS:
        target = LedgerStatus.SUCCEEDED
    elif event_type in FAILURE_EVENTS:
        target = LedgerStatus.FAILED
    else:
        logger.debug("Ignoring payment event type=%s", event_type)
        return ReconcileResult(event_type=event_type, handled=False)

    obj = (event.get("data") or {}).get("object") or {}
    if event_type.startswith("checkout.session."):
        session_id = obj.get("id")
        intent_id = obj.get("payment_intent")
    else:
        session_id = None
        intent_id = obj.get("id")
    kind = (obj.get("metadata") or {}).get("type")

    if kind != "donation":
        entry = await _find_entry(db, WalletLedgerEntry, intent_id=intent_id, session_id=session_id)
        if entry is not None:
            changed = await _settle(db, WalletLedgerEntry, entry, target, intent_id)
            if changed:
                parent = await db.get(Parent, entry.parent_id)
                balance = await recompute_wallet_balance(db, parent)
                logger.info(
                    "Wallet entry reconciled entry_id=%s status=%s balance_cents=%s",
                    entry.id,
                    target.value,
                    balance,
                )
            return ReconcileResult(
                event_type=event_type,
                handled=True,
                ledger="wallet",
                entry_id=entry.id,
                status=entry.status,
                changed=changed,
            )

    if kind != "wallet_topup":
        entry = await _find_entry(db, NeighborLedgerEntry, intent_id=intent_id, session_id=session_id)
        if entry is not None:
            changed = await _settle(db, NeighborLedgerEntry, entry, target, intent_id)
            if changed:
                child = await db.get(Child, entry.child_id)
                if target is LedgerStatus.SUCCEEDED:
                    child.donor_count = (child.donor_count or 0) + 1
                    child.donor_total_cents = (child.donor_total_cents or 0) + entry.amount_cents
                balance = await recompute_neighbor_balance(db, child)
                logger.info(
                    "Neighbor entry reconciled entry_id=%s status=%s balance_cents=%s",
                    entry.id,
                    target.value,
                    balance,
                )
            return ReconcileResult(
                event_type=event_type,
                handled=True,
                ledger="neighbor",
                entry_id=entry.id,
                status=entry.status,
                changed=changed,
            )

    logger.warning(
        "No ledger entry for payment event type=%s intent=%s session=%s",
        event_type,
        intent_id,
        session_id,
    )
    return ReconcileResult(event_type=event_type, handled=False)
