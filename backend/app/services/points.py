"""Magic point movements for a child.

Balances are changed with a compare-and-set UPDATE against the values that
were read, and every change writes a ``PointsTransaction``. Spending from the
neighbor balance also writes a SUCCEEDED ledger entry so the balance keeps
matching the fold over ``neighbor_ledger_entries``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.core.config import settings
from app.core.errors import InsufficientFunds, InsufficientPoints, InvalidState, LimitExceeded
from app.models.models import (
    Child,
    LedgerStatus,
    MagicVote,
    NeighborEntryType,
    NeighborLedgerEntry,
    Parent,
    PointsReason,
    PointsTransaction,
    WalletEntryType,
    WalletLedgerEntry,
    utcnow,
)
from app.services import ledger
from app.services.policy import CENTS_PER_POINT, MAX_SCORE, available_points, vote_day


logger = logging.getLogger("santa.points")


@dataclass(frozen=True)
class Deduction:
    points: int
    from_score: int
    from_neighbor_cents: int


@dataclass(frozen=True)
class VoteResult:
    points_added: int
    new_score: int
    wallet_balance_cents: int


def split_deduction(score365: int, neighbor_balance_cents: int, points: int) -> Deduction:
    """Spend score365 first, then whole points from the neighbor balance."""
    if points < 0:
        raise ValueError("points must be non-negative")
    have = available_points(score365, neighbor_balance_cents)
    if points > have:
        raise InsufficientPoints(f"Not enough magic points. Need {points}, have {have}")
    from_score = min(score365, points)
    from_neighbor_cents = (points - from_score) * CENTS_PER_POINT
    return Deduction(points=points, from_score=from_score, from_neighbor_cents=from_neighbor_cents)


async def _swap_balances(
    db: AsyncSession,
    child: Child,
    *,
    new_score: int,
    new_neighbor_cents: int,
) -> None:
    result = await db.execute(
        update(Child)
        .where(
            Child.id == child.id,
            Child.score365 == child.score365,
            Child.neighbor_balance_cents == child.neighbor_balance_cents,
        )
        .values(score365=new_score, neighbor_balance_cents=new_neighbor_cents, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning("Points CAS failed child_id=%s", child.id)
        raise InvalidState("Magic points changed while processing this request, please try again")
    set_committed_value(child, "score365", new_score)
    set_committed_value(child, "neighbor_balance_cents", new_neighbor_cents)


def _record(
    db: AsyncSession,
    child: Child,
    *,
    reason: PointsReason,
    score_delta: int,
    neighbor_cents_delta: int,
    gift_order_id: int | None = None,
    special_request_id: int | None = None,
    note: str | None = None,
) -> None:
    db.add(
        PointsTransaction(
            child_id=child.id,
            reason=reason.value,
            score_delta=score_delta,
            neighbor_cents_delta=neighbor_cents_delta,
            score_after=child.score365,
            neighbor_cents_after=child.neighbor_balance_cents,
            gift_order_id=gift_order_id,
            special_request_id=special_request_id,
            note=note,
        )
    )


async def deduct_points(
    db: AsyncSession,
    *,
    child: Child,
    points: int,
    reason: PointsReason,
    gift_order_id: int | None = None,
    special_request_id: int | None = None,
    note: str | None = None,
) -> Deduction:
    deduction = split_deduction(child.score365, child.neighbor_balance_cents, points)
    if deduction.points == 0:
        return deduction

    await _swap_balances(
        db,
        child,
        new_score=child.score365 - deduction.from_score,
        new_neighbor_cents=child.neighbor_balance_cents - deduction.from_neighbor_cents,
    )
    if deduction.from_neighbor_cents:
        db.add(
            NeighborLedgerEntry(
                child_id=child.id,
                type=NeighborEntryType.ADJUSTMENT.value,
                amount_cents=-deduction.from_neighbor_cents,
                status=LedgerStatus.SUCCEEDED.value,
                message=note,
            )
        )
    _record(
        db,
        child,
        reason=reason,
        score_delta=-deduction.from_score,
        neighbor_cents_delta=-deduction.from_neighbor_cents,
        gift_order_id=gift_order_id,
        special_request_id=special_request_id,
        note=note,
    )
    logger.info(
        "Points deducted child_id=%s points=%s from_score=%s from_neighbor_cents=%s reason=%s",
        child.id,
        deduction.points,
        deduction.from_score,
        deduction.from_neighbor_cents,
        reason.value,
    )
    return deduction


async def refund_points(
    db: AsyncSession,
    *,
    child: Child,
    from_score: int,
    from_neighbor_cents: int,
    reason: PointsReason = PointsReason.GIFT_REFUND,
    gift_order_id: int | None = None,
    note: str | None = None,
) -> None:
    """Return a previous deduction; score overflow past the cap goes back as neighbor cents."""
    restored_score = min(MAX_SCORE, child.score365 + from_score)
    overflow_points = child.score365 + from_score - restored_score
    neighbor_cents = from_neighbor_cents + overflow_points * CENTS_PER_POINT
    if restored_score == child.score365 and neighbor_cents == 0:
        return

    score_delta = restored_score - child.score365
    await _swap_balances(
        db,
        child,
        new_score=restored_score,
        new_neighbor_cents=child.neighbor_balance_cents + neighbor_cents,
    )
    if neighbor_cents:
        db.add(
            NeighborLedgerEntry(
                child_id=child.id,
                type=NeighborEntryType.ADJUSTMENT.value,
                amount_cents=neighbor_cents,
                status=LedgerStatus.SUCCEEDED.value,
                message=note,
            )
        )
    _record(
        db,
        child,
        reason=reason,
        score_delta=score_delta,
        neighbor_cents_delta=neighbor_cents,
        gift_order_id=gift_order_id,
        note=note,
    )
    logger.info(
        "Points refunded child_id=%s score_delta=%s neighbor_cents=%s",
        child.id,
        score_delta,
        neighbor_cents,
    )


async def reset_score(db: AsyncSession, *, child: Child, note: str | None = None) -> None:
    if child.score365 == 0:
        return
    delta = -child.score365
    await _swap_balances(db, child, new_score=0, new_neighbor_cents=child.neighbor_balance_cents)
    _record(db, child, reason=PointsReason.YEARLY_RESET, score_delta=delta, neighbor_cents_delta=0, note=note)


async def add_magic_points(
    db: AsyncSession,
    *,
    parent: Parent,
    child: Child,
    points: int,
    now: datetime,
) -> VoteResult:
    """Daily parent vote: buys magic points for a child out of the parent wallet."""
    if not settings.vote_min_points <= points <= settings.vote_max_points:
        raise LimitExceeded(
            f"Can add {settings.vote_min_points}-{settings.vote_max_points} magic points per vote"
        )

    today = vote_day(now)
    existing = await db.execute(
        select(MagicVote.id).where(
            MagicVote.parent_id == parent.id,
            MagicVote.child_id == child.id,
            MagicVote.vote_date == today,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise LimitExceeded("Already voted for this child today. Try again tomorrow!")

    new_score = min(MAX_SCORE, child.score365 + points)
    points_added = new_score - child.score365
    if points_added == 0:
        raise LimitExceeded(f"{child.display_name} already has the maximum of {MAX_SCORE} magic points")

    cost_cents = points_added * CENTS_PER_POINT
    if parent.wallet_balance_cents < cost_cents:
        raise InsufficientFunds(
            f"Insufficient wallet balance. Need ${cost_cents / 100:.2f}, "
            f"have ${parent.wallet_balance_cents / 100:.2f}"
        )

    db.add(MagicVote(parent_id=parent.id, child_id=child.id, vote_date=today, points=points_added))
    db.add(
        WalletLedgerEntry(
            parent_id=parent.id,
            type=WalletEntryType.ADJUSTMENT.value,
            amount_cents=-cost_cents,
            status=LedgerStatus.SUCCEEDED.value,
            description=f"Magic vote for {child.display_name}",
        )
    )
    try:
        await db.flush()
    except IntegrityError:
        raise LimitExceeded("Already voted for this child today. Try again tomorrow!") from None

    balance = await ledger.recompute_wallet_balance(db, parent)
    if balance < 0:
        raise InsufficientFunds("Insufficient wallet balance")

    await _swap_balances(db, child, new_score=new_score, new_neighbor_cents=child.neighbor_balance_cents)
    _record(
        db,
        child,
        reason=PointsReason.MAGIC_VOTE,
        score_delta=points_added,
        neighbor_cents_delta=0,
        note=f"Vote by parent {parent.id}",
    )
    logger.info(
        "Magic vote parent_id=%s child_id=%s points=%s cost_cents=%s",
        parent.id,
        child.id,
        points_added,
        cost_cents,
    )
    return VoteResult(points_added=points_added, new_score=new_score, wallet_balance_cents=balance)
