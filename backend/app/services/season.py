"""Christmas season bookkeeping: finalizing lists and the yearly reset."""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.errors import InvalidState, LimitExceeded, ResetNotAllowed
from app.models.models import Child, Parent, SpecialGiftRequest, child_gift_list
from app.services import points
from app.services.policy import days_until_christmas, is_after_christmas


logger = logging.getLogger("santa.season")


@dataclass(frozen=True)
class FinalizedChild:
    child_id: int
    child_name: str
    gift_count: int
    gift_cost_cents: int


@dataclass(frozen=True)
class FinalizeResult:
    finalized_at: datetime
    total_gift_cost_cents: int
    children: list[FinalizedChild]


@dataclass(frozen=True)
class ResetStatus:
    can_reset: bool
    is_after_christmas: bool
    is_finalized: bool
    finalized_at: datetime | None
    days_until_christmas: int


@dataclass(frozen=True)
class ResetResult:
    children_reset: int
    reset_at: datetime


def _price_cents(price) -> int:
    if not price:
        return 0
    return int((Decimal(str(price)) * 100).to_integral_value())


async def finalize_lists(db: AsyncSession, *, parent: Parent, now: datetime) -> FinalizeResult:
    if parent.lists_finalized:
        raise InvalidState("Christmas lists have already been finalized")

    result = await db.execute(
        select(Child)
        .options(selectinload(Child.gift_list))
        .where(Child.parent_id == parent.id)
        .order_by(Child.id)
    )
    children = list(result.scalars().all())
    if not children:
        raise LimitExceeded("No children found. Please add children before finalizing lists.")

    summary: list[FinalizedChild] = []
    total = 0
    for child in children:
        if not child.gift_list:
            continue
        cost = sum(_price_cents(item.price) for item in child.gift_list)
        total += cost
        summary.append(
            FinalizedChild(
                child_id=child.id,
                child_name=child.display_name,
                gift_count=len(child.gift_list),
                gift_cost_cents=cost,
            )
        )
    if not summary:
        raise LimitExceeded("No gifts found in any child's list. Please add gifts before finalizing.")

    for child in children:
        child.gift_list_locked = True
        child.gift_list_locked_at = now
    parent.lists_finalized = True
    parent.lists_finalized_at = now
    parent.total_gift_cost_cents = total
    await db.flush()
    logger.info("Lists finalized parent_id=%s children=%s total_cents=%s", parent.id, len(summary), total)
    return FinalizeResult(finalized_at=now, total_gift_cost_cents=total, children=summary)


def get_reset_status(parent: Parent, now: datetime) -> ResetStatus:
    after = is_after_christmas(now)
    finalized = bool(parent.lists_finalized)
    return ResetStatus(
        can_reset=after and finalized,
        is_after_christmas=after,
        is_finalized=finalized,
        finalized_at=parent.lists_finalized_at,
        days_until_christmas=days_until_christmas(now),
    )


async def reset_for_new_year(db: AsyncSession, *, parent: Parent, now: datetime) -> ResetResult:
    """Start a fresh season. Wallet and neighbor balances carry over."""
    if not is_after_christmas(now):
        raise ResetNotAllowed("Christmas reset is only available after December 25th")
    if not parent.lists_finalized:
        raise ResetNotAllowed("No finalized Christmas lists to reset")

    children = list(
        (await db.execute(select(Child).where(Child.parent_id == parent.id).order_by(Child.id))).scalars().all()
    )
    child_ids = [child.id for child in children]

    for child in children:
        await points.reset_score(db, child=child, note=f"Season reset {now.year}")
        child.gift_list_locked = False
        child.gift_list_locked_at = None

    if child_ids:
        await db.execute(delete(child_gift_list).where(child_gift_list.c.child_id.in_(child_ids)))
        await db.execute(
            delete(SpecialGiftRequest)
            .where(SpecialGiftRequest.child_id.in_(child_ids))
            .execution_options(synchronize_session=False)
        )

    parent.lists_finalized = False
    parent.lists_finalized_at = None
    parent.total_gift_cost_cents = 0
    await db.flush()
    logger.info("Season reset parent_id=%s children=%s", parent.id, len(children))
    return ResetResult(children_reset=len(children), reset_at=now)
