import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.core.errors import InvalidState
from app.models.models import GiftOrder, GiftOrderStatus, utcnow


logger = logging.getLogger("santa.orders")

TRANSITIONS: dict[GiftOrderStatus, frozenset[GiftOrderStatus]] = {
    GiftOrderStatus.PENDING_APPROVAL: frozenset(
        {GiftOrderStatus.APPROVED, GiftOrderStatus.CANCELLED, GiftOrderStatus.FAILED}
    ),
    GiftOrderStatus.APPROVED: frozenset(
        {GiftOrderStatus.ORDERED, GiftOrderStatus.CANCELLED, GiftOrderStatus.FAILED}
    ),
    GiftOrderStatus.ORDERED: frozenset({GiftOrderStatus.SHIPPED}),
    GiftOrderStatus.SHIPPED: frozenset({GiftOrderStatus.DELIVERED}),
    GiftOrderStatus.DELIVERED: frozenset(),
    GiftOrderStatus.CANCELLED: frozenset(),
    GiftOrderStatus.FAILED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

# Orders that consume a reward slot for the year.
COUNTED_REWARD_STATUSES = (
    GiftOrderStatus.APPROVED,
    GiftOrderStatus.ORDERED,
    GiftOrderStatus.SHIPPED,
    GiftOrderStatus.DELIVERED,
)


def can_transition(current: GiftOrderStatus | str, target: GiftOrderStatus | str) -> bool:
    return GiftOrderStatus(target) in TRANSITIONS[GiftOrderStatus(current)]


def assert_transition(current: GiftOrderStatus | str, target: GiftOrderStatus | str) -> None:
    current = GiftOrderStatus(current)
    target = GiftOrderStatus(target)
    if current in TERMINAL_STATUSES:
        raise InvalidState(f"Gift order is already {current.value} and cannot change")
    if target not in TRANSITIONS[current]:
        raise InvalidState(f"Gift order cannot move from {current.value} to {target.value}")


async def transition_order(
    db: AsyncSession,
    order: GiftOrder,
    target: GiftOrderStatus,
    **values: Any,
) -> None:
    """Move ``order`` to ``target`` only if its stored status is still the one we read.

    The UPDATE is conditional on the old status, so two concurrent callers
    cannot both win the same transition.
    """
    expected = GiftOrderStatus(order.status)
    assert_transition(expected, target)
    values = {
        "status": target.value,
        "version": (order.version or 1) + 1,
        "updated_at": utcnow(),
        **values,
    }
    result = await db.execute(
        update(GiftOrder)
        .where(GiftOrder.id == order.id, GiftOrder.status == expected.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.warning(
            "Order transition lost race order_id=%s expected=%s target=%s",
            order.id,
            expected.value,
            target.value,
        )
        raise InvalidState("Gift order was already processed by another request")
    for key, value in values.items():
        set_committed_value(order, key, value)
