"""
Service-level tests for gift requests, parent approvals and fulfillment.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from app.core.errors import Forbidden, InsufficientPoints, InvalidState, LimitExceeded, NotFound, WindowClosed
from app.models.models import (
    ApprovedBy,
    GiftOrder,
    GiftOrderStatus,
    OrderType,
    PointsReason,
    PointsTransaction,
)
from app.services import gift_orders
from factories import make_child, make_item, make_parent


SUMMER = datetime(2025, 6, 14, 10, 0)
IN_WINDOW = datetime(2025, 12, 15, 10, 0)


async def _order_count(db, child_id: int) -> int:
    return (
        await db.execute(select(func.count(GiftOrder.id)).where(GiftOrder.child_id == child_id))
    ).scalar_one()


async def _request(db, parent, child, item, order_type=OrderType.REWARD, now=SUMMER):
    return await gift_orders.request_gift(
        db,
        parent=parent,
        child_id=child.id,
        catalog_item_id=item.id,
        order_type=order_type,
        now=now,
    )


class TestRewardRequests:
    async def test_points_move_only_on_approval(self, db):
        """A $6 reward with 5 points and 300 cents of neighbor magic."""
        parent = await make_parent(db)
        child = await make_child(db, parent, score=5, neighbor_cents=300)
        item = await make_item(db, price=6)

        result = await _request(db, parent, child, item)
        await db.commit()

        assert result.requires_approval is True
        assert result.points_deducted == 0
        assert result.order.status == GiftOrderStatus.PENDING_APPROVAL.value
        assert result.order.magic_points_cost == 6
        assert child.score365 == 5
        assert child.neighbor_balance_cents == 300

        approval = await gift_orders.approve_gift_request(
            db, parent=parent, gift_order_id=result.order.id, approved=True, now=SUMMER, note="Good job"
        )
        await db.commit()

        order = approval.order
        assert order.status == GiftOrderStatus.APPROVED.value
        assert order.approved_by == ApprovedBy.PARENT.value
        assert order.parent_approval_note == "Good job"
        assert order.points_from_score == 5
        assert order.points_from_neighbor_cents == 100
        assert approval.points_deducted == 6
        assert approval.remaining_points == 2
        assert child.score365 == 0
        assert child.neighbor_balance_cents == 200

    async def test_auto_approve_small_reward(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=30)
        item = await make_item(db, price=12)
        await gift_orders.update_gift_settings(db, parent=parent, changes={"auto_approve_rewards": True})

        result = await _request(db, parent, child, item)
        await db.commit()

        assert result.requires_approval is False
        assert result.order.status == GiftOrderStatus.APPROVED.value
        assert result.order.approved_by == ApprovedBy.SYSTEM.value
        assert result.points_deducted == 12
        assert child.score365 == 18

    async def test_auto_approve_respects_threshold(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=60)
        item = await make_item(db, price=40)
        await gift_orders.update_gift_settings(db, parent=parent, changes={"auto_approve_rewards": True})

        result = await _request(db, parent, child, item)

        assert result.requires_approval is True
        assert child.score365 == 60

    async def test_yearly_reward_limit(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=100)
        item = await make_item(db, price=5)
        await gift_orders.update_gift_settings(
            db, parent=parent, changes={"max_reward_gifts_per_year": 1, "auto_approve_rewards": True}
        )
        await _request(db, parent, child, item)
        await db.commit()
        assert await _order_count(db, child.id) == 1

        with pytest.raises(LimitExceeded, match="Maximum reward gifts"):
            await _request(db, parent, child, item, now=SUMMER + timedelta(days=1))
        assert await _order_count(db, child.id) == 1

    async def test_last_year_rewards_do_not_count(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=100)
        item = await make_item(db, price=5)
        await gift_orders.update_gift_settings(
            db, parent=parent, changes={"max_reward_gifts_per_year": 1, "auto_approve_rewards": True}
        )
        await _request(db, parent, child, item, now=datetime(2024, 12, 31, 23, 0))
        await db.commit()

        result = await _request(db, parent, child, item, now=datetime(2025, 1, 1, 0, 30))
        assert result.order.status == GiftOrderStatus.APPROVED.value

    async def test_pending_rewards_do_not_use_a_slot(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=100)
        item = await make_item(db, price=5)
        await gift_orders.update_gift_settings(db, parent=parent, changes={"max_reward_gifts_per_year": 1})

        await _request(db, parent, child, item)
        await _request(db, parent, child, item)
        await db.commit()

        stats = await gift_orders.get_reward_gift_stats(db, parent=parent, child=child, now=SUMMER)
        assert stats.used_reward_gifts == 0
        assert stats.remaining_reward_gifts == 1

    async def test_approval_enforces_yearly_reward_limit(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=100)
        item = await make_item(db, price=5)
        await gift_orders.update_gift_settings(db, parent=parent, changes={"max_reward_gifts_per_year": 1})
        first = await _request(db, parent, child, item)
        second = await _request(db, parent, child, item)
        await gift_orders.approve_gift_request(
            db, parent=parent, gift_order_id=first.order.id, approved=True, now=SUMMER
        )
        await db.commit()
        assert child.score365 == 95

        with pytest.raises(LimitExceeded, match="Maximum reward gifts"):
            await gift_orders.approve_gift_request(
                db, parent=parent, gift_order_id=second.order.id, approved=True, now=SUMMER
            )

        assert child.score365 == 95
        assert second.order.status == GiftOrderStatus.PENDING_APPROVAL.value
        movements = (
            await db.execute(select(func.count(PointsTransaction.id)).where(PointsTransaction.child_id == child.id))
        ).scalar_one()
        assert movements == 1
        stats = await gift_orders.get_reward_gift_stats(db, parent=parent, child=child, now=SUMMER)
        assert stats.used_reward_gifts == 1

    async def test_approval_enforces_current_price_limit(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=100)
        item = await make_item(db, price=30)
        requested = await _request(db, parent, child, item)
        await gift_orders.update_gift_settings(db, parent=parent, changes={"max_reward_gift_price": 20})
        await db.commit()

        with pytest.raises(LimitExceeded, match="exceeds maximum reward gift price"):
            await gift_orders.approve_gift_request(
                db, parent=parent, gift_order_id=requested.order.id, approved=True, now=SUMMER
            )
        assert child.score365 == 100

    async def test_free_reward_can_be_auto_approved(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=10)
        item = await make_item(db, price=0, title="Sticker")
        await gift_orders.update_gift_settings(db, parent=parent, changes={"auto_approve_rewards": True})

        result = await _request(db, parent, child, item)

        assert result.order.status == GiftOrderStatus.APPROVED.value
        assert result.points_deducted == 0
        assert child.score365 == 10

    async def test_reward_price_limit(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=200)
        item = await make_item(db, price=75)

        with pytest.raises(LimitExceeded, match="exceeds maximum reward gift price"):
            await _request(db, parent, child, item)
        assert await _order_count(db, child.id) == 0

    async def test_not_enough_points_creates_nothing(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=3, neighbor_cents=150)
        item = await make_item(db, price=5)

        with pytest.raises(InsufficientPoints, match="Need 5, have 4"):
            await _request(db, parent, child, item)
        assert await _order_count(db, child.id) == 0

    async def test_inactive_gift_not_found(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=50)
        item = await make_item(db, price=5, is_active=False)

        with pytest.raises(NotFound):
            await _request(db, parent, child, item)

    async def test_other_parents_child_forbidden(self, db):
        parent = await make_parent(db)
        stranger = await make_parent(db)
        child = await make_child(db, parent, score=50)
        item = await make_item(db, price=5)

        with pytest.raises(Forbidden):
            await _request(db, stranger, child, item)


class TestChristmasRequests:
    async def test_closed_outside_window(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=50)
        item = await make_item(db, price=20)

        with pytest.raises(WindowClosed, match="Window opens in"):
            await _request(db, parent, child, item, order_type=OrderType.CHRISTMAS, now=datetime(2025, 12, 1, 9))
        assert await _order_count(db, child.id) == 0

    async def test_auto_approved_inside_window(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=50)
        item = await make_item(db, price=20)

        result = await _request(db, parent, child, item, order_type=OrderType.CHRISTMAS, now=IN_WINDOW)
        await db.commit()

        order = result.order
        assert order.status == GiftOrderStatus.APPROVED.value
        assert order.is_christmas_eligible is True
        assert order.christmas_year == 2025
        assert order.shipping_address["recipient_name"] == "Tim"
        assert child.score365 == 30

    async def test_manual_approval_when_auto_disabled(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=50)
        item = await make_item(db, price=20)
        await gift_orders.update_gift_settings(db, parent=parent, changes={"auto_approve_christmas": False})

        result = await _request(db, parent, child, item, order_type=OrderType.CHRISTMAS, now=IN_WINDOW)

        assert result.requires_approval is True
        assert child.score365 == 50


class TestParentDecision:
    async def test_deny_cancels_without_points(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=40)
        item = await make_item(db, price=10)
        requested = await _request(db, parent, child, item)

        denied = await gift_orders.approve_gift_request(
            db, parent=parent, gift_order_id=requested.order.id, approved=False, now=SUMMER, note="Not now"
        )
        await db.commit()

        assert denied.order.status == GiftOrderStatus.CANCELLED.value
        assert denied.order.closed_at == SUMMER
        assert denied.points_deducted == 0
        assert child.score365 == 40

        with pytest.raises(InvalidState, match="not pending approval"):
            await gift_orders.approve_gift_request(
                db, parent=parent, gift_order_id=requested.order.id, approved=True, now=SUMMER
            )

    async def test_approval_rechecks_points(self, db):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=10)
        item = await make_item(db, price=8)
        first = await _request(db, parent, child, item)
        second = await _request(db, parent, child, item)
        await gift_orders.approve_gift_request(
            db, parent=parent, gift_order_id=first.order.id, approved=True, now=SUMMER
        )
        await db.commit()

        with pytest.raises(InsufficientPoints):
            await gift_orders.approve_gift_request(
                db, parent=parent, gift_order_id=second.order.id, approved=True, now=SUMMER
            )

    async def test_pending_list_is_per_parent(self, db):
        parent = await make_parent(db)
        other = await make_parent(db)
        child = await make_child(db, parent, score=40)
        other_child = await make_child(db, other, score=40, name="Ana")
        item = await make_item(db, price=10)
        await _request(db, parent, child, item)
        await _request(db, other, other_child, item)
        await db.commit()

        pending = await gift_orders.get_pending_approvals(db, parent=parent)
        assert [order.child.display_name for order in pending] == ["Tim"]


class TestFulfillment:
    async def _approved(self, db, *, score=365, price=10):
        parent = await make_parent(db)
        child = await make_child(db, parent, score=score)
        item = await make_item(db, price=price)
        await gift_orders.update_gift_settings(db, parent=parent, changes={"auto_approve_rewards": True})
        result = await _request(db, parent, child, item)
        await db.commit()
        return child, result.order

    async def test_happy_path_to_delivered(self, db):
        child, order = await self._approved(db)

        await gift_orders.update_order_status(
            db, gift_order_id=order.id, status=GiftOrderStatus.ORDERED, now=SUMMER, external_order_id="EXT-1"
        )
        assert order.estimated_delivery_date == SUMMER + timedelta(days=7)
        assert order.external_order_id == "EXT-1"

        await gift_orders.update_order_status(
            db, gift_order_id=order.id, status=GiftOrderStatus.SHIPPED, now=SUMMER, tracking_number="1Z999"
        )
        delivered_at = SUMMER + timedelta(days=5)
        await gift_orders.update_order_status(
            db, gift_order_id=order.id, status=GiftOrderStatus.DELIVERED, now=delivered_at
        )
        await db.commit()

        assert order.status == GiftOrderStatus.DELIVERED.value
        assert order.tracking_number == "1Z999"
        assert order.actual_delivery_date == delivered_at
        assert order.closed_at == delivered_at
        assert order.version == 5

        with pytest.raises(InvalidState):
            await gift_orders.update_order_status(
                db, gift_order_id=order.id, status=GiftOrderStatus.CANCELLED, now=delivered_at
            )

    async def test_cancelling_approved_order_refunds(self, db):
        child, order = await self._approved(db, score=365, price=10)
        assert child.score365 == 355

        await gift_orders.update_order_status(db, gift_order_id=order.id, status=GiftOrderStatus.CANCELLED, now=SUMMER)
        await db.commit()

        assert order.status == GiftOrderStatus.CANCELLED.value
        assert child.score365 == 365
        refunds = (
            await db.execute(
                select(PointsTransaction).where(
                    PointsTransaction.gift_order_id == order.id,
                    PointsTransaction.reason == PointsReason.GIFT_REFUND.value,
                )
            )
        ).scalars().all()
        assert len(refunds) == 1
        assert refunds[0].score_delta == 10

    async def test_ordered_orders_cannot_be_cancelled(self, db):
        _, order = await self._approved(db)
        await gift_orders.update_order_status(db, gift_order_id=order.id, status=GiftOrderStatus.ORDERED, now=SUMMER)

        with pytest.raises(InvalidState):
            await gift_orders.update_order_status(
                db, gift_order_id=order.id, status=GiftOrderStatus.CANCELLED, now=SUMMER
            )

    async def test_unknown_order(self, db):
        with pytest.raises(NotFound):
            await gift_orders.update_order_status(db, gift_order_id=999, status=GiftOrderStatus.ORDERED, now=SUMMER)
