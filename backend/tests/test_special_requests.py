"""
Tests for early gift and friend gift requests.
"""
from datetime import datetime

import pytest

from app.core.errors import (
    FeatureDisabled,
    Forbidden,
    GiftWorkflowError,
    InsufficientPoints,
    InvalidState,
    LimitExceeded,
)
from app.models.models import SpecialRequestKind, SpecialRequestStatus
from app.services import gift_orders, special_requests
from factories import make_child, make_item, make_parent


NOW = datetime(2025, 8, 20, 16, 0)


async def _family(db, *, score=50, neighbor_cents=0, **parent_fields):
    parent = await make_parent(db, **parent_fields)
    child = await make_child(db, parent, score=score, neighbor_cents=neighbor_cents)
    return parent, child


async def _with_list(db, parent, child):
    return await gift_orders.get_owned_child(db, parent=parent, child_id=child.id, with_requests=True)


class TestEarlyGifts:
    async def test_disabled_by_default(self, db):
        parent, child = await _family(db)
        item = await make_item(db, price=15)

        with pytest.raises(FeatureDisabled):
            await special_requests.create_early_gift_request(
                db, parent=parent, child=child, catalog_item_id=item.id, reason="Good grades", requested_points=15, now=NOW
            )

    async def test_gift_must_be_on_the_list(self, db):
        parent, child = await _family(db, allow_early_gifts=True)
        item = await make_item(db, price=15)
        child = await _with_list(db, parent, child)

        with pytest.raises(GiftWorkflowError, match="not in child's gift list"):
            await special_requests.create_early_gift_request(
                db, parent=parent, child=child, catalog_item_id=item.id, reason="Good grades", requested_points=15, now=NOW
            )

    async def test_gift_needs_price_and_image(self, db):
        parent, child = await _family(db, allow_early_gifts=True)
        item = await make_item(db, price=15, image_url=None)
        child = await _with_list(db, parent, child)

        with pytest.raises(GiftWorkflowError, match="missing required data"):
            await special_requests.create_early_gift_request(
                db, parent=parent, child=child, catalog_item_id=item.id, reason="Good grades", requested_points=15, now=NOW
            )

    async def test_request_then_approve(self, db):
        parent, child = await _family(db, score=10, neighbor_cents=800, allow_early_gifts=True)
        item = await make_item(db, price=15)
        child = await _with_list(db, parent, child)
        child.gift_list.append(item)
        await db.flush()

        request = await special_requests.create_early_gift_request(
            db, parent=parent, child=child, catalog_item_id=item.id, reason="Good grades", requested_points=15, now=NOW
        )
        await db.commit()

        assert request.kind == SpecialRequestKind.EARLY_GIFT.value
        assert request.status == SpecialRequestStatus.PENDING.value
        assert request.requested_at == NOW
        # Nothing is spent while the request waits.
        assert child.score365 == 10
        assert child.neighbor_balance_cents == 800

        answer = await special_requests.respond_special_request(
            db, parent=parent, request_id=request.id, approve=True, now=NOW, parent_response="Enjoy!"
        )
        await db.commit()

        assert answer.request.status == SpecialRequestStatus.APPROVED.value
        assert answer.request.responded_at == NOW
        assert answer.request.parent_response == "Enjoy!"
        assert answer.points_deducted == 15
        assert answer.request.points_from_score == 10
        assert answer.request.points_from_neighbor_cents == 500
        assert child.score365 == 0
        assert child.neighbor_balance_cents == 300
        assert answer.remaining_points == 3

    async def test_not_enough_points(self, db):
        parent, child = await _family(db, score=4, allow_early_gifts=True)
        item = await make_item(db, price=15)
        child = await _with_list(db, parent, child)
        child.gift_list.append(item)
        await db.flush()

        with pytest.raises(InsufficientPoints):
            await special_requests.create_early_gift_request(
                db, parent=parent, child=child, catalog_item_id=item.id, reason="Please", requested_points=15, now=NOW
            )


class TestFriendGifts:
    async def _create(self, db, parent, child, item, points=10):
        return await special_requests.create_friend_gift_request(
            db,
            parent=parent,
            child=child,
            catalog_item_id=item.id,
            friend_name="Sam",
            friend_address="42 Elm Street",
            message="Happy holidays!",
            requested_points=points,
            now=NOW,
        )

    async def test_price_limit(self, db):
        parent, child = await _family(db, score=100)
        item = await make_item(db, price=30)

        with pytest.raises(LimitExceeded, match="friend gift limit"):
            await self._create(db, parent, child, item, points=30)

    async def test_disabled(self, db):
        parent, child = await _family(db, allow_friend_gifts=False)
        item = await make_item(db, price=10)

        with pytest.raises(FeatureDisabled):
            await self._create(db, parent, child, item)

    async def test_deny_spends_nothing(self, db):
        parent, child = await _family(db, score=40)
        item = await make_item(db, price=10)
        request = await self._create(db, parent, child, item)
        await db.commit()

        answer = await special_requests.respond_special_request(
            db, parent=parent, request_id=request.id, approve=False, now=NOW, parent_response="Maybe next time"
        )
        await db.commit()

        assert answer.request.status == SpecialRequestStatus.DENIED.value
        assert answer.points_deducted == 0
        assert child.score365 == 40

    async def test_answer_only_once(self, db):
        parent, child = await _family(db, score=40)
        item = await make_item(db, price=10)
        request = await self._create(db, parent, child, item)
        await special_requests.respond_special_request(
            db, parent=parent, request_id=request.id, approve=True, now=NOW
        )
        await db.commit()

        with pytest.raises(InvalidState, match="already been answered"):
            await special_requests.respond_special_request(
                db, parent=parent, request_id=request.id, approve=True, now=NOW
            )
        assert child.score365 == 30

    async def test_other_parent_cannot_answer(self, db):
        parent, child = await _family(db, score=40)
        stranger = await make_parent(db)
        item = await make_item(db, price=10)
        request = await self._create(db, parent, child, item)

        with pytest.raises(Forbidden):
            await special_requests.respond_special_request(
                db, parent=stranger, request_id=request.id, approve=True, now=NOW
            )

    async def test_pending_list(self, db):
        parent, child = await _family(db, score=40)
        item = await make_item(db, price=10)
        first = await self._create(db, parent, child, item)
        second = await self._create(db, parent, child, item)
        await special_requests.respond_special_request(db, parent=parent, request_id=first.id, approve=False, now=NOW)
        await db.commit()

        pending = await special_requests.list_pending_special_requests(db, parent=parent)
        assert [row.id for row in pending] == [second.id]
        assert pending[0].child.display_name == "Tim"
