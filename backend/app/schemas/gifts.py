from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from app.models.models import GiftOrderStatus, OrderType


class ShippingAddress(BaseModel):
    recipient_name: str = Field(min_length=1, max_length=120)
    street: str = Field(min_length=1, max_length=255)
    apartment: str | None = Field(default=None, max_length=120)
    city: str = Field(min_length=1, max_length=120)
    state: str = Field(min_length=1, max_length=120)
    zip_code: str = Field(min_length=1, max_length=20)
    country: str = Field(default="US", max_length=2)


class GiftRequestCreate(BaseModel):
    child_id: int
    catalog_item_id: int
    order_type: OrderType
    behavior_reason: str | None = Field(default=None, max_length=500)
    shipping_address: ShippingAddress | None = None

    @field_validator("behavior_reason")
    @classmethod
    def _reason_strip(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class GiftOrderPublic(BaseModel):
    id: int
    child_id: int
    parent_id: int
    catalog_item_id: int | None = None
    order_type: OrderType
    status: GiftOrderStatus
    magic_points_cost: int
    points_from_score: int = 0
    points_from_neighbor_cents: int = 0
    gift_title: str
    gift_brand: str | None = None
    gift_price: float
    gift_image_url: str | None = None
    retailer_product_url: str | None = None
    retailer: str | None = None
    recipient_name: str
    shipping_address: dict
    external_order_id: str | None = None
    tracking_number: str | None = None
    estimated_delivery_date: datetime | None = None
    actual_delivery_date: datetime | None = None
    requested_at: datetime
    approved_at: datetime | None = None
    approved_by: str | None = None
    parent_approval_note: str | None = None
    closed_at: datetime | None = None
    christmas_year: int | None = None
    is_christmas_eligible: bool = False
    behavior_reason: str | None = None
    version: int = 1

    model_config = {"from_attributes": True}


class ChildSummary(BaseModel):
    id: int
    display_name: str
    avatar_url: str | None = None
    score365: int

    model_config = {"from_attributes": True}


class PendingApprovalPublic(GiftOrderPublic):
    child: ChildSummary


class GiftRequestResponse(BaseModel):
    success: bool = True
    gift_order_id: int
    status: GiftOrderStatus
    magic_points_deducted: int
    remaining_magic_points: int
    requires_approval: bool
    message: str


class ApprovalRequest(BaseModel):
    approved: bool
    note: str | None = Field(default=None, max_length=500)


class ApprovalResponse(BaseModel):
    success: bool = True
    gift_order_id: int
    status: GiftOrderStatus
    magic_points_deducted: int
    remaining_magic_points: int
    message: str


class GiftSettingsPublic(BaseModel):
    max_reward_gifts_per_year: int
    max_reward_gift_price: float
    require_approval_over: float
    auto_approve_rewards: bool
    auto_approve_christmas: bool
    email_on_gift_request: bool
    email_on_gift_shipped: bool
    email_on_gift_delivered: bool

    model_config = {"from_attributes": True}


class GiftSettingsUpdate(BaseModel):
    max_reward_gifts_per_year: int | None = Field(default=None, ge=0, le=5)
    max_reward_gift_price: float | None = Field(default=None, ge=0)
    require_approval_over: float | None = Field(default=None, ge=0)
    auto_approve_rewards: bool | None = None
    auto_approve_christmas: bool | None = None
    email_on_gift_request: bool | None = None
    email_on_gift_shipped: bool | None = None
    email_on_gift_delivered: bool | None = None


class RewardGiftStatsPublic(BaseModel):
    used_reward_gifts: int
    max_reward_gifts: int
    remaining_reward_gifts: int
    max_reward_gift_price: float


class ChristmasWindowPublic(BaseModel):
    year: int
    start_date: datetime
    end_date: datetime
    is_active: bool
    days_until_start: int


class OrderStatusUpdate(BaseModel):
    status: GiftOrderStatus
    tracking_number: str | None = Field(default=None, max_length=255)
    external_order_id: str | None = Field(default=None, max_length=255)
