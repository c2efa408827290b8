from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from app.models.models import SpecialRequestKind, SpecialRequestStatus


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class CatalogItemBase(BaseModel):
    title: str = Field(min_length=2, max_length=255)
    brand: str | None = Field(default=None, max_length=120)
    price: float | None = Field(default=None, ge=0)
    image_url: str | None = Field(default=None, max_length=2048)
    product_url: str | None = Field(default=None, max_length=2048)
    retailer: str | None = Field(default=None, max_length=120)
    category: str | None = Field(default=None, max_length=120)

    @field_validator("title")
    @classmethod
    def _title_strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("image_url", "product_url")
    @classmethod
    def _normalize_url(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class CatalogItemCreate(CatalogItemBase):
    is_active: bool = True


class CatalogItemUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=2, max_length=255)
    brand: str | None = None
    price: float | None = Field(default=None, ge=0)
    image_url: str | None = None
    product_url: str | None = None
    retailer: str | None = None
    category: str | None = None
    is_active: bool | None = None


class CatalogItemPublic(CatalogItemBase):
    id: int
    is_active: bool
    magic_points: int = 0

    model_config = {"from_attributes": True}


class ChildCreate(BaseModel):
    display_name: str = Field(min_length=1, max_length=120)
    avatar_url: str | None = Field(default=None, max_length=512)
    percent_allocation: int = Field(default=0, ge=0, le=100)
    donations_enabled: bool = True

    @field_validator("display_name")
    @classmethod
    def _name_strip(cls, value: str) -> str:
        return value.strip()


class ChildUpdate(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=120)
    avatar_url: str | None = None
    percent_allocation: int | None = Field(default=None, ge=0, le=100)
    donations_enabled: bool | None = None

    @field_validator("display_name")
    @classmethod
    def _name_update_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class ChildPublic(BaseModel):
    id: int
    parent_id: int
    display_name: str
    avatar_url: str | None = None
    percent_allocation: int
    score365: int
    neighbor_balance_cents: int
    available_points: int = 0
    donations_enabled: bool
    share_slug: str
    donor_count: int
    donor_total_cents: int
    gift_list_locked: bool
    gift_list_locked_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class GiftListUpdate(BaseModel):
    catalog_item_id: int


class MagicVoteRequest(BaseModel):
    points: int = Field(ge=1, le=100)


class MagicVoteResponse(BaseModel):
    success: bool = True
    points_added: int
    new_score: int
    wallet_balance_cents: int


class EarlyGiftRequestCreate(BaseModel):
    catalog_item_id: int
    reason: str = Field(min_length=1, max_length=500)
    requested_points: int = Field(gt=0)

    @field_validator("reason")
    @classmethod
    def _reason_strip(cls, value: str) -> str:
        return value.strip()


class FriendGiftRequestCreate(BaseModel):
    catalog_item_id: int
    friend_name: str = Field(min_length=1, max_length=120)
    friend_address: str = Field(min_length=1, max_length=500)
    message: str = Field(min_length=1, max_length=200)
    requested_points: int = Field(gt=0)


class SpecialRequestPublic(BaseModel):
    id: int
    child_id: int
    catalog_item_id: int | None = None
    kind: SpecialRequestKind
    status: SpecialRequestStatus
    gift_title: str
    gift_price: float
    gift_image_url: str | None = None
    requested_points: int
    points_from_score: int = 0
    points_from_neighbor_cents: int = 0
    reason: str | None = None
    friend_name: str | None = None
    friend_address: str | None = None
    message: str | None = None
    parent_response: str | None = None
    requested_at: datetime
    responded_at: datetime | None = None

    model_config = {"from_attributes": True}


class PendingSpecialRequestPublic(SpecialRequestPublic):
    child_name: str


class SpecialRequestRespond(BaseModel):
    approve: bool
    parent_response: str | None = Field(default=None, max_length=300)


class SpecialRequestResponse(BaseModel):
    success: bool = True
    request: SpecialRequestPublic
    magic_points_deducted: int
    remaining_points: int
    message: str


class PointsTransactionPublic(BaseModel):
    id: int
    reason: str
    score_delta: int
    neighbor_cents_delta: int
    score_after: int
    neighbor_cents_after: int
    gift_order_id: int | None = None
    special_request_id: int | None = None
    note: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ChristmasSettingsPublic(BaseModel):
    allow_early_gifts: bool
    allow_friend_gifts: bool
    max_friend_gift_value: float
    monthly_budget_goal: int
    reminder_emails: bool
    shipping_address: dict | None = None
    setup_completed: bool
    lists_finalized: bool
    lists_finalized_at: datetime | None = None
    total_gift_cost_cents: int

    model_config = {"from_attributes": True}


class ChristmasSettingsUpdate(BaseModel):
    allow_early_gifts: bool | None = None
    allow_friend_gifts: bool | None = None
    max_friend_gift_value: float | None = Field(default=None, ge=0)
    monthly_budget_goal: int | None = Field(default=None, ge=0)
    reminder_emails: bool | None = None
    shipping_address: dict | None = None
    setup_completed: bool | None = None


class FinalizedChildPublic(BaseModel):
    child_id: int
    child_name: str
    gift_count: int
    gift_cost_cents: int


class FinalizeResponse(BaseModel):
    success: bool = True
    finalized_at: datetime
    total_gift_cost_cents: int
    children: list[FinalizedChildPublic]


class ResetStatusPublic(BaseModel):
    can_reset: bool
    is_after_christmas: bool
    is_finalized: bool
    finalized_at: datetime | None = None
    days_until_christmas: int


class ResetResponse(BaseModel):
    success: bool = True
    children_reset: int
    reset_at: datetime
    message: str
