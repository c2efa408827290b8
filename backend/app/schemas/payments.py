from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from app.models.models import LedgerStatus


class TopUpRequest(BaseModel):
    amount_cents: int = Field(gt=0)


class PaymentIntentPublic(BaseModel):
    payment_intent_id: str
    client_secret: str | None = None
    publishable_key: str | None = None
    demo: bool = False


class TopUpResponse(PaymentIntentPublic):
    entry_id: int
    amount_cents: int
    status: LedgerStatus


class WalletEntryPublic(BaseModel):
    id: int
    type: str
    amount_cents: int
    currency: str
    status: LedgerStatus
    stripe_payment_intent_id: str | None = None
    description: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class WalletSummary(BaseModel):
    wallet_balance_cents: int
    pending_cents: int
    entries: list[WalletEntryPublic]


class DonationRequest(BaseModel):
    amount_cents: int = Field(gt=0)
    from_name: str | None = Field(default=None, max_length=120)
    from_email: EmailStr | None = None
    message: str | None = Field(default=None, max_length=500)


class DonationResponse(PaymentIntentPublic):
    entry_id: int
    child_name: str
    amount_cents: int


class WebhookResponse(BaseModel):
    received: bool = True
    handled: bool
    ledger: str | None = None
    entry_id: int | None = None
    status: str | None = None
    changed: bool = False
