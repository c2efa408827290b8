"""Stripe payment gateway.

Without a Stripe secret key (or with ``PAYMENTS_DEMO_MODE``) intents are
fabricated locally and webhooks are accepted unsigned, so the wallet flow
works in development and tests.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

import stripe
from starlette.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.errors import PaymentError, WebhookRejected


logger = logging.getLogger("santa.payments")


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str | None
    status: str
    demo: bool = False


class PaymentGateway:
    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        demo: bool | None = None,
    ) -> None:
        self.secret_key = settings.stripe_secret_key if secret_key is None else secret_key
        self.webhook_secret = settings.stripe_webhook_secret if webhook_secret is None else webhook_secret
        self.demo = settings.demo_payments if demo is None else demo

    async def create_payment_intent(
        self,
        *,
        amount_cents: int,
        metadata: dict[str, str],
        description: str,
        receipt_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> PaymentIntent:
        if self.demo:
            intent_id = f"pi_demo_{uuid4().hex[:24]}"
            logger.info("Demo payment intent id=%s amount_cents=%s", intent_id, amount_cents)
            return PaymentIntent(
                id=intent_id,
                client_secret=f"{intent_id}_secret_demo",
                status="requires_payment_method",
                demo=True,
            )

        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": "usd",
            "description": description,
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
            "api_key": self.secret_key,
        }
        if receipt_email:
            params["receipt_email"] = receipt_email
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            intent = await run_in_threadpool(stripe.PaymentIntent.create, **params)
        except stripe.StripeError as exc:
            message = getattr(exc, "user_message", None) or str(exc)
            logger.error("Stripe error creating intent: %s", message)
            raise PaymentError(f"Payment could not be started: {message}") from exc

        logger.info("Stripe payment intent id=%s amount_cents=%s", intent.id, amount_cents)
        return PaymentIntent(id=intent.id, client_secret=intent.client_secret, status=intent.status)

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify a webhook delivery and return the event as a plain dict."""
        if self.webhook_secret:
            try:
                stripe.Webhook.construct_event(payload, signature or "", self.webhook_secret)
            except stripe.SignatureVerificationError as exc:
                logger.warning("Webhook signature verification failed")
                raise WebhookRejected("Invalid webhook signature") from exc
            except ValueError as exc:
                raise WebhookRejected("Invalid webhook payload") from exc
        elif not self.demo:
            logger.error("Webhook received but STRIPE_WEBHOOK_SECRET is not configured")
            raise WebhookRejected("Webhook secret is not configured")

        try:
            event = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise WebhookRejected("Invalid webhook payload") from exc
        if not isinstance(event, dict):
            raise WebhookRejected("Invalid webhook payload")
        return event


def get_payment_gateway() -> PaymentGateway:
    return PaymentGateway()
