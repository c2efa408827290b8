"""Audit logging for critical operations."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import Request


logger = logging.getLogger("santa.audit")

SENSITIVE_KEYS = ("password", "token", "secret", "key", "authorization", "client_secret")


class AuditAction(str, Enum):
    """Audit action types."""
    # Authentication
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    REGISTER = "register"

    # Gift workflow
    GIFT_REQUESTED = "gift_requested"
    GIFT_AUTO_APPROVED = "gift_auto_approved"
    GIFT_APPROVED = "gift_approved"
    GIFT_DENIED = "gift_denied"
    ORDER_STATUS_CHANGED = "order_status_changed"

    # Early / friend gifts
    SPECIAL_REQUEST_CREATED = "special_request_created"
    SPECIAL_REQUEST_APPROVED = "special_request_approved"
    SPECIAL_REQUEST_DENIED = "special_request_denied"

    # Points and money
    MAGIC_VOTE = "magic_vote"
    WALLET_TOPUP_CREATED = "wallet_topup_created"
    DONATION_CREATED = "donation_created"
    LEDGER_RECONCILED = "ledger_reconciled"

    # Season
    LISTS_FINALIZED = "lists_finalized"
    YEARLY_RESET = "yearly_reset"

    # Rate limit
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


def audit_log(
    action: AuditAction,
    request: Request | None = None,
    user_id: int | str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """
    Log an audit event.

    Args:
        action: The action being performed
        request: FastAPI request object (for IP, user agent)
        user_id: ID of the user performing the action
        details: Additional details about the action
        success: Whether the action was successful
    """
    event: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action.value,
        "success": success,
    }

    if user_id is not None:
        event["user_id"] = str(user_id)

    if request:
        client_host = request.client.host if request.client else None
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_host = forwarded.split(",")[0].strip()

        event["ip"] = client_host
        event["user_agent"] = request.headers.get("User-Agent", "")[:200]
        event["request_id"] = request.headers.get("X-Request-Id", "")

    if details:
        event["details"] = {
            key: "***REDACTED***" if key in SENSITIVE_KEYS else value
            for key, value in details.items()
        }

    if success:
        logger.info("AUDIT: %s", event)
    else:
        logger.warning("AUDIT: %s", event)


def audit_login_success(request: Request, user_id: int, email: str) -> None:
    audit_log(AuditAction.LOGIN, request=request, user_id=user_id, details={"email": email})


def audit_login_failed(request: Request, email: str, reason: str) -> None:
    audit_log(
        AuditAction.LOGIN_FAILED,
        request=request,
        details={"email": email, "reason": reason},
        success=False,
    )


def audit_logout(request: Request, user_id: int) -> None:
    audit_log(AuditAction.LOGOUT, request=request, user_id=user_id)


def audit_register(request: Request, user_id: int, email: str) -> None:
    audit_log(AuditAction.REGISTER, request=request, user_id=user_id, details={"email": email})


def audit_gift_action(
    action: AuditAction,
    request: Request | None,
    user_id: int,
    gift_order_id: int,
    child_id: int,
    details: dict[str, Any] | None = None,
) -> None:
    """Log a gift order operation."""
    event_details: dict[str, Any] = {"gift_order_id": gift_order_id, "child_id": child_id}
    if details:
        event_details.update(details)
    audit_log(action, request=request, user_id=user_id, details=event_details)


def audit_special_request_action(
    action: AuditAction,
    request: Request,
    user_id: int,
    request_id: int,
    child_id: int,
    details: dict[str, Any] | None = None,
) -> None:
    event_details: dict[str, Any] = {"special_request_id": request_id, "child_id": child_id}
    if details:
        event_details.update(details)
    audit_log(action, request=request, user_id=user_id, details=event_details)


def audit_rate_limit_exceeded(request: Request, endpoint: str, retry_after: int) -> None:
    audit_log(
        AuditAction.RATE_LIMIT_EXCEEDED,
        request=request,
        details={"endpoint": endpoint, "retry_after": retry_after},
        success=False,
    )
