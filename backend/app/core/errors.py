"""Domain errors raised by the gift and points services.

Routes never catch these themselves; the exception handler registered in
``app.main`` turns them into JSON error responses with the status below.
"""

from fastapi import status


class GiftWorkflowError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def error(self) -> str:
        return type(self).__name__


class AuthenticationRequired(GiftWorkflowError):
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(GiftWorkflowError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(GiftWorkflowError):
    status_code = status.HTTP_404_NOT_FOUND


class InsufficientPoints(GiftWorkflowError):
    pass


class WindowClosed(GiftWorkflowError):
    pass


class LimitExceeded(GiftWorkflowError):
    pass


class FeatureDisabled(GiftWorkflowError):
    pass


class ResetNotAllowed(GiftWorkflowError):
    pass


class InvalidState(GiftWorkflowError):
    status_code = status.HTTP_409_CONFLICT


class PaymentError(GiftWorkflowError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED


class InsufficientFunds(GiftWorkflowError):
    pass


class WebhookRejected(PaymentError):
    status_code = status.HTTP_400_BAD_REQUEST
