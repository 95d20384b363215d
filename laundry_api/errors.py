# laundry_api/errors.py

from fastapi import Request
from fastapi.responses import JSONResponse
import logging

logger = logging.getLogger(__name__)


class LaundryError(Exception):
    """
    Base class for client-visible domain errors.

    Each subclass carries a stable `code` and the HTTP status it maps to, plus
    optional context that is echoed back to the client next to the message.
    """
    code = "LaundryError"
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class InvalidTransition(LaundryError):
    code = "InvalidTransition"
    status_code = 409

    def __init__(self, current_status, requested):
        current = getattr(current_status, "value", current_status)
        wanted = getattr(requested, "value", requested)
        super().__init__(
            f"Cannot apply '{wanted}' to an order in status '{current}'.",
            current_status=current,
            requested=wanted,
        )


class WrongActorRole(LaundryError):
    code = "WrongActorRole"
    status_code = 403


class NotOrderParticipant(LaundryError):
    code = "NotOrderParticipant"
    status_code = 403


class OtpMismatch(LaundryError):
    code = "OtpMismatch"
    status_code = 400


class AlreadyClaimed(LaundryError):
    code = "AlreadyClaimed"
    status_code = 409


class AlreadyCredited(LaundryError):
    # retries are safe, so a duplicate settlement is reported as a no-op
    code = "AlreadyCredited"
    status_code = 200


class InsufficientBalance(LaundryError):
    code = "InsufficientBalance"
    status_code = 400


class CodNotConfirmed(LaundryError):
    code = "CodNotConfirmed"
    status_code = 409


class CodAlreadyConfirmed(LaundryError):
    code = "CodAlreadyConfirmed"
    status_code = 409


class CodAmountMismatch(LaundryError):
    code = "CodAmountMismatch"
    status_code = 400


class PaymentNotCod(LaundryError):
    code = "PaymentNotCod"
    status_code = 400


class NothingToSubmit(LaundryError):
    code = "NothingToSubmit"
    status_code = 400


class PaymentNotCompleted(LaundryError):
    code = "PaymentNotCompleted"
    status_code = 402


class InvalidOrder(LaundryError):
    code = "InvalidOrder"
    status_code = 400


class OrderNotFound(LaundryError):
    code = "OrderNotFound"
    status_code = 404

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} not found.", order_id=order_id)


class WithdrawalNotFound(LaundryError):
    code = "WithdrawalNotFound"
    status_code = 404

    def __init__(self, withdrawal_id: int):
        super().__init__(f"Withdrawal request {withdrawal_id} not found.", withdrawal_id=withdrawal_id)


class InvalidWithdrawalTransition(LaundryError):
    code = "InvalidWithdrawalTransition"
    status_code = 409


class SubmissionNotFound(LaundryError):
    code = "SubmissionNotFound"
    status_code = 404


class AccountExists(LaundryError):
    code = "AccountExists"
    status_code = 409


class ServiceExists(LaundryError):
    code = "ServiceExists"
    status_code = 409


class ServiceNotFound(LaundryError):
    code = "ServiceNotFound"
    status_code = 404


async def laundry_error_handler(request: Request, exc: LaundryError) -> JSONResponse:
    logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, **exc.context},
    )
