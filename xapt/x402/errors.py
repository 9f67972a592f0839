"""
Error taxonomy for the xAPT payment protocol.

Every error carries a stable ``code`` (an ``ErrorCode`` value) and a
human-readable message. Header decoding never raises: it reports a
``DecodeError`` value instead (see ``codec.py``).
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable error codes surfaced to clients and in server responses."""
    # Header decoding
    MALFORMED_HEADER = "MALFORMED_HEADER"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_FIELD = "INVALID_FIELD"

    # Payment protocol
    PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
    INVALID_PAYMENT_REQUIRED = "INVALID_PAYMENT_REQUIRED"
    PAYMENT_INVALID = "PAYMENT_INVALID"
    PAYMENT_REPLAYED = "PAYMENT_REPLAYED"
    PAYMENT_VERIFICATION_FAILED = "PAYMENT_VERIFICATION_FAILED"
    FETCH_FAILED = "FETCH_FAILED"
    PAYMENT_HANDLING_FAILED = "PAYMENT_HANDLING_FAILED"

    # Facilitator
    FACILITATOR_ERROR = "FACILITATOR_ERROR"
    FACILITATOR_TIMEOUT = "FACILITATOR_TIMEOUT"

    # Wallet and balance management
    WALLET_NOT_CONNECTED = "WALLET_NOT_CONNECTED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INSUFFICIENT_SAVINGS_FUNDS = "INSUFFICIENT_SAVINGS_FUNDS"
    DAILY_LIMIT_REACHED = "DAILY_LIMIT_REACHED"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"
    INVALID_AMOUNT = "INVALID_AMOUNT"


ERROR_MESSAGES: Dict[ErrorCode, str] = {
    ErrorCode.MALFORMED_HEADER: "Payment header is not a well-formed JSON object",
    ErrorCode.MISSING_FIELD: "Payment header is missing a required field",
    ErrorCode.INVALID_FIELD: "Payment header contains an invalid field",
    ErrorCode.PAYMENT_REQUIRED: "Payment is required to access this resource",
    ErrorCode.INVALID_PAYMENT_REQUIRED: "Invalid payment required header",
    ErrorCode.PAYMENT_INVALID: "Payment verification failed",
    ErrorCode.PAYMENT_REPLAYED: "Payment has already been used",
    ErrorCode.PAYMENT_VERIFICATION_FAILED: "Request was not accepted after payment",
    ErrorCode.FETCH_FAILED: "Fetch failed",
    ErrorCode.PAYMENT_HANDLING_FAILED: "Payment handling failed",
    ErrorCode.FACILITATOR_ERROR: "Payment facilitator service error",
    ErrorCode.FACILITATOR_TIMEOUT: "Payment facilitator service timeout",
    ErrorCode.WALLET_NOT_CONNECTED: "Wallet is not connected",
    ErrorCode.INSUFFICIENT_FUNDS: "Insufficient funds in wallet",
    ErrorCode.INSUFFICIENT_SAVINGS_FUNDS: "Insufficient funds in savings wallet",
    ErrorCode.DAILY_LIMIT_REACHED: "Daily refill limit reached",
    ErrorCode.TRANSACTION_FAILED: "Transaction failed on blockchain",
    ErrorCode.LEDGER_UNAVAILABLE: "No ledger endpoint returned a usable response",
    ErrorCode.INVALID_AMOUNT: "Invalid payment amount",
}


class XaptError(Exception):
    """Base exception for xAPT errors."""

    default_code = ErrorCode.PAYMENT_HANDLING_FAILED

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message or ERROR_MESSAGES[self.code]
        super().__init__(self.message)
        self.status_code = status_code
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form without internal exception text."""
        return {
            "error": ERROR_MESSAGES[self.code],
            "code": self.code.value,
        }


# Client-side protocol errors

class FetchFailed(XaptError):
    """The initial request could not be sent."""
    default_code = ErrorCode.FETCH_FAILED


class PaymentHandlingFailed(XaptError):
    """A 402 could not be turned into an accepted, paid request."""
    default_code = ErrorCode.PAYMENT_HANDLING_FAILED


class InvalidPaymentRequired(PaymentHandlingFailed):
    """The 402 response carried no usable payment requirement."""
    default_code = ErrorCode.INVALID_PAYMENT_REQUIRED


class PaymentVerificationFailed(PaymentHandlingFailed):
    """The retried request was not accepted after attaching the proof."""
    default_code = ErrorCode.PAYMENT_VERIFICATION_FAILED


# Facilitator errors

class FacilitatorError(XaptError):
    """Facilitator unreachable or answered with a non-2xx status."""
    default_code = ErrorCode.FACILITATOR_ERROR


class FacilitatorTimeout(FacilitatorError):
    """Facilitator did not answer within the configured timeout."""
    default_code = ErrorCode.FACILITATOR_TIMEOUT


# Wallet errors

class WalletNotConnected(XaptError):
    default_code = ErrorCode.WALLET_NOT_CONNECTED


class InsufficientFunds(XaptError):
    """Wallet balance does not cover a transfer."""
    default_code = ErrorCode.INSUFFICIENT_FUNDS


class InsufficientSavingsFunds(XaptError):
    default_code = ErrorCode.INSUFFICIENT_SAVINGS_FUNDS


class DailyLimitReached(XaptError):
    default_code = ErrorCode.DAILY_LIMIT_REACHED


class TransactionFailed(XaptError):
    default_code = ErrorCode.TRANSACTION_FAILED


class LedgerUnavailable(XaptError):
    default_code = ErrorCode.LEDGER_UNAVAILABLE


class InvalidAmount(XaptError, ValueError):
    default_code = ErrorCode.INVALID_AMOUNT
