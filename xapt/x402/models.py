"""
Wire models for the xAPT payment protocol.

Field names follow Python conventions; the JSON form uses the camelCase
names of the protocol headers and the facilitator REST contract.
"""
import base64
import binascii
import re
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from xapt.x402.constants import (
    DEFAULT_TOKEN_ADDRESS,
    MAX_AMOUNT_FRACTION_DIGITS,
    XAPT_PROTOCOL_VERSION,
    Network,
)

APTOS_ADDRESS_PATTERN = re.compile(r"0x[a-fA-F0-9]{64}")
AMOUNT_PATTERN = re.compile(r"[0-9]+(\.[0-9]{1,%d})?" % MAX_AMOUNT_FRACTION_DIGITS)
PAYMENT_ID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}",
    re.IGNORECASE,
)


def is_valid_aptos_address(address: str) -> bool:
    """Check for a 0x-prefixed, 64 hex character Aptos address."""
    return isinstance(address, str) and APTOS_ADDRESS_PATTERN.fullmatch(address) is not None


def is_valid_amount(amount: str) -> bool:
    """Check for a non-negative decimal string with bounded fractional digits."""
    return isinstance(amount, str) and AMOUNT_PATTERN.fullmatch(amount) is not None


def is_valid_payment_id(payment_id: str) -> bool:
    """Check for a UUID v4 string."""
    return isinstance(payment_id, str) and PAYMENT_ID_PATTERN.fullmatch(payment_id) is not None


def _check_payment_id(value: str) -> str:
    if not is_valid_payment_id(value):
        raise ValueError("paymentId must be a UUID v4")
    return value


def _check_amount(value: str) -> str:
    if not is_valid_amount(value):
        raise ValueError(
            f"amount must be a non-negative decimal with at most "
            f"{MAX_AMOUNT_FRACTION_DIGITS} fractional digits"
        )
    return value


def _check_address(value: str) -> str:
    if not is_valid_aptos_address(value):
        raise ValueError("address must be 0x followed by 64 hex characters")
    return value


def _check_base64(value: str) -> str:
    try:
        base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("signedTransactionPayload must be base64")
    return value


PaymentId = Annotated[str, AfterValidator(_check_payment_id)]
Amount = Annotated[str, AfterValidator(_check_amount)]
AptosAddress = Annotated[str, AfterValidator(_check_address)]
Base64Payload = Annotated[str, AfterValidator(_check_base64)]


class PaymentRequirement(BaseModel):
    """Payload of the X-Aptos-Payment-Required header."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    protocol_version: int = Field(default=XAPT_PROTOCOL_VERSION, alias="x402Version")
    payment_id: PaymentId = Field(alias="paymentId")
    amount: Amount
    token_address: str = Field(default=DEFAULT_TOKEN_ADDRESS, alias="tokenAddress")
    recipient_address: AptosAddress = Field(alias="recipientAddress")
    network: Network
    currency_symbol: Optional[str] = Field(default=None, alias="currencySymbol")
    description: Optional[str] = None
    issued_at: Optional[int] = Field(default=None, alias="timestamp")


class PaymentProof(BaseModel):
    """Payload of the X-Aptos-Payment header sent on the retried request."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    protocol_version: int = Field(default=XAPT_PROTOCOL_VERSION, alias="x402Version")
    payment_id: PaymentId = Field(alias="paymentId")
    transaction_hash: Optional[str] = Field(default=None, alias="transactionHash")
    signed_payload: Optional[Base64Payload] = Field(default=None, alias="signedTransactionPayload")
    sender_address: Optional[AptosAddress] = Field(default=None, alias="senderAddress")
    issued_at: Optional[int] = Field(default=None, alias="timestamp")
    client_app_id: Optional[str] = Field(default=None, alias="clientAppId")


class PaymentRule(BaseModel):
    """Static price of a protected path prefix."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    amount: Amount
    recipient_address: AptosAddress = Field(alias="recipientAddress")
    description: Optional[str] = None
    currency_symbol: Optional[str] = Field(default=None, alias="currencySymbol")


class VerificationRequest(BaseModel):
    """Body of POST /verify-payment."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    payment_id: str
    signed_transaction_payload: Optional[str] = None
    transaction_hash: Optional[str] = None
    expected_amount: str
    expected_token_address: str
    expected_recipient_address: str
    expected_network: str


class VerificationResponse(BaseModel):
    """Facilitator verdict on a submitted payment."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_valid: bool
    reason: Optional[str] = None
    transaction_hash: Optional[str] = None
    sender_address: Optional[str] = None
    amount_transferred: Optional[str] = None
    timestamp: Optional[int] = None


class SubmitTransactionRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    signed_transaction_payload: str


class SubmitTransactionResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    transaction_hash: str
    status: Optional[str] = None
    timestamp: Optional[int] = None
