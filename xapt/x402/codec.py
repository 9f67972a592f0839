"""
Encoding and decoding of the xAPT protocol headers.

Both headers carry a JSON object:
- X-Aptos-Payment-Required: a PaymentRequirement (sent with 402)
- X-Aptos-Payment: a PaymentProof (sent on the retried request)

Decoding never raises. Any header value, however malformed, yields a
``Decoded`` result that is either ok (with a model) or carries a
``DecodeError`` describing the first problem found.
"""
import json
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ValidationError

from xapt.x402.models import PaymentProof, PaymentRequirement, VerificationResponse

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Wire names that must be present before a header is considered at all
REQUIREMENT_REQUIRED_FIELDS: Tuple[str, ...] = ("paymentId", "amount", "recipientAddress", "network")
PROOF_REQUIRED_FIELDS: Tuple[str, ...] = ("x402Version", "paymentId")


class DecodeErrorKind(str, Enum):
    MALFORMED_HEADER = "MALFORMED_HEADER"
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_FIELD = "INVALID_FIELD"


@dataclass(frozen=True)
class DecodeError:
    """Why a header value could not be decoded."""
    kind: DecodeErrorKind
    message: str
    field: Optional[str] = None


@dataclass(frozen=True)
class Decoded(Generic[ModelT]):
    """Tagged decode result: exactly one of ``value`` / ``error`` is set."""
    value: Optional[ModelT] = None
    error: Optional[DecodeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def generate_payment_id() -> str:
    """Generate a fresh payment ID (UUID v4)."""
    return str(uuid.uuid4())


def _encode(model: BaseModel) -> str:
    return model.model_dump_json(by_alias=True, exclude_none=True)


def _decode(
    header_value: Optional[str],
    model_cls: Type[ModelT],
    required_fields: Tuple[str, ...],
) -> Decoded:
    if not header_value or not isinstance(header_value, str):
        return Decoded(error=DecodeError(DecodeErrorKind.MALFORMED_HEADER, "Header is empty"))

    try:
        payload = json.loads(header_value)
    # ValueError also covers integers past the interpreter's digit limit
    except (ValueError, RecursionError) as e:
        return Decoded(error=DecodeError(DecodeErrorKind.MALFORMED_HEADER, f"Header is not valid JSON: {e}"))

    if not isinstance(payload, dict):
        return Decoded(error=DecodeError(DecodeErrorKind.MALFORMED_HEADER, "Header is not a JSON object"))

    for name in required_fields:
        if payload.get(name) is None:
            return Decoded(error=DecodeError(
                DecodeErrorKind.MISSING_FIELD, f"Missing required field: {name}", field=name
            ))

    try:
        return Decoded(value=model_cls.model_validate(payload))
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        return Decoded(error=DecodeError(
            DecodeErrorKind.INVALID_FIELD, f"Invalid field {field}: {first.get('msg')}", field=field
        ))


def encode_requirement(requirement: PaymentRequirement) -> str:
    """Serialize a requirement for the X-Aptos-Payment-Required header."""
    return _encode(requirement)


def decode_requirement(header_value: Optional[str]) -> Decoded:
    """
    Parse an X-Aptos-Payment-Required header value.

    Args:
        header_value: Raw header value (JSON object)

    Returns:
        Decoded result holding a PaymentRequirement on success
    """
    result = _decode(header_value, PaymentRequirement, REQUIREMENT_REQUIRED_FIELDS)
    if not result.ok:
        logger.debug(f"Rejected payment required header: {result.error.message}")
    return result


def encode_proof(proof: PaymentProof) -> str:
    """Serialize a proof for the X-Aptos-Payment header."""
    return _encode(proof)


def decode_proof(header_value: Optional[str]) -> Decoded:
    """
    Parse an X-Aptos-Payment header value.

    Args:
        header_value: Raw header value (JSON object)

    Returns:
        Decoded result holding a PaymentProof on success
    """
    result = _decode(header_value, PaymentProof, PROOF_REQUIRED_FIELDS)
    if not result.ok:
        logger.debug(f"Rejected payment header: {result.error.message}")
    return result


def encode_payment_response(payment_id: str, verification: VerificationResponse) -> str:
    """
    Encode the verification outcome for the X-Aptos-Payment-Response header.

    Args:
        payment_id: The paymentId that was satisfied
        verification: The facilitator's verification response

    Returns:
        JSON string
    """
    response: Dict[str, Any] = {"paymentId": payment_id}
    response.update(verification.model_dump(
        by_alias=True,
        exclude_none=True,
        include={"transaction_hash", "sender_address", "amount_transferred"},
    ))
    return json.dumps(response)
