"""
FastAPI middleware for xAPT payment verification.

This module provides HTTP middleware that:
1. Resolves the payment rule for the request path
2. Returns 402 Payment Required with a fresh requirement when no proof is sent
3. Decodes the X-Aptos-Payment proof and verifies it via the facilitator
4. Forwards paid requests and adds the X-Aptos-Payment-Response header

Every request is decided in one pass. A verifier failure is answered with
500 and never forwarded.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Union

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from xapt.core.config import settings
from xapt.x402.audit import (
    generate_request_id,
    log_error,
    log_facilitator_error,
    log_payment_received,
    log_payment_rejected,
    log_payment_replayed,
    log_payment_required_sent,
    log_payment_verified,
    log_request_received,
)
from xapt.x402.codec import (
    decode_proof,
    encode_payment_response,
    encode_requirement,
    generate_payment_id,
)
from xapt.x402.constants import (
    DEFAULT_FACILITATOR_TIMEOUT,
    DEFAULT_TOKEN_ADDRESS,
    DEFAULT_TOKEN_SYMBOL,
    HTTP_PAYMENT_REQUIRED,
    X_APTOS_PAYMENT_HEADER,
    X_APTOS_PAYMENT_REQUIRED_HEADER,
    X_APTOS_PAYMENT_RESPONSE_HEADER,
    XAPT_PROTOCOL_VERSION,
    Network,
)
from xapt.x402.errors import ERROR_MESSAGES, ErrorCode, XaptError
from xapt.x402.facilitator import FacilitatorClient
from xapt.x402.models import PaymentProof, PaymentRequirement, PaymentRule, VerificationRequest
from xapt.x402.replay import ConsumedPaymentCache
from xapt.x402.rules import PaymentRuleResolver

logger = logging.getLogger(__name__)


@dataclass
class GateConfig:
    """Configuration surface of the payment gate."""
    facilitator_base_url: str
    payment_rules: Mapping[str, Union[PaymentRule, dict]] = field(default_factory=dict)
    timeout: float = DEFAULT_FACILITATOR_TIMEOUT
    headers: Optional[Dict[str, str]] = None
    network: Network = Network.TESTNET
    token_address: str = DEFAULT_TOKEN_ADDRESS
    replay_protection: bool = True
    enabled: bool = True

    @classmethod
    def from_settings(cls) -> "GateConfig":
        headers = None
        if settings.XAPT_FACILITATOR_API_KEY:
            headers = {"Authorization": f"Bearer {settings.XAPT_FACILITATOR_API_KEY}"}
        return cls(
            facilitator_base_url=str(settings.XAPT_FACILITATOR_URL),
            payment_rules=PaymentRuleResolver.from_settings().rules,
            timeout=settings.XAPT_FACILITATOR_TIMEOUT,
            headers=headers,
            network=Network(settings.XAPT_NETWORK),
            token_address=settings.XAPT_TOKEN_ADDRESS,
            replay_protection=settings.XAPT_REPLAY_PROTECTION,
            enabled=settings.XAPT_ENABLED,
        )


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


def create_payment_requirement(
    rule: PaymentRule,
    network: Network,
    token_address: str = DEFAULT_TOKEN_ADDRESS,
) -> PaymentRequirement:
    """
    Synthesize a fresh requirement for a matched rule.

    Each call yields a new paymentId; requirements are never stored.
    """
    currency_symbol = rule.currency_symbol
    if currency_symbol is None and token_address == DEFAULT_TOKEN_ADDRESS:
        currency_symbol = DEFAULT_TOKEN_SYMBOL

    return PaymentRequirement(
        protocol_version=XAPT_PROTOCOL_VERSION,
        payment_id=generate_payment_id(),
        amount=rule.amount,
        token_address=token_address,
        recipient_address=rule.recipient_address,
        network=network,
        currency_symbol=currency_symbol,
        description=rule.description,
        issued_at=int(time.time() * 1000),
    )


def create_402_response(
    requirement: PaymentRequirement,
    error_message: str,
    code: Union[ErrorCode, str] = ErrorCode.PAYMENT_REQUIRED,
    reason: Optional[str] = None,
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    Args:
        requirement: The requirement to advertise in the header and body
        error_message: Human-readable error for the body
        code: Stable error code for the body
        reason: Optional rejection reason (invalid or replayed proofs)

    Returns:
        JSONResponse with 402 status and the X-Aptos-Payment-Required header
    """
    body: Dict[str, Any] = {
        "x402Version": XAPT_PROTOCOL_VERSION,
        "error": error_message,
        "code": code.value if isinstance(code, ErrorCode) else code,
        "paymentRequirement": requirement.model_dump(mode="json", by_alias=True, exclude_none=True),
    }
    if reason:
        body["reason"] = reason

    return JSONResponse(
        status_code=HTTP_PAYMENT_REQUIRED,
        content=body,
        headers={X_APTOS_PAYMENT_REQUIRED_HEADER: encode_requirement(requirement)},
    )


class PaymentGateMiddleware(BaseHTTPMiddleware):
    """
    xAPT payment gate for FastAPI.

    For a request whose path matches a payment rule, this middleware:
    - Returns HTTP 402 with a fresh requirement if no proof is attached
    - Rejects malformed, invalid or replayed proofs with a new 402
    - Returns HTTP 500 if the facilitator fails or times out
    - Forwards verified requests to the protected handler

    Requests without a matching rule, or all requests when the gate is
    disabled, pass through unchanged.
    """

    def __init__(
        self,
        app,
        config: Optional[GateConfig] = None,
        facilitator_client: Optional[Any] = None,
        replay_cache: Optional[ConsumedPaymentCache] = None,
    ):
        super().__init__(app)
        self.config = config or GateConfig.from_settings()
        self.resolver = PaymentRuleResolver(self.config.payment_rules)
        self._facilitator_client = facilitator_client
        self.replay_cache = replay_cache or ConsumedPaymentCache()

    @property
    def facilitator_client(self):
        """Lazy initialization of facilitator client."""
        if self._facilitator_client is None:
            self._facilitator_client = FacilitatorClient(
                base_url=self.config.facilitator_base_url,
                timeout=self.config.timeout,
                headers=self.config.headers,
            )
        return self._facilitator_client

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response]
    ) -> Response:
        if not self.config.enabled:
            return await call_next(request)

        path = request.url.path
        rule = self.resolver.resolve(path)
        if rule is None:
            return await call_next(request)

        client_ip = get_client_ip(request)
        request_id = generate_request_id()
        log_request_received(client_ip, request.method, path, request_id=request_id)

        proof_header = request.headers.get(X_APTOS_PAYMENT_HEADER)
        if not proof_header:
            logger.info(f"xAPT: No {X_APTOS_PAYMENT_HEADER} header on {path}, returning 402 for {rule.amount}")
            return self._payment_required(
                rule, path, client_ip, request_id,
                error_message=ERROR_MESSAGES[ErrorCode.PAYMENT_REQUIRED],
            )

        decoded = decode_proof(proof_header)
        if not decoded.ok:
            logger.warning(f"xAPT: Invalid {X_APTOS_PAYMENT_HEADER} header from {client_ip}: {decoded.error.message}")
            log_payment_rejected(
                client_ip, reason=decoded.error.message, stage="decode", request_id=request_id
            )
            return self._payment_required(
                rule, path, client_ip, request_id,
                error_message=f"Invalid {X_APTOS_PAYMENT_HEADER} header",
                code=decoded.error.kind.value,
                reason=decoded.error.message,
            )

        proof: PaymentProof = decoded.value
        log_payment_received(
            client_ip, proof.payment_id, proof.transaction_hash, proof.sender_address, request_id=request_id
        )

        if self.config.replay_protection and self.replay_cache.is_consumed(
            proof.payment_id, proof.transaction_hash
        ):
            return self._replayed(rule, path, proof, proof.transaction_hash, client_ip, request_id)

        verification_request = VerificationRequest(
            payment_id=proof.payment_id,
            signed_transaction_payload=proof.signed_payload,
            transaction_hash=proof.transaction_hash,
            expected_amount=rule.amount,
            expected_token_address=self.config.token_address,
            expected_recipient_address=rule.recipient_address,
            expected_network=self.config.network.value,
        )

        try:
            verification = await run_in_threadpool(
                self.facilitator_client.verify_payment, verification_request
            )
        except XaptError as e:
            logger.error(f"xAPT: Facilitator verification failed for {proof.payment_id}: {e}")
            log_facilitator_error(
                client_ip, proof.payment_id, e.code.value, status_code=e.status_code, request_id=request_id
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Payment processing error", "code": e.code.value},
            )
        except Exception as e:
            logger.exception(f"xAPT: Unexpected error verifying {proof.payment_id}")
            log_error(
                client_ip, type(e).__name__, str(e),
                context={"payment_id": proof.payment_id}, request_id=request_id
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Payment processing error", "code": ErrorCode.FACILITATOR_ERROR.value},
            )

        if not verification.is_valid:
            reason = verification.reason or "Unknown reason"
            logger.warning(f"xAPT: Payment {proof.payment_id} rejected by facilitator: {reason}")
            log_payment_rejected(
                client_ip, reason=reason, stage="verify", payment_id=proof.payment_id,
                sender=proof.sender_address, request_id=request_id
            )
            return self._payment_required(
                rule, path, client_ip, request_id,
                error_message=ERROR_MESSAGES[ErrorCode.PAYMENT_INVALID],
                code=ErrorCode.PAYMENT_INVALID,
                reason=reason,
            )

        transaction_hash = verification.transaction_hash or proof.transaction_hash
        if self.config.replay_protection and not self.replay_cache.consume(proof.payment_id, transaction_hash):
            return self._replayed(rule, path, proof, transaction_hash, client_ip, request_id)

        sender = verification.sender_address or proof.sender_address
        logger.info(f"xAPT: Payment {proof.payment_id} verified for payer {sender}")
        log_payment_verified(
            client_ip, proof.payment_id, transaction_hash, sender,
            verification.amount_transferred, request_id=request_id
        )

        response = await call_next(request)
        response.headers[X_APTOS_PAYMENT_RESPONSE_HEADER] = encode_payment_response(
            proof.payment_id, verification
        )
        return response

    def _payment_required(
        self,
        rule: PaymentRule,
        path: str,
        client_ip: str,
        request_id: str,
        error_message: str,
        code: Union[ErrorCode, str] = ErrorCode.PAYMENT_REQUIRED,
        reason: Optional[str] = None,
    ) -> JSONResponse:
        requirement = create_payment_requirement(rule, self.config.network, self.config.token_address)
        log_payment_required_sent(
            client_ip,
            payment_id=requirement.payment_id,
            amount=requirement.amount,
            recipient=requirement.recipient_address,
            network=requirement.network.value,
            resource=path,
            request_id=request_id,
        )
        return create_402_response(requirement, error_message, code=code, reason=reason)

    def _replayed(
        self,
        rule: PaymentRule,
        path: str,
        proof: PaymentProof,
        transaction_hash: Optional[str],
        client_ip: str,
        request_id: str,
    ) -> JSONResponse:
        logger.warning(f"xAPT: Replayed payment {proof.payment_id} from {client_ip}")
        log_payment_replayed(client_ip, proof.payment_id, transaction_hash, request_id=request_id)
        return self._payment_required(
            rule, path, client_ip, request_id,
            error_message=ERROR_MESSAGES[ErrorCode.PAYMENT_REPLAYED],
            code=ErrorCode.PAYMENT_REPLAYED,
            reason="Payment proof has already been used",
        )
