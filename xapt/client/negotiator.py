"""
Client half of the xAPT protocol.

``PaymentNegotiator.fetch_with_payment`` sends a request and, when the
server answers 402, pays the advertised requirement through a
``SmartBalanceManager`` and repeats the request exactly once with an
X-Aptos-Payment proof attached.
"""
import logging
import time
from typing import Any, Dict, Optional

import requests

from xapt.x402.codec import decode_requirement, encode_proof
from xapt.x402.constants import (
    DEFAULT_FACILITATOR_TIMEOUT,
    HTTP_PAYMENT_REQUIRED,
    X_APTOS_PAYMENT_HEADER,
    X_APTOS_PAYMENT_REQUIRED_HEADER,
    XAPT_PROTOCOL_VERSION,
)
from xapt.x402.errors import (
    FetchFailed,
    InvalidPaymentRequired,
    PaymentHandlingFailed,
    PaymentVerificationFailed,
    XaptError,
)
from xapt.x402.models import PaymentProof, PaymentRequirement

logger = logging.getLogger(__name__)


class PaymentNegotiator:
    """
    Turns a 402 response into a paid, retried request.

    Args:
        balance_manager: Pays requirements (``pay``) and names the payer (``get_address``)
        session: Object with ``request(method, url, **kwargs)``; a requests.Session by default
        timeout: Timeout passed with every request
        client_app_id: Optional identifier carried in every proof
    """

    def __init__(
        self,
        balance_manager,
        session: Optional[Any] = None,
        timeout: Optional[float] = DEFAULT_FACILITATOR_TIMEOUT,
        client_app_id: Optional[str] = None,
    ):
        self.balance_manager = balance_manager
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.client_app_id = client_app_id

    def fetch_with_payment(self, url: str, method: str = "GET", **kwargs):
        """
        Fetch a resource, paying for it if the server asks.

        Args:
            url: Resource URL
            method: HTTP method
            **kwargs: Passed to ``session.request`` (headers, json, params...)

        Returns:
            The response: the first one if it was not a 402, else the paid retry

        Raises:
            FetchFailed: The initial request could not be sent
            InvalidPaymentRequired: The 402 carried no usable requirement
            PaymentVerificationFailed: The paid retry was not answered with 2xx
            PaymentHandlingFailed: Paying or retrying failed for any other reason
        """
        if self.timeout is not None:
            kwargs.setdefault("timeout", self.timeout)

        try:
            response = self.session.request(method, url, **kwargs)
        except Exception as e:
            logger.error(f"Fetch failed for {method} {url}: {e}")
            raise FetchFailed(f"Fetch failed: {e}", cause=e) from e

        if response.status_code != HTTP_PAYMENT_REQUIRED:
            return response

        requirement = self.parse_payment_required(response)
        logger.info(
            f"Payment required for {url}: {requirement.amount} to {requirement.recipient_address} "
            f"({requirement.payment_id})"
        )

        try:
            proof = self._pay(requirement)
            retry_kwargs = dict(kwargs)
            retry_kwargs["headers"] = self._with_proof_header(kwargs.get("headers"), proof)
            retry_response = self.session.request(method, url, **retry_kwargs)
        except Exception as e:
            logger.error(f"Payment handling failed for {url}: {e}")
            details: Dict[str, Any] = {"payment_id": requirement.payment_id}
            if isinstance(e, XaptError):
                details["cause_code"] = e.code.value
            raise PaymentHandlingFailed(f"Payment handling failed: {e}", details=details, cause=e) from e

        if not 200 <= retry_response.status_code < 300:
            logger.error(f"Paid request to {url} returned HTTP {retry_response.status_code}")
            raise PaymentVerificationFailed(
                f"Payment verification failed: {retry_response.status_code}",
                status_code=retry_response.status_code,
                details={"payment_id": requirement.payment_id},
            )

        return retry_response

    def parse_payment_required(self, response) -> PaymentRequirement:
        """
        Decode the X-Aptos-Payment-Required header of a 402 response.

        Raises:
            InvalidPaymentRequired: If the header is absent or does not decode
        """
        header = response.headers.get(X_APTOS_PAYMENT_REQUIRED_HEADER)
        if not header:
            raise InvalidPaymentRequired(f"Missing {X_APTOS_PAYMENT_REQUIRED_HEADER} header")

        decoded = decode_requirement(header)
        if not decoded.ok:
            raise InvalidPaymentRequired(
                f"Invalid payment required header: {decoded.error.message}",
                details={"kind": decoded.error.kind.value, "field": decoded.error.field},
            )
        return decoded.value

    def _pay(self, requirement: PaymentRequirement) -> PaymentProof:
        tx_hash = self.balance_manager.pay(
            requirement.recipient_address,
            requirement.amount,
            requirement.token_address,
        )
        logger.info(f"Payment transaction submitted: {tx_hash}")
        return PaymentProof(
            protocol_version=XAPT_PROTOCOL_VERSION,
            payment_id=requirement.payment_id,
            transaction_hash=tx_hash,
            sender_address=self.balance_manager.get_address(),
            issued_at=int(time.time() * 1000),
            client_app_id=self.client_app_id,
        )

    @staticmethod
    def _with_proof_header(headers: Optional[Dict[str, str]], proof: PaymentProof) -> Dict[str, str]:
        merged = dict(headers or {})
        merged[X_APTOS_PAYMENT_HEADER] = encode_proof(proof)
        return merged
