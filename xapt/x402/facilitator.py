"""
HTTP client for the payment facilitator service.

The facilitator verifies that a submitted payment satisfies a payment
requirement and can submit signed transactions on the client's behalf.
Every call is bounded by a timeout and is never retried here; retry
policy belongs to the caller.
"""
import logging
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError
from requests.exceptions import RequestException, Timeout

from xapt.core.config import settings
from xapt.x402.constants import DEFAULT_FACILITATOR_TIMEOUT
from xapt.x402.errors import FacilitatorError, FacilitatorTimeout
from xapt.x402.models import (
    SubmitTransactionRequest,
    SubmitTransactionResponse,
    VerificationRequest,
    VerificationResponse,
)

logger = logging.getLogger(__name__)


class FacilitatorClient:
    """Synchronous facilitator client built on requests."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_FACILITATOR_TIMEOUT,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.base_url = str(base_url).rstrip("/")
        self.timeout = timeout
        self.headers = {"Content-Type": "application/json", **(headers or {})}

    @classmethod
    def from_settings(cls) -> "FacilitatorClient":
        headers = {}
        if settings.XAPT_FACILITATOR_API_KEY:
            headers["Authorization"] = f"Bearer {settings.XAPT_FACILITATOR_API_KEY}"
        return cls(
            base_url=str(settings.XAPT_FACILITATOR_URL),
            timeout=settings.XAPT_FACILITATOR_TIMEOUT,
            headers=headers,
        )

    def _post(self, path: str, body: Dict[str, Any], operation: str) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = requests.post(url, json=body, headers=self.headers, timeout=self.timeout)
        except Timeout as e:
            logger.error(f"Facilitator {operation} timed out after {self.timeout}s ({url})")
            raise FacilitatorTimeout(details={"operation": operation}, cause=e) from e
        except RequestException as e:
            logger.error(f"Facilitator {operation} request failed ({url}): {e}")
            raise FacilitatorError(
                f"Failed to {operation}: facilitator unreachable",
                details={"operation": operation},
                cause=e,
            ) from e

        if not 200 <= response.status_code < 300:
            logger.error(f"Facilitator {operation} returned HTTP {response.status_code}")
            raise FacilitatorError(
                f"Facilitator service error: {response.status_code}",
                status_code=response.status_code,
                details={"operation": operation},
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Facilitator {operation} returned invalid JSON: {e}")
            raise FacilitatorError(
                f"Failed to {operation}: invalid facilitator response",
                status_code=response.status_code,
                cause=e,
            ) from e

        if not isinstance(data, dict):
            raise FacilitatorError(
                f"Failed to {operation}: invalid facilitator response",
                status_code=response.status_code,
            )
        return data

    def verify_payment(self, request: VerificationRequest) -> VerificationResponse:
        """
        Ask the facilitator whether a payment satisfies a requirement.

        Args:
            request: Payment ID, proof material and the expected terms

        Returns:
            VerificationResponse with is_valid and, on rejection, a reason

        Raises:
            FacilitatorTimeout: If the facilitator did not answer in time
            FacilitatorError: On connection failure, non-2xx status or bad body
        """
        data = self._post(
            "/verify-payment",
            request.model_dump(by_alias=True, exclude_none=True),
            "verify payment",
        )
        try:
            return VerificationResponse.model_validate(data)
        except ValidationError as e:
            raise FacilitatorError("Failed to verify payment: invalid facilitator response", cause=e) from e

    def submit_transaction(self, signed_payload: str) -> SubmitTransactionResponse:
        """
        Submit a base64 signed transaction through the facilitator.

        Raises:
            FacilitatorTimeout: If the facilitator did not answer in time
            FacilitatorError: On connection failure, non-2xx status or bad body
        """
        body = SubmitTransactionRequest(signed_transaction_payload=signed_payload)
        data = self._post("/submit-transaction", body.model_dump(by_alias=True), "submit transaction")
        try:
            return SubmitTransactionResponse.model_validate(data)
        except ValidationError as e:
            raise FacilitatorError("Failed to submit transaction: invalid facilitator response", cause=e) from e
