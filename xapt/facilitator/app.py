# xapt/facilitator/app.py
from datetime import datetime, timezone
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from xapt.facilitator.verifier import LedgerVerifier
from xapt.x402.errors import ErrorCode, XaptError
from xapt.x402.models import SubmitTransactionRequest, VerificationRequest

logger = logging.getLogger(__name__)


def create_facilitator_app(verifier: LedgerVerifier) -> FastAPI:
    """
    Build the reference facilitator service.

    Args:
        verifier: Anything with verify_payment / submit_transaction

    Returns:
        FastAPI app exposing /verify-payment, /submit-transaction and /health
    """
    app = FastAPI(title="xAPT Reference Facilitator")

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning(f"Malformed facilitator request to {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request body", "code": ErrorCode.INVALID_FIELD.value},
        )

    @app.exception_handler(XaptError)
    async def xapt_error(request: Request, exc: XaptError) -> JSONResponse:
        logger.error(f"Facilitator request to {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code or 400, content=exc.to_dict())

    @app.post("/verify-payment", summary="Verify a payment against its requirement")
    def verify_payment(body: VerificationRequest):
        verification = verifier.verify_payment(body)
        return verification.model_dump(by_alias=True, exclude_none=True)

    @app.post("/submit-transaction", summary="Submit a signed transaction")
    def submit_transaction(body: SubmitTransactionRequest):
        result = verifier.submit_transaction(body.signed_transaction_payload)
        return result.model_dump(by_alias=True, exclude_none=True)

    @app.get("/health", summary="Health Check")
    def health():
        return {
            "status": "healthy",
            "service": "xAPT Reference Facilitator",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app
