# xapt/api/endpoints/public.py
from datetime import datetime, timezone
from fastapi import APIRouter, Request
import logging

from xapt.api.models.premium import InfoResponse
from xapt.core.config import settings
from xapt.core.version import VERSION

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/info", response_model=InfoResponse)
async def get_info(request: Request) -> InfoResponse:
    """
    Describe the server and the prices of its protected paths.

    Returns:
        InfoResponse: Server version, network and payment rules
    """
    rules = getattr(request.app.state, "payment_rules", {})
    return InfoResponse(
        message=f"Welcome to {settings.PROJECT_NAME}",
        version=VERSION,
        network=settings.XAPT_NETWORK,
        features=[
            "HTTP 402 Payment Required",
            "APT payments on Aptos",
            "Smart wallet auto-refill",
        ],
        protectedPaths={
            path: rule.model_dump(by_alias=True, exclude_none=True)
            for path, rule in rules.items()
        },
    )


@router.get("/balance")
async def get_balance():
    """ Free endpoint, never gated. """
    return {
        "message": "Free balance check endpoint",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
