# xapt/main.py
from typing import Dict, Optional
from fastapi import FastAPI
from xapt.core.config import settings
from xapt.core.version import VERSION
from xapt.api.endpoints import public, premium
from xapt.x402.constants import Network
from xapt.x402.middleware import GateConfig, PaymentGateMiddleware
from xapt.x402.models import PaymentRule
from xapt.x402.replay import ConsumedPaymentCache
import logging

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Paid paths and what they sell; prices depend on the network
PREMIUM_PATHS = {
    f"{settings.API_PREFIX}/premium/data": "Premium market data access",
    f"{settings.API_PREFIX}/premium/analysis": "Premium analysis service",
    f"{settings.API_PREFIX}/premium/reports": "Premium reports access",
    f"{settings.API_PREFIX}/subscription/feed": "Real-time subscription feed",
}
MAINNET_PRICE = "0.002"
TESTNET_PRICE = "0.1"


def default_payment_rules(network: Network, pay_to: str) -> Dict[str, PaymentRule]:
    """Price every premium path at the network's default amount, payable to ``pay_to``."""
    amount = MAINNET_PRICE if network == Network.MAINNET else TESTNET_PRICE
    return {
        path: PaymentRule(amount=amount, recipient_address=pay_to, description=f"{description} ({network.value})")
        for path, description in PREMIUM_PATHS.items()
    }


def build_gate_config() -> GateConfig:
    """
    Gate configuration from settings.

    XAPT_PAYMENT_RULES wins when set; otherwise the premium paths are priced
    by default if XAPT_PAY_TO_ADDRESS is configured.
    """
    config = GateConfig.from_settings()
    if not config.payment_rules:
        if settings.XAPT_PAY_TO_ADDRESS:
            config.payment_rules = default_payment_rules(config.network, settings.XAPT_PAY_TO_ADDRESS)
        else:
            logger.warning("XAPT_PAY_TO_ADDRESS not configured - premium paths are not gated")
    return config


def create_app(
    gate_config: Optional[GateConfig] = None,
    facilitator_client=None,
    replay_cache: Optional[ConsumedPaymentCache] = None,
) -> FastAPI:
    """
    Build the resource server.

    Args:
        gate_config: Payment gate configuration, defaults to build_gate_config()
        facilitator_client: Verifier used by the gate (FacilitatorClient by default)
        replay_cache: Consumed-proof cache shared by the gate
    """
    gate_config = gate_config or build_gate_config()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=VERSION,
        openapi_url=f"{settings.API_PREFIX}/openapi.json"
    )
    app.state.payment_rules = {
        path: rule if isinstance(rule, PaymentRule) else PaymentRule.model_validate(rule)
        for path, rule in gate_config.payment_rules.items()
    }

    app.add_middleware(
        PaymentGateMiddleware,
        config=gate_config,
        facilitator_client=facilitator_client,
        replay_cache=replay_cache,
    )

    app.include_router(public.router, prefix=f"{settings.API_PREFIX}/public", tags=["public"])
    app.include_router(premium.router, prefix=settings.API_PREFIX, tags=["premium"])

    @app.get("/", summary="Health Check", tags=["default"])
    def read_root():
        """ Basic health check endpoint. """
        logger.info("Root endpoint '/' accessed.")
        return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}

    return app


app = create_app()
