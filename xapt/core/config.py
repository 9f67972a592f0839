from typing import Any, Dict, List, Optional
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "xAPT Resource Server"
    API_PREFIX: str = "/api"

    # Payment gate
    XAPT_ENABLED: bool = True
    XAPT_NETWORK: str = "testnet"
    XAPT_TOKEN_ADDRESS: str = "0x1::aptos_coin::AptosCoin"
    XAPT_PAY_TO_ADDRESS: Optional[str] = None
    # JSON object: {"/api/premium/data": {"amount": "0.1", "recipientAddress": "0x..."}}
    XAPT_PAYMENT_RULES: Dict[str, Dict[str, Any]] = {}

    # Facilitator service
    XAPT_FACILITATOR_URL: AnyHttpUrl = "http://localhost:3001"
    XAPT_FACILITATOR_TIMEOUT: float = 30.0
    XAPT_FACILITATOR_API_KEY: Optional[str] = None

    # Replay protection for accepted proofs
    XAPT_REPLAY_PROTECTION: bool = True
    XAPT_REPLAY_TTL_SECONDS: int = 600

    # Audit trail
    XAPT_AUDIT_ENABLED: bool = True
    XAPT_AUDIT_LOG_PATH: str = "logs/xapt_audit.jsonl"

    # Aptos fullnode REST endpoints, tried in order
    XAPT_NODE_URLS: List[str] = [
        "https://fullnode.testnet.aptoslabs.com",
        "https://aptos-testnet.public.blastapi.io",
    ]
    XAPT_NODE_TIMEOUT: float = 10.0

    # Smart wallet defaults (APT)
    XAPT_LOW_BALANCE_THRESHOLD: float = 0.005
    XAPT_AUTO_REFILL_AMOUNT: float = 0.05
    XAPT_MAX_REFILLS_PER_DAY: int = 5
    XAPT_MAX_DAILY_REFILL_AMOUNT: float = 0.5
    XAPT_ENABLE_AUTO_REFILL: bool = True
    XAPT_ENABLE_NOTIFICATIONS: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
