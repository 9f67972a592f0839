"""
Protocol constants shared by the payment gate and the paying client.
"""
from enum import Enum

# xAPT protocol version carried in every header as "x402Version"
XAPT_PROTOCOL_VERSION = 1

# HTTP header names (protocol-fixed)
X_APTOS_PAYMENT_REQUIRED_HEADER = "X-Aptos-Payment-Required"
X_APTOS_PAYMENT_HEADER = "X-Aptos-Payment"
X_APTOS_PAYMENT_RESPONSE_HEADER = "X-Aptos-Payment-Response"

HTTP_PAYMENT_REQUIRED = 402


class Network(str, Enum):
    """Aptos networks a requirement can name."""
    TESTNET = "testnet"
    MAINNET = "mainnet"
    DEVNET = "devnet"


# APT coin type; the same on every network
APT_COIN_TYPE = "0x1::aptos_coin::AptosCoin"
DEFAULT_TOKEN_ADDRESS = APT_COIN_TYPE
DEFAULT_TOKEN_SYMBOL = "APT"

# APT has 8 decimals: 1 APT = 10^8 octas
APT_DECIMALS = 8
OCTAS_PER_APT = 10 ** APT_DECIMALS

# Fractional digits accepted in a header amount
MAX_AMOUNT_FRACTION_DIGITS = 6

COIN_TRANSFER_FUNCTION = "0x1::coin::transfer"

NODE_URLS = {
    Network.TESTNET: "https://fullnode.testnet.aptoslabs.com",
    Network.MAINNET: "https://fullnode.mainnet.aptoslabs.com",
    Network.DEVNET: "https://fullnode.devnet.aptoslabs.com",
}

# Facilitator calls are bounded by this unless configured otherwise
DEFAULT_FACILITATOR_TIMEOUT = 30.0
