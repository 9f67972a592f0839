"""
Wallets and the smart balance manager.

Key components:
- base: WalletCapability interface and APT amount conversion
- mock: in-memory ledger and wallets
- node: wallet backed by the Aptos fullnode REST API
- smart: SmartBalanceManager keeping a spending wallet funded from savings
"""
from xapt.wallet.base import WalletCapability, build_transfer_payload, from_raw_units, to_raw_units
from xapt.wallet.mock import MockLedger, MockWallet
from xapt.wallet.smart import RefillReason, SmartBalanceManager, SmartWalletConfig

__all__ = [
    "WalletCapability",
    "build_transfer_payload",
    "from_raw_units",
    "to_raw_units",
    "MockLedger",
    "MockWallet",
    "RefillReason",
    "SmartBalanceManager",
    "SmartWalletConfig",
]
