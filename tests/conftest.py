# tests/conftest.py
"""
Shared fixtures for the xAPT test suite.
"""
import pytest

from xapt.core.config import settings
from xapt.wallet.mock import MockLedger, MockWallet

SPENDING_ADDRESS = "0x" + "a1" * 32
SAVING_ADDRESS = "0x" + "b2" * 32
RECIPIENT_ADDRESS = "0x" + "c3" * 32


@pytest.fixture(autouse=True)
def audit_log_in_tmp(tmp_path, monkeypatch):
    """Keep audit events written during a test out of the working tree."""
    log_path = tmp_path / "logs" / "xapt_audit.jsonl"
    monkeypatch.setattr(settings, "XAPT_AUDIT_LOG_PATH", str(log_path))
    return log_path


@pytest.fixture
def ledger():
    return MockLedger()


@pytest.fixture
def make_wallets(ledger):
    """Build a connected spending/saving wallet pair on the shared ledger."""
    def _make(spending_balance, saving_balance, latency=0.0):
        spending = MockWallet(SPENDING_ADDRESS, ledger, initial_balance=spending_balance, latency=latency)
        saving = MockWallet(SAVING_ADDRESS, ledger, initial_balance=saving_balance)
        spending.connect()
        saving.connect()
        return spending, saving
    return _make
