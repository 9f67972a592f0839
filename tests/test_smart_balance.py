# tests/test_smart_balance.py
"""
Unit tests for the smart balance manager.

Wallet pairs come from the ``make_wallets`` fixture: a spending and a
saving MockWallet sharing one MockLedger.
"""
import logging
import threading
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError
from unittest.mock import patch, MagicMock

from xapt.wallet.mock import MockWallet
from xapt.wallet.smart import (
    RefillReason,
    SmartBalanceManager,
    SmartWalletConfig,
    TransferKind,
    TransferStatus,
)
from xapt.x402.errors import (
    DailyLimitReached,
    InsufficientFunds,
    InsufficientSavingsFunds,
    TransactionFailed,
    WalletNotConnected,
)

SPENDING_ADDRESS = "0x" + "a1" * 32
SAVING_ADDRESS = "0x" + "b2" * 32
RECIPIENT_ADDRESS = "0x" + "c3" * 32


class MutableClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_config(**overrides) -> SmartWalletConfig:
    fields = dict(
        low_balance_threshold="0.005",
        auto_refill_amount="0.05",
        max_refills_per_day=5,
        max_daily_refill_amount="0.5",
    )
    fields.update(overrides)
    return SmartWalletConfig(**fields)


def refill_transfers(ledger):
    return [tx for tx in ledger.transactions if tx.sender == SAVING_ADDRESS]


class TestSmartWalletConfig:
    """Test refill policy validation."""

    def test_defaults(self):
        """Defaults match the documented policy."""
        config = SmartWalletConfig()

        assert config.low_balance_threshold == Decimal("0.005")
        assert config.auto_refill_amount == Decimal("0.05")
        assert config.max_refills_per_day == 5
        assert config.max_daily_refill_amount == Decimal("0.5")
        assert config.enable_auto_refill is True
        assert config.enable_notifications is False

    def test_rejects_negative_values(self):
        """Negative thresholds and caps are invalid."""
        with pytest.raises(ValidationError):
            make_config(low_balance_threshold="-0.1")
        with pytest.raises(ValidationError):
            make_config(max_refills_per_day=-1)
        with pytest.raises(ValidationError):
            make_config(auto_refill_amount="0")

    def test_rejects_sub_octa_refill(self):
        """The refill amount must be transferable."""
        with pytest.raises(ValidationError):
            make_config(auto_refill_amount="0.000000001")

    def test_rejects_unknown_fields(self):
        """Typos in field names are errors."""
        with pytest.raises(ValidationError):
            SmartWalletConfig(max_refils_per_day=3)

    @patch("xapt.wallet.smart.settings")
    def test_from_settings(self, mock_settings):
        """Float settings become exact decimals."""
        mock_settings.XAPT_LOW_BALANCE_THRESHOLD = 0.01
        mock_settings.XAPT_AUTO_REFILL_AMOUNT = 0.1
        mock_settings.XAPT_MAX_REFILLS_PER_DAY = 3
        mock_settings.XAPT_MAX_DAILY_REFILL_AMOUNT = 0.3
        mock_settings.XAPT_ENABLE_AUTO_REFILL = False
        mock_settings.XAPT_ENABLE_NOTIFICATIONS = True

        config = SmartWalletConfig.from_settings()

        assert config.low_balance_threshold == Decimal("0.01")
        assert config.auto_refill_amount == Decimal("0.1")
        assert config.max_refills_per_day == 3
        assert config.enable_auto_refill is False
        assert config.enable_notifications is True


class TestEnsureFunds:
    """Test the proactive refill check."""

    def test_balance_above_threshold_is_noop(self, make_wallets, ledger):
        """No transfer happens while the balance covers the threshold."""
        spending, saving = make_wallets("0.02", "1")
        manager = SmartBalanceManager(spending, saving, make_config())

        for _ in range(3):
            assert manager.ensure_funds() is None

        assert refill_transfers(ledger) == []
        assert manager.get_refill_events() == []
        assert manager.get_daily_refill_stats()["count"] == 0

    def test_balance_equal_to_threshold_is_noop(self, make_wallets):
        """The threshold itself is enough."""
        spending, saving = make_wallets("0.005", "1")
        manager = SmartBalanceManager(spending, saving, make_config())

        assert manager.ensure_funds() is None

    def test_low_balance_refills(self, make_wallets, ledger):
        """A low balance triggers one refill of the configured amount."""
        spending, saving = make_wallets("0.001", "0.1")
        manager = SmartBalanceManager(spending, saving, make_config())

        event = manager.ensure_funds()

        assert event.success is True
        assert event.amount == Decimal("0.05")
        assert event.reason == RefillReason.LOW_BALANCE
        assert event.wallet_address == SPENDING_ADDRESS
        assert ledger.balance(SPENDING_ADDRESS) == Decimal("0.051")
        assert ledger.balance(SAVING_ADDRESS) == Decimal("0.05")

        history = manager.get_transfer_history()
        assert len(history) == 1
        assert history[0].kind == TransferKind.SAVINGS_TO_SPENDING
        assert history[0].status == TransferStatus.SUCCESS
        assert history[0].transaction_hash == event.transaction_hash

        stats = manager.get_daily_refill_stats()
        assert stats["count"] == 1
        assert stats["amount"] == Decimal("0.05")
        assert stats["remaining_refills"] == 4
        assert stats["remaining_amount"] == Decimal("0.45")

    def test_insufficient_savings(self, make_wallets, ledger):
        """No partial transfer when savings cannot cover the refill."""
        spending, saving = make_wallets("0.001", "0.01")
        manager = SmartBalanceManager(spending, saving, make_config())

        with pytest.raises(InsufficientSavingsFunds):
            manager.ensure_funds()

        assert ledger.transactions == []
        assert manager.get_transfer_history() == []
        events = manager.get_refill_events()
        assert len(events) == 1
        assert events[0].success is False
        assert "savings" in events[0].error
        assert manager.get_daily_refill_stats()["count"] == 0

    def test_failed_refill_transfer(self, make_wallets):
        """A failing transfer is recorded and propagated."""
        spending, saving = make_wallets("0.001", "1")
        manager = SmartBalanceManager(spending, saving, make_config())

        with patch.object(saving, "sign_and_submit", side_effect=TransactionFailed("node said no")):
            with pytest.raises(TransactionFailed):
                manager.ensure_funds()

        events = manager.get_refill_events()
        assert events[0].success is False
        assert events[0].error == "node said no"
        assert manager.get_transfer_history()[0].status == TransferStatus.FAILED
        assert manager.get_daily_refill_stats()["count"] == 0

    def test_disabled_auto_refill_is_noop(self, make_wallets, ledger):
        """With auto-refill off nothing is checked or moved."""
        spending, saving = make_wallets("0", "1")
        manager = SmartBalanceManager(spending, saving, make_config(enable_auto_refill=False))

        assert manager.ensure_funds() is None
        assert ledger.transactions == []


class TestDailyCaps:
    """Test per-day refill limits."""

    def test_exhausted_count_performs_no_transfer(self, make_wallets, ledger):
        """At the count cap no refill happens regardless of balance."""
        spending, saving = make_wallets("0", "10")
        manager = SmartBalanceManager(spending, saving, make_config(max_refills_per_day=3))
        manager._counter.count = 3

        assert manager.ensure_funds() is None
        assert ledger.transactions == []

    def test_count_cap(self, make_wallets, ledger):
        """Refills stop once the daily count is used up."""
        spending, saving = make_wallets("0", "10")
        manager = SmartBalanceManager(
            spending, saving, make_config(low_balance_threshold="100", max_refills_per_day=2)
        )

        assert manager.ensure_funds() is not None
        assert manager.ensure_funds() is not None
        assert manager.ensure_funds() is None
        assert len(refill_transfers(ledger)) == 2

    def test_amount_cap(self, make_wallets, ledger):
        """A refill that would overshoot the amount cap is refused."""
        spending, saving = make_wallets("0", "10")
        manager = SmartBalanceManager(
            spending, saving, make_config(low_balance_threshold="100", max_daily_refill_amount="0.08")
        )

        assert manager.ensure_funds() is not None
        assert manager.ensure_funds() is None
        assert manager.get_daily_refill_stats()["amount"] == Decimal("0.05")
        assert len(refill_transfers(ledger)) == 1

    def test_reset_after_midnight(self, make_wallets, ledger):
        """Counters reset when the clock's date changes."""
        clock = MutableClock(datetime(2024, 3, 1, 23, 59))
        spending, saving = make_wallets("0", "10")
        manager = SmartBalanceManager(
            spending, saving,
            make_config(low_balance_threshold="100", max_refills_per_day=1),
            clock=clock,
        )

        assert manager.ensure_funds() is not None
        assert manager.ensure_funds() is None

        clock.now += timedelta(minutes=2)

        assert manager.ensure_funds() is not None
        stats = manager.get_daily_refill_stats()
        assert stats["count"] == 1
        assert stats["period_start"] == datetime(2024, 3, 2).date()
        assert len(refill_transfers(ledger)) == 2

    def test_same_day_no_reset(self, make_wallets):
        """Counters persist within a day."""
        clock = MutableClock(datetime(2024, 3, 1, 0, 1))
        spending, saving = make_wallets("0", "10")
        manager = SmartBalanceManager(spending, saving, make_config(), clock=clock)

        manager.ensure_funds()
        clock.now += timedelta(hours=23)
        assert manager.get_daily_refill_stats()["count"] == 1


class TestEmergencyAndManualRefill:
    """Test the reactive and manual refill paths."""

    def test_emergency_bypasses_threshold(self, make_wallets):
        """Emergency refills happen even above the threshold."""
        spending, saving = make_wallets("1", "1")
        manager = SmartBalanceManager(spending, saving, make_config())

        event = manager.emergency_refill()

        assert event.success is True
        assert event.reason == RefillReason.INSUFFICIENT_FUNDS

    def test_emergency_respects_caps(self, make_wallets, ledger):
        """Emergency refills raise once the caps are exhausted."""
        spending, saving = make_wallets("0", "10")
        manager = SmartBalanceManager(spending, saving, make_config(max_refills_per_day=1))
        manager.emergency_refill()

        with pytest.raises(DailyLimitReached):
            manager.emergency_refill()

        assert len(refill_transfers(ledger)) == 1

    def test_manual_refill_amount(self, make_wallets, ledger):
        """Manual refills move the requested amount."""
        spending, saving = make_wallets("0", "1")
        manager = SmartBalanceManager(spending, saving, make_config())

        event = manager.manual_refill("0.02")

        assert event.reason == RefillReason.MANUAL
        assert ledger.balance(SPENDING_ADDRESS) == Decimal("0.02")

    def test_manual_refill_default_amount(self, make_wallets, ledger):
        """Without an amount the auto-refill amount is used."""
        spending, saving = make_wallets("0", "1")
        manager = SmartBalanceManager(spending, saving, make_config())

        assert manager.manual_refill().amount == Decimal("0.05")


class TestPay:
    """Test payments through the manager."""

    def test_pay_without_refill(self, make_wallets, ledger):
        """A covered payment is one transfer and no refill."""
        spending, saving = make_wallets("0.02", "1")
        manager = SmartBalanceManager(spending, saving, make_config())

        tx_hash = manager.pay(RECIPIENT_ADDRESS, "0.01")

        assert ledger.get_transaction(tx_hash).recipient == RECIPIENT_ADDRESS
        assert manager.get_refill_events() == []
        history = manager.get_transfer_history()
        assert len(history) == 1
        assert history[0].kind == TransferKind.PAYMENT
        assert history[0].amount == Decimal("0.01")
        assert history[0].from_address == SPENDING_ADDRESS

    def test_pay_refills_first(self, make_wallets):
        """A low balance is refilled before the payment."""
        spending, saving = make_wallets("0.001", "0.1")
        manager = SmartBalanceManager(spending, saving, make_config())

        manager.pay(RECIPIENT_ADDRESS, "0.01")

        kinds = [record.kind for record in manager.get_transfer_history()]
        assert kinds == [TransferKind.SAVINGS_TO_SPENDING, TransferKind.PAYMENT]

    def test_pay_falls_back_to_emergency_refill(self, make_wallets, ledger):
        """Insufficient funds above the threshold trigger one emergency refill and a retry."""
        spending, saving = make_wallets("0.006", "1")
        manager = SmartBalanceManager(spending, saving, make_config())

        tx_hash = manager.pay(RECIPIENT_ADDRESS, "0.01")

        assert ledger.get_transaction(tx_hash).success is True
        events = manager.get_refill_events()
        assert [e.reason for e in events] == [RefillReason.INSUFFICIENT_FUNDS]
        statuses = [(r.kind, r.status) for r in manager.get_transfer_history()]
        assert statuses == [
            (TransferKind.PAYMENT, TransferStatus.FAILED),
            (TransferKind.SAVINGS_TO_SPENDING, TransferStatus.SUCCESS),
            (TransferKind.PAYMENT, TransferStatus.SUCCESS),
        ]

    def test_pay_without_auto_refill_raises(self, make_wallets):
        """With auto-refill off an uncovered payment fails."""
        spending, saving = make_wallets("0.001", "1")
        manager = SmartBalanceManager(spending, saving, make_config(enable_auto_refill=False))

        with pytest.raises(InsufficientFunds):
            manager.pay(RECIPIENT_ADDRESS, "0.01")

        assert manager.get_refill_events() == []

    def test_pay_aborts_on_insufficient_savings(self, make_wallets, ledger):
        """A refill that cannot happen aborts the payment."""
        spending, saving = make_wallets("0.001", "0.01")
        manager = SmartBalanceManager(spending, saving, make_config())

        with pytest.raises(InsufficientSavingsFunds):
            manager.pay(RECIPIENT_ADDRESS, "0.01")

        assert ledger.transactions == []
        assert manager.get_transfer_history() == []


class TestConcurrency:
    """Test serialization of refill decisions."""

    def test_concurrent_ensure_funds_single_refill(self, make_wallets, ledger):
        """N racing callers cause one refill, not N."""
        spending, saving = make_wallets("0.001", "1", latency=0.05)
        manager = SmartBalanceManager(spending, saving, make_config())
        barrier = threading.Barrier(10)
        errors = []

        def worker():
            barrier.wait()
            try:
                manager.ensure_funds()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(refill_transfers(ledger)) == 1
        assert manager.get_daily_refill_stats()["count"] == 1

    def test_concurrent_payments(self, make_wallets, ledger):
        """Racing payments share one refill and all succeed."""
        spending, saving = make_wallets("0.001", "1", latency=0.01)
        manager = SmartBalanceManager(spending, saving, make_config())

        threads = [
            threading.Thread(target=manager.pay, args=(RECIPIENT_ADDRESS, "0.001"))
            for _ in range(5)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(refill_transfers(ledger)) == 1
        assert ledger.balance(RECIPIENT_ADDRESS) == Decimal("0.005")


class TestConfigAndNotifications:
    """Test hot config changes and refill notifications."""

    def test_update_config_takes_effect(self, make_wallets):
        """A raised threshold applies on the next check."""
        spending, saving = make_wallets("0.02", "1")
        manager = SmartBalanceManager(spending, saving, make_config())
        assert manager.ensure_funds() is None

        config = manager.update_config(low_balance_threshold=Decimal("0.03"))

        assert config.low_balance_threshold == Decimal("0.03")
        assert manager.get_config() is config
        assert manager.ensure_funds() is not None

    def test_update_config_validates(self, make_wallets):
        """Invalid changes are rejected and the old config kept."""
        spending, saving = make_wallets("0.02", "1")
        manager = SmartBalanceManager(spending, saving, make_config())
        original = manager.get_config()

        with pytest.raises(ValidationError):
            manager.update_config(max_refills_per_day=-2)
        with pytest.raises(ValidationError):
            manager.update_config(no_such_field=True)

        assert manager.get_config() is original

    def test_notifier_called(self, make_wallets):
        """Each refill event reaches the notifier when enabled."""
        notifier = MagicMock()
        spending, saving = make_wallets("0.001", "1")
        manager = SmartBalanceManager(
            spending, saving, make_config(enable_notifications=True), notifier=notifier
        )

        event = manager.ensure_funds()

        notifier.assert_called_once_with(event)

    def test_notifier_not_called_when_disabled(self, make_wallets):
        """Notifications are off by default."""
        notifier = MagicMock()
        spending, saving = make_wallets("0.001", "1")
        manager = SmartBalanceManager(spending, saving, make_config(), notifier=notifier)

        manager.ensure_funds()

        notifier.assert_not_called()

    def test_default_notifier_logs_warning(self, make_wallets, caplog):
        """The default notifier logs on xapt.notifications."""
        spending, saving = make_wallets("0.001", "1")
        manager = SmartBalanceManager(spending, saving, make_config(enable_notifications=True))

        with caplog.at_level(logging.WARNING, logger="xapt.notifications"):
            manager.ensure_funds()

        records = [r for r in caplog.records if r.name == "xapt.notifications"]
        assert len(records) == 1
        assert "Refilled 0.05 APT" in records[0].getMessage()


class TestConnection:
    """Test wallet connection handling."""

    def test_requires_connected_wallets(self, ledger):
        """Operations on unconnected wallets raise WalletNotConnected."""
        spending = MockWallet(SPENDING_ADDRESS, ledger, initial_balance="0.001")
        saving = MockWallet(SAVING_ADDRESS, ledger, initial_balance="1")
        manager = SmartBalanceManager(spending, saving, make_config())

        assert manager.is_connected() is False
        with pytest.raises(WalletNotConnected):
            manager.ensure_funds()

        manager.connect()
        assert manager.is_connected() is True
        assert manager.get_address() == SPENDING_ADDRESS
        assert manager.get_spending_balance().balance == Decimal("0.001")
        assert manager.get_saving_balance().balance == Decimal("1")

        manager.disconnect()
        assert manager.is_connected() is False
