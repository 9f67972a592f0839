"""
Smart balance management for a spending/saving wallet pair.

The manager keeps the spending wallet topped up from the saving wallet:
before each payment it checks the spending balance and, when it is below
the configured threshold, moves a fixed refill amount across. Refills are
bounded per calendar day by a count and an amount cap, and every refill
attempt is kept in an append-only event log.

All refill decisions and payments of one manager are serialized by a
single re-entrant lock, so concurrent payments never both observe a stale
low balance and refill twice.
"""
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, model_validator

from xapt.core.config import settings
from xapt.wallet.base import (
    AmountLike,
    WalletBalance,
    WalletCapability,
    build_transfer_payload,
    from_raw_units,
    to_decimal,
    to_raw_units,
)
from xapt.x402.constants import APT_COIN_TYPE
from xapt.x402.errors import DailyLimitReached, InsufficientFunds, InsufficientSavingsFunds

logger = logging.getLogger(__name__)
notification_logger = logging.getLogger("xapt.notifications")


class RefillReason(str, Enum):
    LOW_BALANCE = "low_balance"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    MANUAL = "manual"


class TransferStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class TransferKind(str, Enum):
    PAYMENT = "payment"
    SAVINGS_TO_SPENDING = "savings_to_spending"


class SmartWalletConfig(BaseModel):
    """Refill policy. Amounts are in APT."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    low_balance_threshold: Decimal = Field(default=Decimal("0.005"), ge=0)
    auto_refill_amount: Decimal = Field(default=Decimal("0.05"), gt=0)
    max_refills_per_day: NonNegativeInt = 5
    max_daily_refill_amount: Decimal = Field(default=Decimal("0.5"), ge=0)
    enable_auto_refill: bool = True
    enable_notifications: bool = False

    @model_validator(mode="after")
    def check_refill_fits_in_octas(self):
        to_raw_units(self.auto_refill_amount)
        return self

    @classmethod
    def from_settings(cls) -> "SmartWalletConfig":
        return cls(
            low_balance_threshold=to_decimal(settings.XAPT_LOW_BALANCE_THRESHOLD),
            auto_refill_amount=to_decimal(settings.XAPT_AUTO_REFILL_AMOUNT),
            max_refills_per_day=settings.XAPT_MAX_REFILLS_PER_DAY,
            max_daily_refill_amount=to_decimal(settings.XAPT_MAX_DAILY_REFILL_AMOUNT),
            enable_auto_refill=settings.XAPT_ENABLE_AUTO_REFILL,
            enable_notifications=settings.XAPT_ENABLE_NOTIFICATIONS,
        )


@dataclass
class DailyRefillCounter:
    """Refills executed in the current calendar day."""
    period_start: date
    count: int = 0
    amount_moved: Decimal = Decimal("0")

    def roll(self, today: date) -> bool:
        """Start a new period if ``today`` differs from the current one."""
        if today == self.period_start:
            return False
        self.period_start = today
        self.count = 0
        self.amount_moved = Decimal("0")
        return True


class RefillEvent(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    wallet_address: Optional[str] = None
    amount: Decimal
    transaction_hash: Optional[str] = None
    reason: RefillReason
    timestamp: datetime
    success: bool
    error: Optional[str] = None


class TransferRecord(BaseModel):
    transaction_hash: Optional[str] = None
    from_address: str
    to_address: str
    amount: Decimal
    timestamp: datetime
    status: TransferStatus
    kind: TransferKind = TransferKind.PAYMENT


def log_notifier(event: RefillEvent) -> None:
    """Default notifier: one WARNING line per refill event."""
    if event.success:
        notification_logger.warning(
            f"Refilled {event.amount} APT into {event.wallet_address} ({event.reason.value}), "
            f"transaction {event.transaction_hash}"
        )
    else:
        notification_logger.warning(
            f"Refill of {event.amount} APT ({event.reason.value}) failed: {event.error}"
        )


class SmartBalanceManager:
    """
    Owns a spending and a saving wallet and refills the former from the latter.

    Args:
        spending: Wallet debited for payments
        saving: Wallet that replenishes the spending wallet
        config: Refill policy, defaults to the XAPT_* settings
        clock: Returns the current local time; its date drives the daily reset
        notifier: Called with each RefillEvent when notifications are enabled
    """

    def __init__(
        self,
        spending: WalletCapability,
        saving: WalletCapability,
        config: Optional[SmartWalletConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        notifier: Optional[Callable[[RefillEvent], None]] = None,
    ):
        self.spending = spending
        self.saving = saving
        self._config = config or SmartWalletConfig.from_settings()
        self._clock = clock or datetime.now
        self._notifier = notifier or log_notifier
        self._lock = threading.RLock()
        self._counter = DailyRefillCounter(period_start=self._clock().date())
        self._refill_events: List[RefillEvent] = []
        self._transfer_history: List[TransferRecord] = []

    # Connection

    def connect(self) -> None:
        self.spending.connect()
        self.saving.connect()

    def disconnect(self) -> None:
        self.spending.disconnect()
        self.saving.disconnect()

    def is_connected(self) -> bool:
        return self.spending.is_connected() and self.saving.is_connected()

    def get_address(self) -> str:
        """Address payments are sent from."""
        return self.spending.get_address()

    def get_spending_balance(self) -> WalletBalance:
        return self.spending.get_wallet_balance()

    def get_saving_balance(self) -> WalletBalance:
        return self.saving.get_wallet_balance()

    # Refill policy

    def ensure_funds(self) -> Optional[RefillEvent]:
        """
        Refill the spending wallet if its balance is below the threshold.

        Invoked before every payment. A refill refused by the daily caps is
        logged and skipped; the payment then proceeds with the current balance.

        Returns:
            The successful RefillEvent, or None if no refill was needed or allowed

        Raises:
            InsufficientSavingsFunds: If the saving wallet cannot cover a needed refill
            Exception: Whatever the saving wallet raised for a failed transfer
        """
        with self._lock:
            config = self._config
            if not config.enable_auto_refill:
                return None

            self._roll_period()
            refusal = self._cap_refusal(config.auto_refill_amount)
            if refusal:
                logger.warning(f"Auto-refill skipped: {refusal}")
                return None

            balance = self.spending.get_balance()
            if balance >= config.low_balance_threshold:
                return None

            logger.info(
                f"Low balance detected: {balance} APT < {config.low_balance_threshold} APT"
            )
            return self._refill(RefillReason.LOW_BALANCE, config.auto_refill_amount)

    def emergency_refill(self) -> RefillEvent:
        """
        Refill after a payment failed for insufficient funds.

        Skips the threshold check but is bounded by the same daily caps.

        Raises:
            DailyLimitReached: If the caps leave no room for a refill
            InsufficientSavingsFunds: If the saving wallet cannot cover the refill
        """
        with self._lock:
            logger.warning("Emergency refill triggered")
            self._roll_period()
            return self._refill(RefillReason.INSUFFICIENT_FUNDS, self._config.auto_refill_amount)

    def manual_refill(self, amount: Optional[AmountLike] = None) -> RefillEvent:
        """Move ``amount`` APT (default: the auto-refill amount) within the daily caps."""
        with self._lock:
            refill_amount = to_decimal(amount) if amount is not None else self._config.auto_refill_amount
            self._roll_period()
            return self._refill(RefillReason.MANUAL, refill_amount)

    def pay(self, recipient: str, amount: AmountLike, token_address: str = APT_COIN_TYPE) -> str:
        """
        Pay ``amount`` APT from the spending wallet.

        Runs ensure_funds() first. If the wallet still reports insufficient
        funds, one emergency refill is made and the transfer retried once.

        Returns:
            The payment's transaction hash
        """
        payload = build_transfer_payload(recipient, amount, token_address)
        with self._lock:
            self.ensure_funds()
            try:
                tx_hash = self._submit_payment(payload)
            except InsufficientFunds:
                if not self._config.enable_auto_refill:
                    raise
                logger.warning(f"Payment of {amount} APT failed for insufficient funds, refilling")
                self.emergency_refill()
                tx_hash = self._submit_payment(payload)
            return tx_hash

    # Introspection

    def get_refill_events(self) -> List[RefillEvent]:
        with self._lock:
            return list(self._refill_events)

    def get_transfer_history(self) -> List[TransferRecord]:
        with self._lock:
            return list(self._transfer_history)

    def get_daily_refill_stats(self) -> Dict[str, Any]:
        with self._lock:
            self._roll_period()
            config = self._config
            return {
                "count": self._counter.count,
                "amount": self._counter.amount_moved,
                "period_start": self._counter.period_start,
                "remaining_refills": max(config.max_refills_per_day - self._counter.count, 0),
                "remaining_amount": max(config.max_daily_refill_amount - self._counter.amount_moved, Decimal("0")),
            }

    def get_config(self) -> SmartWalletConfig:
        return self._config

    def update_config(self, **changes: Any) -> SmartWalletConfig:
        """
        Replace individual policy fields; takes effect on the next check.

        Raises:
            pydantic.ValidationError: If a field is unknown or invalid
        """
        with self._lock:
            self._config = SmartWalletConfig.model_validate({**self._config.model_dump(), **changes})
            logger.info(f"Smart wallet config updated: {sorted(changes)}")
            return self._config

    # Internals; callers hold self._lock

    def _roll_period(self) -> None:
        if self._counter.roll(self._clock().date()):
            logger.info(f"Daily refill counters reset for {self._counter.period_start}")

    def _cap_refusal(self, amount: Decimal) -> Optional[str]:
        config = self._config
        counter = self._counter
        if counter.count >= config.max_refills_per_day:
            return f"daily refill count limit reached ({counter.count}/{config.max_refills_per_day})"
        if counter.amount_moved >= config.max_daily_refill_amount:
            return f"daily refill amount limit reached ({counter.amount_moved} APT)"
        if counter.amount_moved + amount > config.max_daily_refill_amount:
            return (
                f"refill of {amount} APT would exceed the daily limit "
                f"({counter.amount_moved}/{config.max_daily_refill_amount} APT)"
            )
        return None

    def _refill(self, reason: RefillReason, amount: Decimal) -> RefillEvent:
        refusal = self._cap_refusal(amount)
        if refusal:
            logger.warning(f"Refill refused: {refusal}")
            raise DailyLimitReached(f"Daily refill limit reached: {refusal}")

        spending_address = self.spending.get_address()
        saving_address = self.saving.get_address()

        saving_balance = self.saving.get_balance()
        if saving_balance < amount:
            error = InsufficientSavingsFunds(
                f"Insufficient funds in savings wallet: {saving_balance} APT, required: {amount} APT"
            )
            logger.error(error.message)
            self._record_refill(reason, amount, spending_address, success=False, error=error.message)
            raise error

        logger.info(f"Refilling {amount} APT from {saving_address} to {spending_address} ({reason.value})")
        try:
            tx_hash = self.saving.transfer(spending_address, amount)
        except Exception as e:
            logger.error(f"Refill transfer failed: {e}")
            self._record_transfer(
                None, saving_address, spending_address, amount,
                TransferStatus.FAILED, TransferKind.SAVINGS_TO_SPENDING,
            )
            self._record_refill(reason, amount, spending_address, success=False, error=str(e))
            raise

        self._counter.count += 1
        self._counter.amount_moved += amount
        self._record_transfer(
            tx_hash, saving_address, spending_address, amount,
            TransferStatus.SUCCESS, TransferKind.SAVINGS_TO_SPENDING,
        )
        event = self._record_refill(reason, amount, spending_address, success=True, tx_hash=tx_hash)
        logger.info(
            f"Refill successful: {tx_hash} "
            f"({self._counter.count}/{self._config.max_refills_per_day} today)"
        )
        return event

    def _submit_payment(self, payload) -> str:
        sender = self.spending.get_address()
        amount = from_raw_units(payload.raw_amount)
        try:
            tx_hash = self.spending.sign_and_submit(payload)
        except Exception:
            self._record_transfer(None, sender, payload.recipient, amount, TransferStatus.FAILED)
            raise
        self._record_transfer(tx_hash, sender, payload.recipient, amount, TransferStatus.SUCCESS)
        return tx_hash

    def _record_refill(
        self,
        reason: RefillReason,
        amount: Decimal,
        wallet_address: Optional[str],
        success: bool,
        tx_hash: Optional[str] = None,
        error: Optional[str] = None,
    ) -> RefillEvent:
        event = RefillEvent(
            wallet_address=wallet_address,
            amount=amount,
            transaction_hash=tx_hash,
            reason=reason,
            timestamp=self._clock(),
            success=success,
            error=error,
        )
        self._refill_events.append(event)
        if self._config.enable_notifications:
            self._notifier(event)
        return event

    def _record_transfer(
        self,
        tx_hash: Optional[str],
        from_address: str,
        to_address: str,
        amount: Decimal,
        status: TransferStatus,
        kind: TransferKind = TransferKind.PAYMENT,
    ) -> TransferRecord:
        record = TransferRecord(
            transaction_hash=tx_hash,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            timestamp=self._clock(),
            status=status,
            kind=kind,
        )
        self._transfer_history.append(record)
        return record
