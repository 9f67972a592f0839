"""
Wallet capability interface and APT amount helpers.

A wallet capability is the only thing allowed to move funds. The payment
negotiator and the smart balance manager talk to wallets exclusively
through this interface; mock, fullnode-backed and future implementations
are interchangeable.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Union

from pydantic import BaseModel, Field

from xapt.x402.constants import APT_COIN_TYPE, COIN_TRANSFER_FUNCTION, OCTAS_PER_APT
from xapt.x402.errors import InvalidAmount, WalletNotConnected

logger = logging.getLogger(__name__)

AmountLike = Union[Decimal, str, int, float]


def to_decimal(amount: AmountLike) -> Decimal:
    """
    Parse an APT amount into a Decimal.

    Floats are converted through their string form so 0.05 stays 0.05.

    Raises:
        InvalidAmount: If the amount is not a finite, non-negative number
    """
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvalidAmount(f"Invalid amount: {amount!r}", cause=e) from e
    if not value.is_finite() or value < 0:
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    return value


def to_raw_units(amount: AmountLike) -> int:
    """
    Convert an APT amount to octas (8 decimals).

    Raises:
        InvalidAmount: If the amount is negative, non-numeric or finer than one octa
    """
    raw = to_decimal(amount) * OCTAS_PER_APT
    if raw != raw.to_integral_value():
        raise InvalidAmount(f"Amount {amount} has more precision than 1 octa")
    return int(raw)


def from_raw_units(raw: int) -> Decimal:
    """Convert octas to an APT amount."""
    return Decimal(int(raw)) / OCTAS_PER_APT


class TransferPayload(BaseModel):
    """Entry function payload of a coin transfer."""
    type: str = "entry_function_payload"
    function: str = COIN_TRANSFER_FUNCTION
    type_arguments: List[str] = Field(default_factory=lambda: [APT_COIN_TYPE])
    arguments: List[str]

    @property
    def recipient(self) -> str:
        return self.arguments[0]

    @property
    def raw_amount(self) -> int:
        return int(self.arguments[1])


def build_transfer_payload(
    recipient: str,
    amount: AmountLike,
    token_address: str = APT_COIN_TYPE,
) -> TransferPayload:
    """
    Build a 0x1::coin::transfer payload.

    Args:
        recipient: Destination address
        amount: Amount in APT
        token_address: Coin type to transfer

    Returns:
        TransferPayload with arguments [recipient, amount in octas]
    """
    return TransferPayload(
        type_arguments=[token_address],
        arguments=[recipient, str(to_raw_units(amount))],
    )


class WalletBalance(BaseModel):
    """Balance snapshot of a wallet."""
    address: str
    balance: Decimal
    balance_raw: int
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class WalletCapability(ABC):
    """
    A connected wallet that can report its balance and sign-and-submit
    transfers.

    Every operation except connect/is_connected raises WalletNotConnected
    before connect() has been called.
    """

    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    def connect(self) -> None:
        ...

    @abstractmethod
    def disconnect(self) -> None:
        ...

    @abstractmethod
    def get_address(self) -> str:
        ...

    @abstractmethod
    def get_balance(self) -> Decimal:
        """Current balance in APT."""

    @abstractmethod
    def sign_and_submit(self, payload: TransferPayload) -> str:
        """
        Sign and submit a transfer payload.

        Returns:
            The transaction hash

        Raises:
            WalletNotConnected: If called before connect()
            InsufficientFunds: If the balance does not cover the transfer
            TransactionFailed: If the ledger rejected the transaction
        """

    def transfer(self, recipient: str, amount: AmountLike, token_address: str = APT_COIN_TYPE) -> str:
        """Transfer ``amount`` APT to ``recipient``; returns the transaction hash."""
        payload = build_transfer_payload(recipient, amount, token_address)
        return self.sign_and_submit(payload)

    def get_wallet_balance(self) -> WalletBalance:
        balance = self.get_balance()
        return WalletBalance(
            address=self.get_address(),
            balance=balance,
            balance_raw=to_raw_units(balance),
        )

    def _require_connected(self) -> None:
        if not self.is_connected():
            raise WalletNotConnected()
