"""
In-memory ledger and wallets for tests and local demos.

``MockLedger`` holds balances and committed transfers for any number of
``MockWallet`` instances, so a payment made by one wallet is visible to
another wallet and to the reference facilitator.
"""
import base64
import json
import logging
import secrets
import threading
import time
from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from xapt.wallet.base import (
    AmountLike,
    TransferPayload,
    WalletCapability,
    from_raw_units,
    to_raw_units,
)
from xapt.x402.errors import InsufficientFunds, TransactionFailed

logger = logging.getLogger(__name__)


def generate_transaction_hash() -> str:
    return "0x" + secrets.token_hex(32)


@dataclass(frozen=True)
class MockTransaction:
    hash: str
    sender: str
    recipient: str
    amount_raw: int
    coin_type: str
    success: bool
    timestamp: int
    vm_status: str = "Executed successfully"

    def to_dict(self) -> Dict:
        return asdict(self)


class MockLedger:
    """Thread-safe in-memory ledger keyed by address, amounts in octas."""

    def __init__(self):
        self._balances: Dict[str, int] = {}
        self._transactions: Dict[str, MockTransaction] = {}
        self._lock = threading.Lock()
        # Signed payload signature -> hash of the transaction it produced
        self._submitted: Dict[str, str] = {}
        self._submit_lock = threading.Lock()

    def fund(self, address: str, amount: AmountLike) -> None:
        """Credit ``amount`` APT to an address."""
        raw = to_raw_units(amount)
        with self._lock:
            self._balances[address.lower()] = self._balances.get(address.lower(), 0) + raw

    def set_balance(self, address: str, amount: AmountLike) -> None:
        with self._lock:
            self._balances[address.lower()] = to_raw_units(amount)

    def balance_raw(self, address: str) -> int:
        with self._lock:
            return self._balances.get(address.lower(), 0)

    def balance(self, address: str) -> Decimal:
        return from_raw_units(self.balance_raw(address))

    def transfer(self, sender: str, payload: TransferPayload) -> str:
        """
        Apply a transfer atomically.

        Raises:
            InsufficientFunds: If the sender cannot cover the amount
        """
        amount_raw = payload.raw_amount
        if amount_raw < 0:
            raise TransactionFailed(f"Negative transfer amount: {amount_raw}")

        sender_key = sender.lower()
        recipient_key = payload.recipient.lower()
        with self._lock:
            available = self._balances.get(sender_key, 0)
            if amount_raw > available:
                raise InsufficientFunds(
                    f"Insufficient balance: {from_raw_units(available)} APT, "
                    f"required: {from_raw_units(amount_raw)} APT",
                    details={"address": sender, "available": available, "required": amount_raw},
                )
            self._balances[sender_key] = available - amount_raw
            self._balances[recipient_key] = self._balances.get(recipient_key, 0) + amount_raw

            tx = MockTransaction(
                hash=generate_transaction_hash(),
                sender=sender,
                recipient=payload.recipient,
                amount_raw=amount_raw,
                coin_type=payload.type_arguments[0] if payload.type_arguments else "",
                success=True,
                timestamp=int(time.time() * 1000),
            )
            self._transactions[tx.hash] = tx

        logger.debug(f"Mock transfer {tx.hash}: {sender} -> {payload.recipient} ({amount_raw} octas)")
        return tx.hash

    def submit_signed(self, signed_payload: str) -> str:
        """
        Apply a base64 signed transaction produced by ``MockWallet.sign``.

        Submission is idempotent: resubmitting the same signed transaction
        returns the hash of the first submission without moving funds again.

        Raises:
            TransactionFailed: If the payload cannot be decoded
            InsufficientFunds: If the sender cannot cover the amount
        """
        try:
            signed = json.loads(base64.b64decode(signed_payload, validate=True))
            payload = TransferPayload.model_validate(signed["payload"])
            sender = signed["sender"]
            signature = str(signed["signature"])
        except (ValueError, KeyError, TypeError) as e:
            raise TransactionFailed("Invalid signed transaction payload", cause=e) from e

        with self._submit_lock:
            if signature in self._submitted:
                tx_hash = self._submitted[signature]
                logger.debug(f"Signed transaction already submitted as {tx_hash}")
                return tx_hash
            tx_hash = self.transfer(sender, payload)
            self._submitted[signature] = tx_hash
        return tx_hash

    def get_transaction(self, tx_hash: str) -> Optional[MockTransaction]:
        with self._lock:
            return self._transactions.get(tx_hash)

    @property
    def transactions(self) -> List[MockTransaction]:
        with self._lock:
            return list(self._transactions.values())


class MockWallet(WalletCapability):
    """
    Wallet backed by a ``MockLedger``.

    Args:
        address: Wallet address
        ledger: Shared ledger; a private one is created if omitted
        initial_balance: APT credited to the address on creation
        latency: Seconds to sleep in balance reads and submissions
    """

    def __init__(
        self,
        address: str,
        ledger: Optional[MockLedger] = None,
        initial_balance: AmountLike = 0,
        latency: float = 0.0,
    ):
        self.address = address
        self.ledger = ledger if ledger is not None else MockLedger()
        self.latency = latency
        self._connected = False
        self.submitted: List[str] = []
        if Decimal(str(initial_balance)) > 0:
            self.ledger.fund(address, initial_balance)

    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        self._connected = True
        logger.info(f"Connected to mock wallet {self.address}")

    def disconnect(self) -> None:
        self._connected = False
        logger.info(f"Disconnected from mock wallet {self.address}")

    def get_address(self) -> str:
        self._require_connected()
        return self.address

    def get_balance(self) -> Decimal:
        self._require_connected()
        if self.latency:
            time.sleep(self.latency)
        return self.ledger.balance(self.address)

    def sign(self, payload: TransferPayload) -> str:
        """Produce a base64 signed transaction without submitting it."""
        self._require_connected()
        signed = {
            "sender": self.address,
            "payload": payload.model_dump(),
            "signature": "0x" + secrets.token_hex(64),
        }
        return base64.b64encode(json.dumps(signed).encode("utf-8")).decode("ascii")

    def sign_and_submit(self, payload: TransferPayload) -> str:
        self._require_connected()
        if self.latency:
            time.sleep(self.latency)
        tx_hash = self.ledger.transfer(self.address, payload)
        self.submitted.append(tx_hash)
        return tx_hash
