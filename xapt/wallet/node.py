"""
Wallet backed by the Aptos fullnode REST API.

Balance reads, sequence numbers and submission go through
``xapt.services.aptos_node``. Signing is not done here: the wallet hands
the unsigned transaction request to an injected ``signer`` callable and
submits whatever signed request it returns.
"""
import logging
import time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from xapt.services import aptos_node
from xapt.wallet.base import TransferPayload, WalletCapability, from_raw_units
from xapt.x402.errors import InsufficientFunds, TransactionFailed

logger = logging.getLogger(__name__)

Signer = Callable[[Dict[str, Any]], Dict[str, Any]]

DEFAULT_MAX_GAS_AMOUNT = "2000"
DEFAULT_GAS_UNIT_PRICE = "100"
TRANSACTION_EXPIRATION_SECONDS = 600


class NodeWallet(WalletCapability):
    """
    Args:
        address: Account address
        signer: Receives the unsigned transaction request and returns it signed
        node_urls: Fullnode base URLs, tried in order (defaults to XAPT_NODE_URLS)
        wait_for_commit: Poll until the transaction is committed before returning
        commit_timeout: Seconds to wait for commit
    """

    def __init__(
        self,
        address: str,
        signer: Signer,
        node_urls: Optional[List[str]] = None,
        wait_for_commit: bool = True,
        commit_timeout: float = 30.0,
        poll_interval: float = 1.0,
    ):
        self.address = address
        self.signer = signer
        self.node_urls = node_urls
        self.wait_for_commit = wait_for_commit
        self.commit_timeout = commit_timeout
        self.poll_interval = poll_interval
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        self._connected = True
        logger.info(f"Connected to Aptos wallet {self.address}")

    def disconnect(self) -> None:
        self._connected = False
        logger.info(f"Disconnected from Aptos wallet {self.address}")

    def get_address(self) -> str:
        self._require_connected()
        return self.address

    def get_balance(self) -> Decimal:
        self._require_connected()
        return from_raw_units(aptos_node.get_coin_balance(self.address, self.node_urls))

    def build_transaction_request(self, payload: TransferPayload, sequence_number: int) -> Dict[str, Any]:
        return {
            "sender": self.address,
            "sequence_number": str(sequence_number),
            "max_gas_amount": DEFAULT_MAX_GAS_AMOUNT,
            "gas_unit_price": DEFAULT_GAS_UNIT_PRICE,
            "expiration_timestamp_secs": str(int(time.time()) + TRANSACTION_EXPIRATION_SECONDS),
            "payload": payload.model_dump(),
        }

    def sign_and_submit(self, payload: TransferPayload) -> str:
        self._require_connected()

        balance_raw = aptos_node.get_coin_balance(self.address, self.node_urls)
        if payload.raw_amount > balance_raw:
            raise InsufficientFunds(
                f"Insufficient balance: {from_raw_units(balance_raw)} APT, "
                f"required: {from_raw_units(payload.raw_amount)} APT",
                details={"address": self.address},
            )

        sequence_number = aptos_node.get_sequence_number(self.address, self.node_urls)
        signed_request = self.signer(self.build_transaction_request(payload, sequence_number))
        tx_hash = aptos_node.submit_transaction(signed_request, self.node_urls)

        if self.wait_for_commit:
            self._wait_for_transaction(tx_hash)
        return tx_hash

    def _wait_for_transaction(self, tx_hash: str) -> None:
        """
        Poll until the transaction is committed.

        Raises:
            TransactionFailed: If it was committed with success=false
        """
        deadline = time.monotonic() + self.commit_timeout
        while time.monotonic() < deadline:
            transaction = aptos_node.get_transaction(tx_hash, self.node_urls)
            if transaction is not None and transaction.get("type") != "pending_transaction":
                if transaction.get("success"):
                    logger.info(f"Transaction {tx_hash} committed")
                    return
                vm_status = transaction.get("vm_status", "unknown")
                raise TransactionFailed(
                    f"Transaction {tx_hash} failed: {vm_status}",
                    details={"transaction_hash": tx_hash, "vm_status": vm_status},
                )
            time.sleep(self.poll_interval)

        # Submitted transactions are left to resolve on their own
        logger.warning(f"Transaction {tx_hash} not confirmed within {self.commit_timeout}s")
