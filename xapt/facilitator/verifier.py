"""
Ledger-backed payment verification.

``LedgerVerifier`` answers the facilitator contract against a
``MockLedger``: a payment is valid when its transaction exists, succeeded
and moved at least the expected amount of the expected coin to the
expected recipient. A transaction hash can satisfy only one paymentId.

It exposes the same ``verify_payment`` / ``submit_transaction`` methods as
``FacilitatorClient``, so the payment gate can use it in-process.
"""
import logging
import threading
import time
from typing import Dict

from xapt.wallet.base import from_raw_units, to_raw_units
from xapt.wallet.mock import MockLedger
from xapt.x402.constants import Network
from xapt.x402.errors import InvalidAmount, XaptError
from xapt.x402.models import SubmitTransactionResponse, VerificationRequest, VerificationResponse

logger = logging.getLogger(__name__)


class LedgerVerifier:
    def __init__(self, ledger: MockLedger, network: Network = Network.TESTNET):
        self.ledger = ledger
        self.network = network
        self._claims: Dict[str, str] = {}
        self._lock = threading.Lock()

    def verify_payment(self, request: VerificationRequest) -> VerificationResponse:
        """Check a payment against the ledger; never raises for a bad payment."""
        logger.info(
            f"Verifying payment {request.payment_id}: {request.expected_amount} to "
            f"{request.expected_recipient_address} (tx: {request.transaction_hash})"
        )

        if request.expected_network != self.network.value:
            return self._invalid(f"Unsupported network: {request.expected_network}")

        tx_hash = request.transaction_hash
        if not tx_hash:
            if not request.signed_transaction_payload:
                return self._invalid("No transaction hash or signed payload provided")
            try:
                tx_hash = self.ledger.submit_signed(request.signed_transaction_payload)
            except XaptError as e:
                return self._invalid(f"Transaction submission failed: {e.message}")

        transaction = self.ledger.get_transaction(tx_hash)
        if transaction is None:
            return self._invalid("Transaction not found")
        if not transaction.success:
            return self._invalid(f"Transaction failed: {transaction.vm_status}")
        if transaction.recipient.lower() != request.expected_recipient_address.lower():
            return self._invalid("Recipient address mismatch")
        if transaction.coin_type != request.expected_token_address:
            return self._invalid("Token mismatch")

        try:
            expected_raw = to_raw_units(request.expected_amount)
        except InvalidAmount:
            return self._invalid(f"Invalid expected amount: {request.expected_amount}")
        if transaction.amount_raw < expected_raw:
            return self._invalid(
                f"Insufficient amount: {from_raw_units(transaction.amount_raw)} < {request.expected_amount}"
            )

        with self._lock:
            claimed_by = self._claims.setdefault(tx_hash, request.payment_id)
        if claimed_by != request.payment_id:
            return self._invalid("Transaction already used for another payment")

        return VerificationResponse(
            is_valid=True,
            transaction_hash=tx_hash,
            sender_address=transaction.sender,
            amount_transferred=str(from_raw_units(transaction.amount_raw)),
            timestamp=int(time.time() * 1000),
        )

    def submit_transaction(self, signed_payload: str) -> SubmitTransactionResponse:
        """
        Apply a signed transaction to the ledger.

        Raises:
            TransactionFailed: If the payload cannot be decoded
            InsufficientFunds: If the sender cannot cover the transfer
        """
        tx_hash = self.ledger.submit_signed(signed_payload)
        logger.info(f"Submitted transaction {tx_hash}")
        return SubmitTransactionResponse(
            transaction_hash=tx_hash,
            status="submitted",
            timestamp=int(time.time() * 1000),
        )

    @staticmethod
    def _invalid(reason: str) -> VerificationResponse:
        logger.warning(f"Payment rejected: {reason}")
        return VerificationResponse(is_valid=False, reason=reason)
