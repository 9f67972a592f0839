# xapt/services/aptos_node.py
import requests
from requests.exceptions import RequestException
import logging
from typing import List, Dict, Any, Optional

from xapt.core.config import settings
from xapt.x402.constants import APT_COIN_TYPE
from xapt.x402.errors import LedgerUnavailable, TransactionFailed

logger = logging.getLogger(__name__)


def _node_urls(node_urls: Optional[List[str]]) -> List[str]:
    urls = node_urls if node_urls is not None else settings.XAPT_NODE_URLS
    return [str(url).rstrip("/") for url in urls]


def _timeout(timeout: Optional[float]) -> float:
    return timeout if timeout is not None else settings.XAPT_NODE_TIMEOUT


def get_coin_balance(
    address: str,
    node_urls: Optional[List[str]] = None,
    coin_type: str = APT_COIN_TYPE,
    timeout: Optional[float] = None,
) -> int:
    """
    Fetches an account's coin balance from the Aptos fullnode REST API.

    Endpoints are tried in order. The first one that answers HTTP 200 with an
    integer ``data.coin.value`` wins. A 404 means the account has no coin
    store for this coin type, which is an authoritative balance of 0.

    Args:
        address: Account address (0x + 64 hex)
        node_urls: Fullnode base URLs, defaults to XAPT_NODE_URLS
        coin_type: Move coin type, APT by default
        timeout: Per-endpoint timeout in seconds

    Returns:
        The balance in raw units (octas for APT)

    Raises:
        LedgerUnavailable: If no endpoint returned a usable answer
    """
    resource = f"0x1::coin::CoinStore<{coin_type}>"
    failures = []

    for base_url in _node_urls(node_urls):
        api_url = f"{base_url}/v1/accounts/{address}/resource/{resource}"
        try:
            response = requests.get(api_url, timeout=_timeout(timeout))
        except RequestException as e:
            logger.warning(f"Balance request to {base_url} failed: {e}")
            failures.append(base_url)
            continue

        if response.status_code == 404:
            logger.debug(f"No coin store for {address} on {base_url}, balance is 0")
            return 0

        if response.status_code != 200:
            logger.warning(f"Balance request to {base_url} returned HTTP {response.status_code}")
            failures.append(base_url)
            continue

        try:
            return int(response.json()["data"]["coin"]["value"])
        except (ValueError, KeyError, TypeError) as e:
            # The endpoint answered, but not with a balance; try the next one
            logger.warning(f"Unusable balance payload from {base_url}: {e}")
            failures.append(base_url)

    logger.error(f"All ledger endpoints failed to return a balance for {address}: {failures}")
    raise LedgerUnavailable(details={"address": address, "endpoints": failures})


def get_sequence_number(
    address: str,
    node_urls: Optional[List[str]] = None,
    timeout: Optional[float] = None,
) -> int:
    """
    Fetches an account's current sequence number.

    Raises:
        LedgerUnavailable: If no endpoint returned a usable answer
    """
    for base_url in _node_urls(node_urls):
        api_url = f"{base_url}/v1/accounts/{address}"
        try:
            response = requests.get(api_url, timeout=_timeout(timeout))
            response.raise_for_status()
            return int(response.json()["sequence_number"])
        except RequestException as e:
            logger.warning(f"Account request to {base_url} failed: {e}")
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Unusable account payload from {base_url}: {e}")

    raise LedgerUnavailable(details={"address": address, "operation": "sequence_number"})


def submit_transaction(
    signed_transaction: Dict[str, Any],
    node_urls: Optional[List[str]] = None,
    timeout: Optional[float] = None,
) -> str:
    """
    Submits a signed transaction (JSON form) to the fullnode.

    Only transport failures move on to the next endpoint. An HTTP error
    means the node rejected the transaction and is not retried elsewhere.

    Returns:
        The transaction hash

    Raises:
        TransactionFailed: If the node rejected the transaction
        LedgerUnavailable: If no endpoint could be reached
    """
    headers = {"Content-Type": "application/json"}

    for base_url in _node_urls(node_urls):
        api_url = f"{base_url}/v1/transactions"
        try:
            response = requests.post(api_url, json=signed_transaction, headers=headers, timeout=_timeout(timeout))
        except RequestException as e:
            logger.warning(f"Transaction submission to {base_url} failed: {e}")
            continue

        if not 200 <= response.status_code < 300:
            logger.error(f"Transaction rejected by {base_url}: HTTP {response.status_code} {response.text}")
            raise TransactionFailed(
                f"Transaction rejected by node: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            tx_hash = response.json()["hash"]
        except (ValueError, KeyError, TypeError) as e:
            raise TransactionFailed("Node response did not include a transaction hash", cause=e) from e

        logger.info(f"Submitted transaction {tx_hash} via {base_url}")
        return tx_hash

    raise LedgerUnavailable(details={"operation": "submit_transaction"})


def get_transaction(
    tx_hash: str,
    node_urls: Optional[List[str]] = None,
    timeout: Optional[float] = None,
) -> Optional[Dict[str, Any]]:
    """
    Fetches a transaction by hash.

    Returns:
        The transaction as returned by the node, or None if it is unknown

    Raises:
        LedgerUnavailable: If no endpoint returned a usable answer
    """
    for base_url in _node_urls(node_urls):
        api_url = f"{base_url}/v1/transactions/by_hash/{tx_hash}"
        try:
            response = requests.get(api_url, timeout=_timeout(timeout))
        except RequestException as e:
            logger.warning(f"Transaction lookup on {base_url} failed: {e}")
            continue

        if response.status_code == 404:
            return None

        if response.status_code != 200:
            logger.warning(f"Transaction lookup on {base_url} returned HTTP {response.status_code}")
            continue

        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"Unusable transaction payload from {base_url}: {e}")
            continue
        if isinstance(data, dict):
            return data

    raise LedgerUnavailable(details={"tx_hash": tx_hash, "operation": "get_transaction"})
