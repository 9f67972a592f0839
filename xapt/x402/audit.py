"""
Audit logging for xAPT payment gate decisions.

This module records every terminal decision of the payment gate for:
- Dispute resolution
- Reconciliation against facilitator records
- Debugging rejected payments

Log format: JSON lines (one event per line)
Log location: Configured via XAPT_AUDIT_LOG_PATH

Events logged:
- Request received (timestamp, client IP, path, method)
- 402 returned (paymentId, amount, recipient, network)
- Payment received (paymentId, transaction hash, sender)
- Payment verified / rejected (facilitator verdict)
- Payment replayed (proof reused within the replay window)
- Facilitator error (error code, no internal detail)
"""
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from xapt.core.config import settings

logger = logging.getLogger(__name__)

_write_lock = threading.Lock()


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    REQUEST_RECEIVED = "request_received"
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_REPLAYED = "payment_replayed"
    FACILITATOR_ERROR = "facilitator_error"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    """Get the path to the audit log file."""
    return Path(settings.XAPT_AUDIT_LOG_PATH)


def ensure_audit_log_directory() -> bool:
    """
    Ensure the audit log directory exists.

    Returns:
        True if directory exists or was created, False on error
    """
    try:
        log_dir = get_audit_log_path().parent
        if not log_dir.exists():
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created audit log directory: {log_dir}")
        return True
    except OSError as e:
        logger.error(f"Failed to create audit log directory: {e}")
        return False


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        client_ip: Client IP address (if available)
        wallet_address: Payer wallet address (if available)
        request_id: Unique request identifier (if available)

    Returns:
        A structured event ready to be written to the audit log
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "wallet_address": wallet_address,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    wallet_address: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Log an audit event to the xAPT audit log.

    Never raises: a failed write is logged and reported as None.

    Returns:
        The request_id used for this event, or None if not written
    """
    if not settings.XAPT_AUDIT_ENABLED:
        return None

    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        wallet_address=wallet_address,
        request_id=request_id
    )

    try:
        ensure_audit_log_directory()

        with _write_lock:
            with open(get_audit_log_path(), "a") as f:
                f.write(json.dumps(event, default=str) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


# Convenience functions for specific event types

def log_request_received(
    client_ip: str,
    method: str,
    path: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a gated request arriving."""
    return log_audit_event(
        event_type=AuditEventType.REQUEST_RECEIVED,
        data={"method": method, "path": path},
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_required_sent(
    client_ip: str,
    payment_id: str,
    amount: str,
    recipient: str,
    network: str,
    resource: str,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a 402 Payment Required response event."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REQUIRED_SENT,
        data={
            "payment_id": payment_id,
            "amount": amount,
            "recipient": recipient,
            "network": network,
            "resource": resource,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_payment_received(
    client_ip: str,
    payment_id: str,
    transaction_hash: Optional[str],
    sender: Optional[str],
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a decoded payment proof arriving."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_RECEIVED,
        data={
            "payment_id": payment_id,
            "transaction_hash": transaction_hash,
        },
        client_ip=client_ip,
        wallet_address=sender,
        request_id=request_id
    )


def log_payment_verified(
    client_ip: str,
    payment_id: str,
    transaction_hash: Optional[str],
    sender: Optional[str],
    amount: Optional[str],
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an accepted payment."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_VERIFIED,
        data={
            "payment_id": payment_id,
            "transaction_hash": transaction_hash,
            "amount": amount,
        },
        client_ip=client_ip,
        wallet_address=sender,
        request_id=request_id
    )


def log_payment_rejected(
    client_ip: str,
    reason: str,
    stage: str,
    payment_id: Optional[str] = None,
    sender: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a rejected proof (malformed header or facilitator verdict)."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REJECTED,
        data={
            "payment_id": payment_id,
            "reason": reason,
            "stage": stage,
        },
        client_ip=client_ip,
        wallet_address=sender,
        request_id=request_id
    )


def log_payment_replayed(
    client_ip: str,
    payment_id: str,
    transaction_hash: Optional[str],
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a proof that was already accepted once."""
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_REPLAYED,
        data={
            "payment_id": payment_id,
            "transaction_hash": transaction_hash,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_facilitator_error(
    client_ip: str,
    payment_id: str,
    error_code: str,
    status_code: Optional[int] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log a facilitator failure that ended a request with 500."""
    return log_audit_event(
        event_type=AuditEventType.FACILITATOR_ERROR,
        data={
            "payment_id": payment_id,
            "error_code": error_code,
            "status_code": status_code,
        },
        client_ip=client_ip,
        request_id=request_id
    )


def log_error(
    client_ip: str,
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """Log an unexpected error event."""
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        client_ip=client_ip,
        request_id=request_id
    )


def read_audit_log(
    max_entries: Optional[int] = 100,
    event_type: Optional[AuditEventType] = None,
    client_ip: Optional[str] = None
) -> list:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return (None for all)
        event_type: Filter by event type (optional)
        client_ip: Filter by client IP (optional)

    Returns:
        List of audit events (most recent first)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    events = []
    try:
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if event_type and event.get("event_type") != event_type.value:
                    continue
                if client_ip and event.get("client_ip") != client_ip:
                    continue
                events.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    events.reverse()
    if max_entries is None:
        return events
    return events[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """
    Get statistics from the audit log.

    Returns:
        Dict with event counts and date range
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return {
            "total_events": 0,
            "events_by_type": {},
            "log_path": str(log_path),
            "log_exists": False,
        }

    events_by_type: Dict[str, int] = {}
    total = 0
    first_timestamp = None
    last_timestamp = None

    events = read_audit_log(max_entries=None)
    for event in reversed(events):
        total += 1
        kind = event.get("event_type", "unknown")
        events_by_type[kind] = events_by_type.get(kind, 0) + 1
        timestamp = event.get("timestamp")
        if timestamp:
            if first_timestamp is None:
                first_timestamp = timestamp
            last_timestamp = timestamp

    return {
        "total_events": total,
        "events_by_type": events_by_type,
        "first_event": first_timestamp,
        "last_event": last_timestamp,
        "log_path": str(log_path),
        "log_exists": True,
    }
