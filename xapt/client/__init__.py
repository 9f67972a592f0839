"""
Paying client for xAPT-gated resources.
"""
from xapt.client.negotiator import PaymentNegotiator

__all__ = ["PaymentNegotiator"]
