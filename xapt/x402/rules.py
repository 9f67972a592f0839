"""
Path-based payment rules for the payment gate.

Rules are keyed by path prefix and kept in registration order. Lookup
tries an exact match first, then the first registered prefix of the
request path, so more specific prefixes must be registered first.
"""
import logging
from typing import Dict, Mapping, Optional, Union

from xapt.core.config import settings
from xapt.x402.models import PaymentRule

logger = logging.getLogger(__name__)


class PaymentRuleResolver:
    """Maps request paths to payment rules."""

    def __init__(self, rules: Optional[Mapping[str, Union[PaymentRule, dict]]] = None):
        self._rules: Dict[str, PaymentRule] = {}
        for path, rule in (rules or {}).items():
            self.register(path, rule)

    def register(self, path: str, rule: Union[PaymentRule, dict]) -> None:
        """Add a rule; an existing key keeps its original position."""
        if not isinstance(rule, PaymentRule):
            rule = PaymentRule.model_validate(rule)
        self._rules[path] = rule

    @property
    def rules(self) -> Dict[str, PaymentRule]:
        return dict(self._rules)

    def resolve(self, path: str) -> Optional[PaymentRule]:
        """
        Find the payment rule for a request path.

        Args:
            path: Request path, e.g. "/api/premium/data"

        Returns:
            The matching PaymentRule, or None if the path is not gated
        """
        rule = self._rules.get(path)
        if rule is not None:
            return rule

        for prefix, rule in self._rules.items():
            if path.startswith(prefix):
                return rule

        return None

    def __len__(self) -> int:
        return len(self._rules)

    @classmethod
    def from_settings(cls) -> "PaymentRuleResolver":
        """
        Build a resolver from XAPT_PAYMENT_RULES.

        Rules without a recipientAddress fall back to XAPT_PAY_TO_ADDRESS.
        """
        resolver = cls()
        for path, raw_rule in settings.XAPT_PAYMENT_RULES.items():
            rule = dict(raw_rule)
            if not rule.get("recipientAddress") and not rule.get("recipient_address"):
                if not settings.XAPT_PAY_TO_ADDRESS:
                    logger.warning(f"Skipping payment rule for {path}: no recipient configured")
                    continue
                rule["recipientAddress"] = settings.XAPT_PAY_TO_ADDRESS
            resolver.register(path, rule)
        return resolver
