# tests/test_config.py
"""
Tests for environment-driven settings.
"""
import pytest
from pydantic import ValidationError

from xapt.core.config import Settings

RECIPIENT = "0x" + "c3" * 32


class TestSettings:
    """Test Settings parsing from the environment."""

    def test_defaults(self, monkeypatch):
        """Defaults describe a testnet gate with auto-refill on."""
        for name in ("XAPT_NETWORK", "XAPT_PAYMENT_RULES", "XAPT_NODE_URLS", "XAPT_ENABLED"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.XAPT_ENABLED is True
        assert settings.XAPT_NETWORK == "testnet"
        assert settings.XAPT_PAYMENT_RULES == {}
        assert settings.XAPT_FACILITATOR_TIMEOUT == 30.0
        assert settings.XAPT_REPLAY_PROTECTION is True
        assert settings.XAPT_LOW_BALANCE_THRESHOLD == 0.005
        assert settings.XAPT_AUTO_REFILL_AMOUNT == 0.05
        assert settings.XAPT_MAX_REFILLS_PER_DAY == 5
        assert settings.XAPT_MAX_DAILY_REFILL_AMOUNT == 0.5
        assert len(settings.XAPT_NODE_URLS) == 2

    def test_payment_rules_from_json(self, monkeypatch):
        """XAPT_PAYMENT_RULES is parsed as a JSON object."""
        monkeypatch.setenv(
            "XAPT_PAYMENT_RULES",
            '{"/api/premium/data": {"amount": "0.1", "recipientAddress": "%s"}}' % RECIPIENT,
        )

        settings = Settings(_env_file=None)

        assert settings.XAPT_PAYMENT_RULES["/api/premium/data"]["amount"] == "0.1"

    def test_node_urls_from_json(self, monkeypatch):
        """XAPT_NODE_URLS is a JSON list in order."""
        monkeypatch.setenv("XAPT_NODE_URLS", '["https://a.test", "https://b.test"]')

        settings = Settings(_env_file=None)

        assert settings.XAPT_NODE_URLS == ["https://a.test", "https://b.test"]

    def test_booleans_and_numbers(self, monkeypatch):
        """Flags and numbers are coerced from strings."""
        monkeypatch.setenv("XAPT_ENABLED", "false")
        monkeypatch.setenv("XAPT_MAX_REFILLS_PER_DAY", "2")
        monkeypatch.setenv("XAPT_FACILITATOR_TIMEOUT", "5.5")

        settings = Settings(_env_file=None)

        assert settings.XAPT_ENABLED is False
        assert settings.XAPT_MAX_REFILLS_PER_DAY == 2
        assert settings.XAPT_FACILITATOR_TIMEOUT == 5.5

    def test_invalid_facilitator_url(self, monkeypatch):
        """A non-URL facilitator address is rejected."""
        monkeypatch.setenv("XAPT_FACILITATOR_URL", "not a url")

        with pytest.raises(ValidationError):
            Settings(_env_file=None)
