# tests/test_negotiator.py
"""
Unit tests for the client-side payment negotiator.
"""
import json

import pytest
from unittest.mock import MagicMock

from requests.exceptions import ConnectionError

from xapt.client.negotiator import PaymentNegotiator
from xapt.x402.codec import encode_requirement, generate_payment_id
from xapt.x402.constants import (
    APT_COIN_TYPE,
    X_APTOS_PAYMENT_HEADER,
    X_APTOS_PAYMENT_REQUIRED_HEADER,
    Network,
)
from xapt.x402.errors import (
    ErrorCode,
    FetchFailed,
    InsufficientSavingsFunds,
    InvalidPaymentRequired,
    PaymentHandlingFailed,
    PaymentVerificationFailed,
)
from xapt.x402.models import PaymentRequirement

SENDER = "0x" + "a1" * 32
RECIPIENT = "0x" + "c3" * 32
TX_HASH = "0x" + "ef" * 32
URL = "http://resource.test/api/premium/data"


def make_requirement() -> PaymentRequirement:
    return PaymentRequirement(
        payment_id=generate_payment_id(),
        amount="0.01",
        token_address=APT_COIN_TYPE,
        recipient_address=RECIPIENT,
        network=Network.TESTNET,
    )


def make_response(status_code, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    return response


def payment_required_response(requirement):
    return make_response(402, {X_APTOS_PAYMENT_REQUIRED_HEADER: encode_requirement(requirement)})


@pytest.fixture
def manager():
    manager = MagicMock()
    manager.pay.return_value = TX_HASH
    manager.get_address.return_value = SENDER
    return manager


class TestFetchWithPayment:
    """Test the 402 -> pay -> retry round."""

    def test_non_402_passes_through(self, manager):
        """Responses other than 402 are returned without paying."""
        session = MagicMock()
        ok = make_response(200)
        session.request.return_value = ok

        result = PaymentNegotiator(manager, session=session).fetch_with_payment(URL)

        assert result is ok
        assert session.request.call_count == 1
        manager.pay.assert_not_called()

    def test_error_status_passes_through(self, manager):
        """A 500 is not retried either."""
        session = MagicMock()
        session.request.return_value = make_response(500)

        result = PaymentNegotiator(manager, session=session).fetch_with_payment(URL)

        assert result.status_code == 500
        assert session.request.call_count == 1

    def test_pays_and_retries_once(self, manager):
        """A 402 is paid and the request repeated with a proof."""
        requirement = make_requirement()
        session = MagicMock()
        ok = make_response(200)
        session.request.side_effect = [payment_required_response(requirement), ok]
        negotiator = PaymentNegotiator(manager, session=session, client_app_id="demo-app")

        result = negotiator.fetch_with_payment(URL, method="POST", json={"query": "x"})

        assert result is ok
        manager.pay.assert_called_once_with(RECIPIENT, "0.01", APT_COIN_TYPE)
        assert session.request.call_count == 2

        retry = session.request.call_args_list[1]
        assert retry.args == ("POST", URL)
        assert retry.kwargs["json"] == {"query": "x"}
        proof = json.loads(retry.kwargs["headers"][X_APTOS_PAYMENT_HEADER])
        assert proof["x402Version"] == 1
        assert proof["paymentId"] == requirement.payment_id
        assert proof["transactionHash"] == TX_HASH
        assert proof["senderAddress"] == SENDER
        assert proof["clientAppId"] == "demo-app"

    def test_merges_caller_headers(self, manager):
        """Caller headers survive on the retry; the first request is unmodified."""
        session = MagicMock()
        session.request.side_effect = [payment_required_response(make_requirement()), make_response(200)]

        PaymentNegotiator(manager, session=session).fetch_with_payment(
            URL, headers={"Authorization": "Bearer t"}
        )

        first, retry = session.request.call_args_list
        assert first.kwargs["headers"] == {"Authorization": "Bearer t"}
        assert retry.kwargs["headers"]["Authorization"] == "Bearer t"
        assert X_APTOS_PAYMENT_HEADER in retry.kwargs["headers"]

    def test_timeout_applied(self, manager):
        """The negotiator timeout is sent unless the caller set one."""
        session = MagicMock()
        session.request.return_value = make_response(200)

        PaymentNegotiator(manager, session=session, timeout=5.0).fetch_with_payment(URL)
        assert session.request.call_args.kwargs["timeout"] == 5.0

        PaymentNegotiator(manager, session=session, timeout=5.0).fetch_with_payment(URL, timeout=1.0)
        assert session.request.call_args.kwargs["timeout"] == 1.0

    def test_initial_transport_error(self, manager):
        """A request that cannot be sent raises FetchFailed."""
        session = MagicMock()
        session.request.side_effect = ConnectionError("refused")

        with pytest.raises(FetchFailed) as exc_info:
            PaymentNegotiator(manager, session=session).fetch_with_payment(URL)

        assert exc_info.value.code == ErrorCode.FETCH_FAILED
        assert isinstance(exc_info.value.cause, ConnectionError)

    def test_missing_requirement_header(self, manager):
        """A 402 without the header fails fast."""
        session = MagicMock()
        session.request.return_value = make_response(402)

        with pytest.raises(InvalidPaymentRequired):
            PaymentNegotiator(manager, session=session).fetch_with_payment(URL)

        manager.pay.assert_not_called()

    def test_malformed_requirement_header(self, manager):
        """An undecodable header fails fast with the decode kind."""
        session = MagicMock()
        session.request.return_value = make_response(402, {X_APTOS_PAYMENT_REQUIRED_HEADER: "{oops"})

        with pytest.raises(InvalidPaymentRequired) as exc_info:
            PaymentNegotiator(manager, session=session).fetch_with_payment(URL)

        assert exc_info.value.details["kind"] == "MALFORMED_HEADER"
        assert isinstance(exc_info.value, PaymentHandlingFailed)
        manager.pay.assert_not_called()

    def test_oversized_number_in_requirement_header(self, manager):
        """A number past the parser digit limit is an invalid requirement, not a crash."""
        header = '{"paymentId": ' + "1" * 5000 + "}"
        session = MagicMock()
        session.request.return_value = make_response(402, {X_APTOS_PAYMENT_REQUIRED_HEADER: header})

        with pytest.raises(InvalidPaymentRequired) as exc_info:
            PaymentNegotiator(manager, session=session).fetch_with_payment(URL)

        assert exc_info.value.details["kind"] == "MALFORMED_HEADER"
        manager.pay.assert_not_called()

    def test_payment_failure_wrapped(self, manager):
        """Wallet errors surface as PaymentHandlingFailed with the cause."""
        cause = InsufficientSavingsFunds()
        manager.pay.side_effect = cause
        session = MagicMock()
        session.request.return_value = payment_required_response(make_requirement())

        with pytest.raises(PaymentHandlingFailed) as exc_info:
            PaymentNegotiator(manager, session=session).fetch_with_payment(URL)

        assert exc_info.value.cause is cause
        assert exc_info.value.details["cause_code"] == "INSUFFICIENT_SAVINGS_FUNDS"
        assert session.request.call_count == 1

    def test_retry_transport_error_wrapped(self, manager):
        """A failed retry request is a PaymentHandlingFailed, not FetchFailed."""
        session = MagicMock()
        session.request.side_effect = [payment_required_response(make_requirement()), ConnectionError("reset")]

        with pytest.raises(PaymentHandlingFailed) as exc_info:
            PaymentNegotiator(manager, session=session).fetch_with_payment(URL)

        assert not isinstance(exc_info.value, FetchFailed)

    @pytest.mark.parametrize("status_code", [402, 500])
    def test_retry_not_accepted(self, manager, status_code):
        """A non-2xx retry raises with its status and is not retried again."""
        session = MagicMock()
        session.request.side_effect = [
            payment_required_response(make_requirement()),
            make_response(status_code),
        ]

        with pytest.raises(PaymentVerificationFailed) as exc_info:
            PaymentNegotiator(manager, session=session).fetch_with_payment(URL)

        assert exc_info.value.status_code == status_code
        assert session.request.call_count == 2
        assert manager.pay.call_count == 1
