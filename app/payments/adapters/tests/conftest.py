"""
Pytest fixtures for processor adapter tests.

No adapter test touches the network: the Square client class, the stripe
resources and the requests sessions are replaced with mocks, and vendor
errors are built locally.

Sections:
    - Credentials Fixtures
    - Square Fixtures
    - Stripe Fixtures
    - Requests-Based Adapter Fixtures (Clover, PayPal)
"""

from unittest.mock import MagicMock, patch

import pytest
import stripe

from payments.adapters import (
    ChargeRequest,
    CloverAdapter,
    PayPalAdapter,
    ProcessorCredentials,
    SquareAdapter,
    StripeAdapter,
)
from payments.adapters.tests.mocks import http_response


# =============================================================================
# Credentials Fixtures
# =============================================================================


@pytest.fixture
def square_credentials():
    return ProcessorCredentials(
        kind="square",
        access_token="EAAA-sandbox-token",
        application_id="sandbox-sq0idb-app",
        location_id="L-SANDBOX",
        configuration_id="cfg-square",
        version=1,
    )


@pytest.fixture
def stripe_credentials():
    return ProcessorCredentials(kind="stripe", access_token="sk_test_123", application_id="pk_test_123")


@pytest.fixture
def clover_credentials():
    return ProcessorCredentials(kind="clover", access_token="clover-api-token", merchant_id="MERCHANT1")


@pytest.fixture
def paypal_credentials():
    return ProcessorCredentials(kind="paypal", access_token="paypal-secret", application_id="paypal-client-id")


@pytest.fixture
def charge_request():
    """$125.00 charge request."""
    return ChargeRequest(
        source_token="cnon:card-nonce-ok",
        amount_cents=12500,
        currency="USD",
        buyer_email="parent@example.com",
        idempotency_key="charge-test-key",
        buyer_reference="42",
        note="Spring 2025 registration",
    )


# =============================================================================
# Square Fixtures
# =============================================================================


@pytest.fixture
def square_client():
    """Mock Square SDK client installed in place of ``square.Square``."""
    with patch("payments.adapters.square_adapter.Square") as square_class:
        client = MagicMock()
        square_class.return_value = client
        yield client


@pytest.fixture
def square_adapter(square_credentials, square_client):
    return SquareAdapter(square_credentials)


# =============================================================================
# Stripe Fixtures
# =============================================================================


@pytest.fixture
def mock_stripe_http_client():
    """Mock stripe.RequestsClient."""
    with patch("stripe.RequestsClient") as mock:
        yield mock


@pytest.fixture
def mock_stripe_payment_intent():
    """Mock stripe.PaymentIntent API."""
    with patch("stripe.PaymentIntent") as mock:
        yield mock


@pytest.fixture
def mock_stripe_refund():
    """Mock stripe.Refund API."""
    with patch("stripe.Refund") as mock:
        yield mock


@pytest.fixture
def mock_stripe_balance():
    """Mock stripe.Balance API."""
    with patch("stripe.Balance") as mock:
        yield mock


@pytest.fixture
def stripe_adapter(stripe_credentials, mock_stripe_http_client):
    return StripeAdapter(stripe_credentials)


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""

    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
        decline_code: str | None = "generic_decline",
    ) -> stripe.CardError:
        error = stripe.CardError(message=message, param=None, code=code)
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "No such payment_intent",
        param: str | None = "payment_intent",
        code: str = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param=param, code=code)

    return _create


# =============================================================================
# Requests-Based Adapter Fixtures
# =============================================================================


@pytest.fixture
def clover_adapter(clover_credentials):
    adapter = CloverAdapter(clover_credentials)
    adapter.session = MagicMock()
    return adapter


@pytest.fixture
def paypal_adapter(paypal_credentials):
    """PayPal adapter whose token endpoint always answers."""
    adapter = PayPalAdapter(paypal_credentials)
    adapter.session = MagicMock()
    adapter.session.post.return_value = http_response(200, {"access_token": "A21-token", "expires_in": 32400})
    return adapter
