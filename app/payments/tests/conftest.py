"""
Pytest fixtures for payment tests.

The processor is always the in-memory FakeProcessorAdapter installed through
the registry's adapter factory, and Redis is replaced by a MagicMock so the
distributed locks work without a server.

Usage:
    def test_refund(admin_user, payment, fake_adapter):
        refund = RefundService.request_refund(payment.pk, 2500)
        RefundService.process_refund(payment.pk, refund.pk, "approve", admin=admin_user)
        assert fake_adapter.refund_calls
"""

from unittest.mock import MagicMock, patch

import pytest
from rest_framework.test import APIClient

from authentication.tests.factories import AdminUserFactory, UserFactory
from payments.registry import ProcessorRegistry
from payments.tests.factories import PaymentFactory, ProcessorConfigurationFactory
from payments.tests.fakes import FakeProcessorAdapter
from registrations.tests.factories import PlayerFactory, RegistrationFactory


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture(autouse=True)
def mock_redis():
    """Redis stand-in for DistributedLock: every lock is free."""
    mock_redis = MagicMock()
    mock_redis.set.return_value = True
    mock_redis.get.return_value = None
    mock_redis.delete.return_value = 1
    mock_redis.eval.return_value = 1

    with patch("payments.locks.get_redis_connection", return_value=mock_redis):
        yield mock_redis


@pytest.fixture(autouse=True)
def reset_registry():
    """Each test starts with an empty adapter cache and the real factory."""
    ProcessorRegistry.set_adapter_factory(None)
    yield
    ProcessorRegistry.set_adapter_factory(None)


@pytest.fixture
def fake_adapter():
    """Install a FakeProcessorAdapter for every configuration."""
    adapter = FakeProcessorAdapter()

    def factory(credentials):
        adapter.built_with.append(credentials)
        return adapter

    ProcessorRegistry.set_adapter_factory(factory)
    return adapter


# =============================================================================
# Accounts
# =============================================================================


@pytest.fixture
def parent(db):
    """Parent account that pays for its players."""
    return UserFactory()


@pytest.fixture
def other_parent(db):
    return UserFactory()


@pytest.fixture
def admin_user(db):
    """Club admin (role=admin)."""
    return AdminUserFactory()


@pytest.fixture
def players(parent):
    """Two unpaid players owned by ``parent``."""
    return [PlayerFactory(parent=parent), PlayerFactory(parent=parent)]


@pytest.fixture
def registrations(players):
    """One unpaid Spring 2025 registration per player."""
    return [RegistrationFactory(player=player) for player in players]


# =============================================================================
# Processor Configuration
# =============================================================================


@pytest.fixture
def square_config(db):
    """Active default Square configuration."""
    return ProcessorConfigurationFactory(name="Club Square", is_default=True)


@pytest.fixture
def clover_config(db):
    """Active, non-default Clover configuration."""
    return ProcessorConfigurationFactory(name="Club Clover", clover=True)


# =============================================================================
# Ledger
# =============================================================================


@pytest.fixture
def payment(square_config, parent, players):
    """Completed $100.00 Square payment covering ``players``."""
    return PaymentFactory(
        configuration=square_config,
        parent=parent,
        buyer_email=parent.email,
        players=players,
    )


# =============================================================================
# API Clients
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    return APIClient()


@pytest.fixture
def parent_client(parent):
    """API client authenticated as ``parent``."""
    client = APIClient()
    client.force_authenticate(user=parent)
    return client


@pytest.fixture
def admin_api_client(admin_user):
    """API client authenticated as a club admin."""
    client = APIClient()
    client.force_authenticate(user=admin_user)
    return client
