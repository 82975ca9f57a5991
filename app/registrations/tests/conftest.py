"""
Test configuration and fixtures for registration tests.
"""

import pytest

from authentication.tests.factories import UserFactory
from registrations.tests.factories import PlayerFactory, RegistrationFactory


@pytest.fixture
def parent(db):
    """Parent account with no payments."""
    return UserFactory()


@pytest.fixture
def players(parent):
    """Two players owned by ``parent``."""
    return [PlayerFactory(parent=parent), PlayerFactory(parent=parent)]


@pytest.fixture
def registrations(players):
    """One Spring 2025 registration per player."""
    return [RegistrationFactory(player=player) for player in players]
