"""
Test configuration and fixtures for authentication tests.
"""

import pytest

from authentication.tests.factories import AdminUserFactory, UserFactory


@pytest.fixture
def user(db):
    """Create a regular parent account."""
    return UserFactory()


@pytest.fixture
def admin_user(db):
    """Create a club admin account."""
    return AdminUserFactory()
