"""
Authentication application.

Accounts for the club site. A regular account is a parent: the person who
pays for player registrations. Admin accounts review refunds and manage
payment processor configuration.

Key components:
    - User model: Email-based account carrying the parent payment flags
    - UserManager: Email-based user creation

Usage:
    from authentication.models import User
"""

default_app_config = "authentication.apps.AuthenticationConfig"
