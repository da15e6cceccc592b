"""CivicGuard: proximity access control, issue lifecycle and community moderation."""

__version__ = "0.1.0"
