"""Database-related exceptions for Hourglass.

Messages never include connection passwords.
"""


class DatabaseError(Exception):
    """Base exception for database setup."""


class ConfigurationError(DatabaseError):
    """Raised when database configuration is invalid or missing."""
