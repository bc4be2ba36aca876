# hourinbox/helpers/__init__.py
"""Shared helper modules for all blueprints."""

from .database import get_db_session
from .validation import validate_string, validate_integer, validate_email
from .responses import api_success, api_error

__all__ = [
    # Database helpers
    "get_db_session",
    # Validation helpers
    "validate_string",
    "validate_integer",
    "validate_email",
    # Response helpers
    "api_success",
    "api_error",
]
