# hourinbox/helpers/validation.py
"""Input validation helpers for API endpoints.

Alle Helper werfen ValidationError (Subklasse von ValueError), die der
zentrale Error-Handler als HTTP 400 rendert. Validierung läuft immer vor
jedem Netzwerkzugriff.
"""

from hourinbox.errors import ValidationError


def validate_string(value, field_name, min_len=1, max_len=1000, allow_empty=False):
    """Validate string input for API endpoints.

    Args:
        value: Value to validate
        field_name: Field name for error messages
        min_len: Minimum length (default: 1)
        max_len: Maximum length (default: 1000)
        allow_empty: Allow empty strings (default: False)

    Returns:
        Cleaned string or None if allow_empty=True and value is empty

    Raises:
        ValidationError: If validation fails
    """
    if value is None:
        if allow_empty:
            return None
        raise ValidationError(f"{field_name} is required")

    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")

    value = value.strip()

    if len(value) == 0:
        if allow_empty:
            return None
        raise ValidationError(f"{field_name} is required")

    if len(value) < min_len:
        raise ValidationError(f"{field_name} must be at least {min_len} characters")

    if len(value) > max_len:
        raise ValidationError(f"{field_name} must be at most {max_len} characters")

    return value


def validate_integer(value, field_name, min_val=None, max_val=None, default=None):
    """Validate integer input (also query-string values).

    Returns:
        Integer value, or ``default`` if value is None and a default is given

    Raises:
        ValidationError: If validation fails
    """
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationError(f"{field_name} is required")

    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number")

    if not isinstance(value, int):
        try:
            value = int(value)
        except (ValueError, TypeError):
            raise ValidationError(f"{field_name} must be a number")

    if min_val is not None and value < min_val:
        raise ValidationError(f"{field_name} must be at least {min_val}")

    if max_val is not None and value > max_val:
        raise ValidationError(f"{field_name} must be at most {max_val}")

    return value


def validate_email(value, field_name):
    """Validate email address.

    Returns:
        Normalized email address (lowercase, stripped)

    Raises:
        ValidationError: If validation fails
    """
    if value is None or not isinstance(value, str):
        raise ValidationError(f"{field_name} is required")

    value = value.strip().lower()

    if len(value) == 0:
        raise ValidationError(f"{field_name} is required")

    if len(value) > 320:  # RFC 5321 Maximum
        raise ValidationError(f"{field_name} is too long (max. 320 characters)")

    if "@" not in value:
        raise ValidationError(f"{field_name} is not a valid email address")

    local_part, domain = value.rsplit("@", 1)

    if not local_part or not domain or "." not in domain:
        raise ValidationError(f"{field_name} is not a valid email address")

    return value


def validate_uid_list(value, field_name="uids"):
    """Liste positiver Integer-UIDs (Batch-Operationen)"""
    if not isinstance(value, list) or not value:
        raise ValidationError(f"{field_name} must be a non-empty array")
    return [validate_integer(v, field_name, min_val=1) for v in value]


def validate_flag_list(value, field_name):
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(f, str) and f for f in value):
        raise ValidationError(f"{field_name} must be an array of strings")
    return value


def parse_bool(value, default=False) -> bool:
    """Query-String Bool ('true', '1', 'yes')"""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")
