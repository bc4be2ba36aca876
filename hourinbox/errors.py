# hourinbox/errors.py
"""Fehler-Taxonomie für alle Blueprints und Services.

Jede Exception trägt HTTP-Status und maschinenlesbaren Code, damit der
zentrale Error-Handler in app_factory.py sie einheitlich rendern kann.
"""


class HourInboxError(Exception):
    """Basisklasse aller fachlichen Fehler"""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = None, code: str = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code:
            self.code = code


class Unauthenticated(HourInboxError):
    status_code = 401
    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Not authenticated", code: str = None):
        super().__init__(message, code)


class AuthenticationFailed(HourInboxError):
    """IMAP-Server hat die Zugangsdaten abgelehnt"""

    status_code = 401
    code = "AUTHENTICATION_FAILED"


class ValidationError(HourInboxError, ValueError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFound(HourInboxError):
    status_code = 404
    code = "NOT_FOUND"


class Conflict(HourInboxError):
    status_code = 409
    code = "CONFLICT"


class UnprocessableConnection(HourInboxError):
    status_code = 422
    code = "CONNECTION_FAILED"


class RateLimited(HourInboxError):
    status_code = 429
    code = "RATE_LIMITED"


class UpstreamUnavailable(HourInboxError):
    """IMAP/SMTP Transport- oder Protokollfehler"""

    status_code = 502
    code = "UPSTREAM_UNAVAILABLE"


class IntegrityError(HourInboxError):
    """Ciphertext ist fehlerhaft oder wurde manipuliert"""

    status_code = 401
    code = "INTEGRITY_ERROR"
