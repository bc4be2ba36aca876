# hourinbox/services/login_guard.py
"""Login-Rate-Limit pro Mail-Adresse (Redis INCR + EXPIRE).

Max. 5 Versuche in 15 Minuten; der Zähler wird vor der Prüfung der
Zugangsdaten erhöht und bei erfolgreichem Login gelöscht.
"""

import logging

from hourinbox.errors import RateLimited

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 5
WINDOW_SECONDS = 15 * 60


class LoginGuard:
    def __init__(self, redis_client, max_attempts: int = MAX_ATTEMPTS, window: int = WINDOW_SECONDS):
        self.redis = redis_client
        self.max_attempts = max_attempts
        self.window = window

    @staticmethod
    def _key(email: str) -> str:
        return f"ratelimit:login:{email.lower()}"

    def register_attempt(self, email: str) -> int:
        """Zählt den Versuch; RateLimited ab Versuch max_attempts + 1"""
        key = self._key(email)
        attempts = self.redis.incr(key)
        if attempts == 1:
            self.redis.expire(key, self.window)
        if attempts > self.max_attempts:
            logger.warning(f"🚫 SECURITY[RATE_LIMITED] Login für {email} ({attempts} Versuche)")
            raise RateLimited("Too many login attempts. Please try again in 15 minutes.")
        return attempts

    def attempts(self, email: str) -> int:
        value = self.redis.get(self._key(email))
        return int(value) if value else 0

    def reset(self, email: str):
        self.redis.delete(self._key(email))
