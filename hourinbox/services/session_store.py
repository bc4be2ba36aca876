# hourinbox/services/session_store.py
"""Session Store - Token → Verbindungsparameter + verschlüsseltes Passwort.

Redis-Layout:
    session:<token>   JSON mit SessionData (TTL 24h)
    password:<token>  Vault-Ciphertext (TTL 24h, separat löschbar)

Die Liste der Multi-Account-Tokens und das aktive Token liegen beim Browser
(Cookies) und werden pro Request als AccountCookies übergeben. Der Store hält
keinen prozessweiten Zustand außer dem Redis-Client.
"""

import json
import logging
import secrets
from dataclasses import dataclass, field, asdict
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

SESSION_TTL = 60 * 60 * 24  # 24h
SESSION_PREFIX = "session:"
PASSWORD_PREFIX = "password:"


@dataclass(frozen=True)
class SessionData:
    """Verbindungsparameter eines eingeloggten Accounts (wird nie in-place geändert)"""

    email: str
    org_id: str
    imap_host: str
    imap_port: int
    smtp_host: str
    smtp_port: int
    tls_mode: str = "tls"
    reject_unauthorized: bool = True

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "SessionData":
        data = json.loads(raw)
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


@dataclass
class AccountCookies:
    """Browser-seitiger Multi-Account-Zustand (geordnete Token-Liste + aktives Token)"""

    tokens: List[str] = field(default_factory=list)
    active: Optional[str] = None

    @classmethod
    def from_cookie_values(cls, active: Optional[str], accounts_raw: Optional[str]) -> "AccountCookies":
        tokens = []
        if accounts_raw:
            try:
                parsed = json.loads(accounts_raw)
                if isinstance(parsed, list):
                    tokens = [t for t in parsed if isinstance(t, str) and t]
            except ValueError:
                logger.warning("⚠️ Accounts-Cookie nicht lesbar, wird ignoriert")
        if active and active not in tokens:
            tokens.append(active)
        return cls(tokens=tokens, active=active or None)

    def accounts_cookie_value(self) -> str:
        return json.dumps(self.tokens)


class SessionStore:
    """Multi-Account Session-Verwaltung auf Redis"""

    def __init__(self, redis_client, vault, ttl: int = SESSION_TTL):
        self.redis = redis_client
        self.vault = vault
        self.ttl = ttl

    @staticmethod
    def _session_key(token: str) -> str:
        return f"{SESSION_PREFIX}{token}"

    @staticmethod
    def _password_key(token: str) -> str:
        return f"{PASSWORD_PREFIX}{token}"

    def create(self, cookies: AccountCookies, data: SessionData, password: str = None) -> str:
        """Legt eine neue Session an und macht sie aktiv.

        Andere Tokens derselben Mail-Adresse gelten als veraltetes Doppel-Login
        und werden samt Passwort gelöscht. Tokens anderer Adressen bleiben.
        """
        token = secrets.token_hex(32)
        self.redis.set(self._session_key(token), data.to_json(), ex=self.ttl)
        if password is not None:
            self.store_password(token, password)

        kept = []
        for existing in cookies.tokens:
            if existing == token:
                continue
            other = self.get(existing)
            if other is not None and other.email == data.email:
                self.redis.delete(self._session_key(existing), self._password_key(existing))
                logger.debug(f"Veraltete Session für {data.email} entfernt")
                continue
            kept.append(existing)

        kept.append(token)
        cookies.tokens = kept
        cookies.active = token
        return token

    def store_password(self, token: str, password: str):
        self.redis.set(self._password_key(token), self.vault.encrypt(password), ex=self.ttl)

    def get(self, token: Optional[str]) -> Optional[SessionData]:
        """None bedeutet 'abgelaufen' - nicht unterscheidbar von 'nie existiert'"""
        if not token:
            return None
        raw = self.redis.get(self._session_key(token))
        if raw is None:
            return None
        try:
            return SessionData.from_json(raw)
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"⚠️ Session-Record defekt, wird ignoriert: {e}")
            return None

    def get_password(self, token: str) -> Optional[str]:
        """Entschlüsselt das Passwort; IntegrityError wird propagiert"""
        ciphertext = self.redis.get(self._password_key(token))
        if ciphertext is None:
            return None
        return self.vault.decrypt(ciphertext)

    def destroy(self, cookies: AccountCookies, token: str):
        """Löscht Session+Passwort; promotet ggf. das nächste Token"""
        self.redis.delete(self._session_key(token), self._password_key(token))
        cookies.tokens = [t for t in cookies.tokens if t != token]
        if cookies.active == token:
            cookies.active = cookies.tokens[0] if cookies.tokens else None

    def list_accounts(
        self,
        cookies: AccountCookies,
        describe_org: Callable[[str], Optional[dict]] = None,
    ) -> List[dict]:
        """Alle gültigen Accounts des Browsers; abgelaufene Tokens fallen raus"""
        alive = []
        for token in cookies.tokens:
            data = self.get(token)
            if data is not None:
                alive.append((token, data))
        cookies.tokens = [token for token, _ in alive]
        if cookies.active not in cookies.tokens:
            cookies.active = cookies.tokens[0] if cookies.tokens else None

        accounts = []
        for token, data in alive:
            org = describe_org(data.org_id) if describe_org else None
            accounts.append({
                "email": data.email,
                "organization": org.get("name") if org else None,
                "domain": org.get("domain") if org else data.email.rsplit("@", 1)[-1],
                "active": token == cookies.active,
            })
        return accounts

    def find_token(self, cookies: AccountCookies, email: str) -> Optional[str]:
        email = email.strip().lower()
        for token in cookies.tokens:
            data = self.get(token)
            if data is not None and data.email.lower() == email:
                return token
        return None

    def switch_active(self, cookies: AccountCookies, email: str) -> bool:
        """False = unbekannter Account (Aufrufer muss das als Fehler behandeln)"""
        token = self.find_token(cookies, email)
        if token is None:
            return False
        cookies.active = token
        return True

    def remove_account(self, cookies: AccountCookies, email: str) -> bool:
        token = self.find_token(cookies, email)
        if token is None:
            return False
        self.destroy(cookies, token)
        return True
