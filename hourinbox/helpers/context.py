# hourinbox/helpers/context.py
"""Per-Request-Kontext statt globaler Zustände.

``ServiceRegistry`` hält die geteilten, extern synchronisierten Handles
(Redis, Vault, Session Store, Cache) und hängt an ``app.extensions``.
``MailContext`` wird pro Request aus den Cookies aufgebaut.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional

from flask import current_app, g, request

from hourinbox.errors import IntegrityError, Unauthenticated
from hourinbox.services.mail_cache import MailCache
from hourinbox.services.mail_gateway import LocalLockTable, MailGateway
from hourinbox.services.mail_service import MailService
from hourinbox.services.session_store import AccountCookies, SessionData, SessionStore, SESSION_TTL
from hourinbox.services.smtp_sender import SMTPSender

SESSION_COOKIE = "hourinbox_session"
ACCOUNTS_COOKIE = "hourinbox_accounts"
EXTENSION_KEY = "hourinbox"


@dataclass
class ServiceRegistry:
    redis: object
    vault: object
    sessions: SessionStore
    cache: MailCache
    login_guard: object
    imap_client_factory: Callable
    smtp_factory: Callable
    connection_probe: Callable
    lock_redis: Optional[object] = None
    imap_timeout: float = 10.0
    local_locks: LocalLockTable = field(default_factory=LocalLockTable)

    def gateway(self, session: SessionData, password: str) -> MailGateway:
        return MailGateway(
            session,
            password,
            client_factory=self.imap_client_factory,
            redis_client=self.lock_redis,
            timeout=self.imap_timeout,
            local_locks=self.local_locks,
        )


@dataclass
class MailContext:
    token: str
    session: SessionData
    password: str
    cookies: AccountCookies
    services: ServiceRegistry

    @property
    def email(self) -> str:
        return self.session.email

    def mail_service(self) -> MailService:
        gateway = self.services.gateway(self.session, self.password)
        sender = SMTPSender(
            self.session, self.password, smtp_factory=self.services.smtp_factory, gateway=gateway
        )
        return MailService(self.email, self.token, gateway, self.services.cache, sender=sender)


def get_services() -> ServiceRegistry:
    return current_app.extensions[EXTENSION_KEY]


def read_account_cookies() -> AccountCookies:
    """Cookies einmal pro Request lesen (Änderungen landen in g)"""
    if "account_cookies" not in g:
        g.account_cookies = AccountCookies.from_cookie_values(
            request.cookies.get(SESSION_COOKIE), request.cookies.get(ACCOUNTS_COOKIE)
        )
    return g.account_cookies


def require_session() -> tuple:
    """(token, SessionData) des aktiven Accounts oder Unauthenticated"""
    cookies = read_account_cookies()
    session = get_services().sessions.get(cookies.active)
    if session is None:
        raise Unauthenticated()
    return cookies.active, session


def load_mail_context() -> MailContext:
    """Session + entschlüsseltes Passwort; fehlend/defekt = nicht eingeloggt"""
    token, session = require_session()
    services = get_services()
    try:
        password = services.sessions.get_password(token)
    except IntegrityError:
        raise Unauthenticated("Session expired") from None
    if password is None:
        raise Unauthenticated("Session expired")
    return MailContext(
        token=token,
        session=session,
        password=password,
        cookies=read_account_cookies(),
        services=services,
    )


def write_account_cookies(response, cookies: AccountCookies):
    """httpOnly, SameSite=Lax, 24h; leere Zustände löschen die Cookies"""
    secure = current_app.config.get("SESSION_COOKIE_SECURE", False)
    options = dict(max_age=SESSION_TTL, httponly=True, samesite="Lax", secure=secure, path="/")

    if cookies.active:
        response.set_cookie(SESSION_COOKIE, cookies.active, **options)
    else:
        response.delete_cookie(SESSION_COOKIE, path="/")

    if cookies.tokens:
        response.set_cookie(ACCOUNTS_COOKIE, cookies.accounts_cookie_value(), **options)
    else:
        response.delete_cookie(ACCOUNTS_COOKIE, path="/")
    return response
