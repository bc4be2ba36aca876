# hourinbox/blueprints/auth.py
"""Auth Blueprint - Login, Logout und Multi-Account.

Routes (6 total):
    1. /auth/login (POST) - IMAP-Login, Session anlegen
    2. /auth/logout (POST) - aktive Session beenden
    3. /auth/switch (POST) - aktiven Account wechseln
    4. /auth/me (GET) - aktueller Account
    5. /auth/accounts (GET) - alle Accounts des Browsers
    6. /auth/remove (POST) - Hintergrund-Account entfernen
"""

from flask import Blueprint, request, make_response
import logging

from hourinbox.errors import HourInboxError, NotFound, ValidationError
from hourinbox.helpers import get_db_session, api_success, validate_email, validate_string
from hourinbox.helpers.context import (
    get_services,
    read_account_cookies,
    require_session,
    write_account_cookies,
)
from hourinbox.helpers.database import find_organization, find_organization_by_domain
from hourinbox.services.session_store import SessionData

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")
logger = logging.getLogger(__name__)


def _describe_org(org_id):
    with get_db_session() as db:
        org = find_organization(db, org_id)
        return {"name": org.name, "domain": org.domain} if org else None


def _with_cookies(response_tuple):
    response = make_response(response_tuple)
    return write_account_cookies(response, read_account_cookies())


# =============================================================================
# Route 1: /auth/login
# =============================================================================
@auth_bp.route("/login", methods=["POST"])
def login():
    """IMAP-Login gegen den Server der Organisation

    Rate Limiting: max. 5 Versuche / 15 Minuten pro Mail-Adresse (LoginGuard),
    zusätzlich IP-basiert via Flask-Limiter (app_factory.py).
    """
    data = request.get_json(silent=True) or {}
    if not data.get("email") or not data.get("password"):
        raise ValidationError("Email and password are required")

    email = validate_email(data.get("email"), "email")
    password = data.get("password")
    if not isinstance(password, str):
        raise ValidationError("password must be a string")

    services = get_services()
    services.login_guard.register_attempt(email)

    domain = email.rsplit("@", 1)[1]
    with get_db_session() as db:
        org = find_organization_by_domain(db, domain)
        if not org:
            raise NotFound(f"No organization registered for {domain}")
        session_data = SessionData(
            email=email,
            org_id=org.id,
            imap_host=org.imap_host,
            imap_port=org.imap_port,
            smtp_host=org.smtp_host,
            smtp_port=org.smtp_port,
            tls_mode=org.tls_mode,
            reject_unauthorized=org.reject_unauthorized,
        )
        org_name = org.name

    try:
        services.gateway(session_data, password).verify_credentials()
    except HourInboxError:
        logger.warning(f"❌ SECURITY[LOGIN_FAILED] {email} von {request.remote_addr}")
        raise

    services.login_guard.reset(email)
    cookies = read_account_cookies()
    services.sessions.create(cookies, session_data, password)
    logger.info(f"✅ SECURITY[LOGIN_SUCCESS] {email}")

    return _with_cookies(api_success(data={
        "user": {"email": email, "organization": org_name},
    }))


# =============================================================================
# Route 2: /auth/logout
# =============================================================================
@auth_bp.route("/logout", methods=["POST"])
def logout():
    """Beendet die aktive Session; ein anderer Account wird ggf. aktiv"""
    cookies = read_account_cookies()
    if cookies.active:
        get_services().sessions.destroy(cookies, cookies.active)

    next_account = get_services().sessions.get(cookies.active)
    return _with_cookies(api_success(data={
        "activeEmail": next_account.email if next_account else None,
    }))


# =============================================================================
# Route 3: /auth/switch
# =============================================================================
@auth_bp.route("/switch", methods=["POST"])
def switch():
    data = request.get_json(silent=True) or {}
    email = validate_email(data.get("email"), "email")

    cookies = read_account_cookies()
    if not get_services().sessions.switch_active(cookies, email):
        raise NotFound("Account not found")

    logger.info(f"🔄 Account gewechselt: {email}")
    return _with_cookies(api_success(data={"email": email}))


# =============================================================================
# Route 4: /auth/me
# =============================================================================
@auth_bp.route("/me", methods=["GET"])
def me():
    _, session = require_session()
    org = _describe_org(session.org_id)
    return api_success(data={
        "user": {
            "email": session.email,
            "organization": org["name"] if org else None,
            "domain": org["domain"] if org else None,
        }
    })


# =============================================================================
# Route 5: /auth/accounts
# =============================================================================
@auth_bp.route("/accounts", methods=["GET"])
def accounts():
    """Alle Accounts des Browsers (abgelaufene Tokens werden aus dem Cookie entfernt)"""
    cookies = read_account_cookies()
    result = get_services().sessions.list_accounts(cookies, _describe_org)
    return _with_cookies(api_success(data={"accounts": result}))


# =============================================================================
# Route 6: /auth/remove
# =============================================================================
@auth_bp.route("/remove", methods=["POST"])
def remove_account():
    data = request.get_json(silent=True) or {}
    email = validate_string(data.get("email"), "email", max_len=320).lower()

    cookies = read_account_cookies()
    if not get_services().sessions.remove_account(cookies, email):
        raise NotFound("Account not found")

    logger.info(f"🗑️ Account entfernt: {email}")
    return _with_cookies(api_success(data={"email": email}))
