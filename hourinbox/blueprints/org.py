# hourinbox/blueprints/org.py
"""Organisation Blueprint - IMAP/SMTP-Profile pro Mail-Domain.

Routes (3 total):
    1. /org/<domain> (GET) - öffentlich, für die Login-Seite
    2. /org/<domain> (PUT) - nur Accounts derselben Domain
    3. /org/register (POST) - öffentlich; prüft Erreichbarkeit von IMAP und SMTP
"""

from flask import Blueprint, request
import importlib
import logging

from sqlalchemy.exc import IntegrityError

from hourinbox.errors import Conflict, NotFound, UnprocessableConnection, ValidationError
from hourinbox.helpers import get_db_session, api_success, validate_integer, validate_string
from hourinbox.helpers.context import get_services, require_session
from hourinbox.helpers.database import find_organization_by_domain

org_bp = Blueprint("org", __name__, url_prefix="/org")
logger = logging.getLogger(__name__)

TLS_MODES = ("tls", "starttls", "none")

_models = None


def _get_models():
    global _models
    if _models is None:
        _models = importlib.import_module(".02_models", "hourinbox")
    return _models


def _tls_mode(value):
    if value is None:
        return "tls"
    if value not in TLS_MODES:
        raise ValidationError(f"tlsMode must be one of {', '.join(TLS_MODES)}")
    return value


def _port(value, field_name, default):
    if value is None or value == "":
        return default
    return validate_integer(value, field_name, min_val=1, max_val=65535)


# =============================================================================
# Route 1: /org/<domain> (GET)
# =============================================================================
@org_bp.route("/<domain>", methods=["GET"])
def get_org(domain):
    with get_db_session() as db:
        org = find_organization_by_domain(db, domain)
        if not org:
            raise NotFound("Organization not found")
        return api_success(data={
            "name": org.name,
            "domain": org.domain,
            "createdAt": org.created_at.isoformat() if org.created_at else None,
        })


# =============================================================================
# Route 2: /org/<domain> (PUT)
# =============================================================================
@org_bp.route("/<domain>", methods=["PUT"])
def update_org(domain):
    """Teil-Update des Profils"""
    _, session = require_session()
    if session.email.rsplit("@", 1)[-1].lower() != domain.lower():
        raise NotFound("Organization not found")

    data = request.get_json(silent=True) or {}
    with get_db_session() as db:
        org = find_organization_by_domain(db, domain)
        if not org:
            raise NotFound("Organization not found")

        if "name" in data:
            org.name = validate_string(data["name"], "name", max_len=255)
        if "imapHost" in data:
            org.imap_host = validate_string(data["imapHost"], "imapHost", max_len=255)
        if "imapPort" in data:
            org.imap_port = _port(data["imapPort"], "imapPort", org.imap_port)
        if "smtpHost" in data:
            org.smtp_host = validate_string(data["smtpHost"], "smtpHost", max_len=255)
        if "smtpPort" in data:
            org.smtp_port = _port(data["smtpPort"], "smtpPort", org.smtp_port)
        if "tlsMode" in data:
            org.tls_mode = _tls_mode(data["tlsMode"])
        if "rejectUnauthorized" in data:
            org.reject_unauthorized = data["rejectUnauthorized"] is not False

        db.commit()
        logger.info(f"✅ Organisation {org.domain} aktualisiert")
        return api_success(data={"organization": {
            "name": org.name,
            "domain": org.domain,
            "imapHost": org.imap_host,
            "smtpHost": org.smtp_host,
        }})


# =============================================================================
# Route 3: /org/register (POST)
# =============================================================================
@org_bp.route("/register", methods=["POST"])
def register_org():
    data = request.get_json(silent=True) or {}
    if not all(data.get(k) for k in ("name", "domain", "imapHost", "smtpHost")):
        raise ValidationError("Name, domain, IMAP host, and SMTP host are required")

    name = validate_string(data["name"], "name", max_len=255)
    domain = validate_string(data["domain"], "domain", max_len=255).lower()
    imap_host = validate_string(data["imapHost"], "imapHost", max_len=255)
    smtp_host = validate_string(data["smtpHost"], "smtpHost", max_len=255)
    imap_port = _port(data.get("imapPort"), "imapPort", 993)
    smtp_port = _port(data.get("smtpPort"), "smtpPort", 465)
    tls_mode = _tls_mode(data.get("tlsMode"))
    reject_unauthorized = data.get("rejectUnauthorized") is not False

    with get_db_session() as db:
        if find_organization_by_domain(db, domain):
            raise Conflict(f'Domain "{domain}" is already registered')

    probe = get_services().connection_probe
    for label, host, port in (("IMAP", imap_host, imap_port), ("SMTP", smtp_host, smtp_port)):
        result = probe(host, port, tls_mode, reject_unauthorized)
        if not result["success"]:
            raise UnprocessableConnection(f"{label} connection failed: {result['error']}")

    models = _get_models()
    with get_db_session() as db:
        org = models.Organization(
            name=name,
            domain=domain,
            imap_host=imap_host,
            imap_port=imap_port,
            smtp_host=smtp_host,
            smtp_port=smtp_port,
            tls_mode=tls_mode,
            reject_unauthorized=reject_unauthorized,
        )
        db.add(org)
        try:
            db.commit()
        except IntegrityError:
            # Parallele Registrierung derselben Domain hat gewonnen
            db.rollback()
            logger.warning(f"⚠️ Domain {domain} wurde parallel registriert")
            raise Conflict(f'Domain "{domain}" is already registered') from None
        logger.info(f"✅ Organisation registriert: {domain} ({imap_host}/{smtp_host})")
        return api_success(
            data={"organization": {"id": org.id, "name": org.name, "domain": org.domain}},
            status_code=201,
        )
