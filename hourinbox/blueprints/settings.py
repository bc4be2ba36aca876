# hourinbox/blueprints/settings.py
"""Settings Blueprint - Client-Einstellungen und Signaturen.

Routes (6 total):
    1. /settings (GET)
    2. /settings (PUT)
    3. /settings/signatures (GET)
    4. /settings/signatures (POST)
    5. /settings/signatures/<id> (PUT)
    6. /settings/signatures/<id> (DELETE)
"""

from flask import Blueprint, request
import logging

from hourinbox.errors import ValidationError
from hourinbox.helpers import get_db_session, api_success
from hourinbox.helpers.context import require_session
from hourinbox.services import settings_service

settings_bp = Blueprint("settings", __name__, url_prefix="/settings")
logger = logging.getLogger(__name__)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid body")
    return data


@settings_bp.route("", methods=["GET"])
def get_settings():
    _, session = require_session()
    with get_db_session() as db:
        return api_success(data=settings_service.get_settings(db, session.email))


@settings_bp.route("", methods=["PUT"])
def update_settings():
    _, session = require_session()
    payload = _json_body()
    with get_db_session() as db:
        return api_success(data=settings_service.update_settings(db, session.email, payload))


@settings_bp.route("/signatures", methods=["GET"])
def list_signatures():
    _, session = require_session()
    with get_db_session() as db:
        return api_success(data={"signatures": settings_service.list_signatures(db, session.email)})


@settings_bp.route("/signatures", methods=["POST"])
def create_signature():
    _, session = require_session()
    payload = _json_body()
    with get_db_session() as db:
        signature = settings_service.create_signature(db, session.email, payload)
    logger.info(f"✅ Signatur angelegt für {session.email}")
    return api_success(data=signature, status_code=201)


@settings_bp.route("/signatures/<int:signature_id>", methods=["PUT"])
def update_signature(signature_id):
    _, session = require_session()
    payload = _json_body()
    with get_db_session() as db:
        return api_success(data=settings_service.update_signature(db, session.email, signature_id, payload))


@settings_bp.route("/signatures/<int:signature_id>", methods=["DELETE"])
def delete_signature(signature_id):
    _, session = require_session()
    with get_db_session() as db:
        settings_service.delete_signature(db, session.email, signature_id)
    return api_success()
