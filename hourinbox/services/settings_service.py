# hourinbox/services/settings_service.py
"""Einstellungen und Signaturen pro Mail-Adresse (SQLAlchemy).

Regeln für Signaturen:
    - die erste Signatur wird automatisch Standard
    - wird eine Signatur Standard, verlieren alle anderen das Flag
    - wird die Standard-Signatur gelöscht, wird die älteste verbleibende Standard
"""

import importlib
import logging

from hourinbox.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

MAX_SIGNATURE_LENGTH = 512_000
POLL_INTERVAL_MIN = 15
POLL_INTERVAL_MAX = 600

DEFAULT_SETTINGS = {
    "pushNotifications": True,
    "newEmailSound": True,
    "sendEmailSound": True,
    "pollInterval": 30,
}

_models = None


def _get_models():
    global _models
    if _models is None:
        _models = importlib.import_module(".02_models", "hourinbox")
    return _models


def _find_settings(db, email: str):
    return db.query(_get_models().UserSettings).filter_by(email=email).first()


def _ensure_settings(db, email: str):
    settings = _find_settings(db, email)
    if settings is None:
        settings = _get_models().UserSettings(email=email)
        db.add(settings)
        db.flush()
    return settings


def get_settings(db, email: str) -> dict:
    settings = _find_settings(db, email)
    return settings.to_dict() if settings else dict(DEFAULT_SETTINGS)


def update_settings(db, email: str, payload: dict) -> dict:
    """Übernimmt nur korrekt typisierte Felder; alles andere wird ignoriert"""
    settings = _ensure_settings(db, email)

    for key, column in (
        ("pushNotifications", "push_notifications"),
        ("newEmailSound", "new_email_sound"),
        ("sendEmailSound", "send_email_sound"),
    ):
        if isinstance(payload.get(key), bool):
            setattr(settings, column, payload[key])

    interval = payload.get("pollInterval")
    if (
        isinstance(interval, int)
        and not isinstance(interval, bool)
        and POLL_INTERVAL_MIN <= interval <= POLL_INTERVAL_MAX
    ):
        settings.poll_interval = interval

    db.commit()
    return settings.to_dict()


def list_signatures(db, email: str) -> list:
    settings = _find_settings(db, email)
    if settings is None:
        return []
    return [s.to_dict() for s in settings.signatures]


def _check_body(body):
    if isinstance(body, str) and len(body) > MAX_SIGNATURE_LENGTH:
        raise ValidationError("Signature body too large (max 500KB)")


def _clear_default(db, settings_id: int, except_id: int = None):
    models = _get_models()
    query = db.query(models.Signature).filter(models.Signature.user_settings_id == settings_id)
    if except_id is not None:
        query = query.filter(models.Signature.id != except_id)
    query.update({models.Signature.is_default: False}, synchronize_session="fetch")


def create_signature(db, email: str, payload: dict) -> dict:
    name = payload.get("name")
    body = payload.get("body")
    if not name or not isinstance(name, str) or not isinstance(body, str):
        raise ValidationError("name and body are required")
    _check_body(body)

    settings = _ensure_settings(db, email)
    is_default = payload.get("isDefault") is True or len(settings.signatures) == 0
    if is_default:
        _clear_default(db, settings.id)

    signature = _get_models().Signature(
        user_settings_id=settings.id, name=name.strip()[:100], body=body, is_default=is_default
    )
    db.add(signature)
    db.commit()
    return signature.to_dict()


def _owned_signature(db, email: str, signature_id: int):
    models = _get_models()
    signature = (
        db.query(models.Signature)
        .join(models.UserSettings)
        .filter(models.Signature.id == signature_id, models.UserSettings.email == email)
        .first()
    )
    if signature is None:
        raise NotFound("Signature not found")
    return signature


def update_signature(db, email: str, signature_id: int, payload: dict) -> dict:
    _check_body(payload.get("body"))
    signature = _owned_signature(db, email, signature_id)

    if payload.get("isDefault") is True:
        _clear_default(db, signature.user_settings_id, except_id=signature.id)
    if isinstance(payload.get("name"), str) and payload["name"].strip():
        signature.name = payload["name"].strip()[:100]
    if isinstance(payload.get("body"), str):
        signature.body = payload["body"]
    if isinstance(payload.get("isDefault"), bool):
        signature.is_default = payload["isDefault"]

    db.commit()
    return signature.to_dict()


def delete_signature(db, email: str, signature_id: int):
    models = _get_models()
    signature = _owned_signature(db, email, signature_id)
    settings_id = signature.user_settings_id
    was_default = signature.is_default

    db.delete(signature)
    db.flush()

    if was_default:
        oldest = (
            db.query(models.Signature)
            .filter_by(user_settings_id=settings_id)
            .order_by(models.Signature.created_at.asc(), models.Signature.id.asc())
            .first()
        )
        if oldest is not None:
            oldest.is_default = True
            logger.debug(f"Signatur {oldest.id} ist neuer Standard")

    db.commit()
