# hourinbox/blueprints/mail.py
"""Mail Blueprint - Ordner, Nachrichten, Suche, Versand, Entwürfe, Kontakte.

Alle Routes benötigen eine gültige Session. Die Logik liegt im MailService,
die Routes validieren nur Eingaben (vor jedem Netzwerkzugriff) und rendern.

Routes (17 total):
    1. /mail/folders (GET)
    2. /mail/messages (GET)
    3. /mail/messages/<identifier> (GET) - UID oder base64url Message-ID
    4. /mail/messages/<uid> (PUT) - Flags
    5. /mail/messages/batch-flags (PUT)
    6. /mail/messages/<uid> (DELETE)
    7. /mail/archive (POST)
    8. /mail/junk (POST)
    9. /mail/search (GET)
    10. /mail/starred (GET)
    11. /mail/send (POST) - JSON oder multipart
    12. /mail/draft (GET)
    13. /mail/draft (POST)
    14. /mail/contacts (GET)
    15. /mail/contacts/export (GET)
    16. /mail/contacts/import (POST)
    17. /mail/attachment (GET)
"""

import base64
import binascii
import json
import logging
from datetime import date
from email.utils import formataddr, getaddresses

from flask import Blueprint, Response, request

from hourinbox.errors import ValidationError
from hourinbox.helpers import api_success, validate_integer, validate_string
from hourinbox.helpers.context import load_mail_context
from hourinbox.helpers.validation import (
    parse_bool,
    validate_flag_list,
    validate_uid_list,
)
from hourinbox.services.mail_service import MailService
from hourinbox.services.smtp_sender import Attachment, OutgoingMail

mail_bp = Blueprint("mail", __name__, url_prefix="/mail")
logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50


def _folder(value, default="INBOX"):
    if value is None or value == "":
        return default
    return validate_string(value, "folder", max_len=500)


def _mutation_response(result):
    return api_success(data=result.data, invalidate=result.invalidate)


def _parse_date(value, field_name):
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise ValidationError(f"{field_name} must be a date (YYYY-MM-DD)") from None


def _recipients(value, field_name):
    """Liste oder kommagetrennter String → Liste formatierter Adressen"""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
            if isinstance(parsed, list):
                value = parsed
        except ValueError:
            pass
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{field_name} must be a list of addresses")
    pairs = [(name, addr) for name, addr in getaddresses(value) if addr]
    for _, addr in pairs:
        if "@" not in addr:
            raise ValidationError(f"{field_name} contains an invalid address: {addr}")
    return [formataddr(pair) for pair in pairs]


# =============================================================================
# Route 1: /mail/folders
# =============================================================================
@mail_bp.route("/folders", methods=["GET"])
def folders():
    ctx = load_mail_context()
    refresh = parse_bool(request.args.get("refresh"))
    return api_success(data={"folders": ctx.mail_service().folders(refresh=refresh)})


# =============================================================================
# Route 2: /mail/messages
# =============================================================================
@mail_bp.route("/messages", methods=["GET"])
def list_messages():
    folder = _folder(request.args.get("folder"))
    page = validate_integer(request.args.get("page"), "page", min_val=1, default=1)
    limit = validate_integer(
        request.args.get("limit"), "limit", min_val=1, max_val=MAX_PAGE_SIZE, default=DEFAULT_PAGE_SIZE
    )
    ctx = load_mail_context()
    result = ctx.mail_service().messages(folder, page, limit)
    return api_success(data={**result, "page": page, "limit": limit, "folder": folder})


# =============================================================================
# Route 3: /mail/messages/<identifier>
# =============================================================================
@mail_bp.route("/messages/<identifier>", methods=["GET"])
def get_message(identifier):
    folder = _folder(request.args.get("folder"))
    ctx = load_mail_context()
    return api_success(data={"message": ctx.mail_service().message(folder, identifier)})


# =============================================================================
# Route 4: /mail/messages/<uid> (PUT)
# =============================================================================
@mail_bp.route("/messages/<int:uid>", methods=["PUT"])
def update_message(uid):
    data = request.get_json(silent=True) or {}
    folder = _folder(data.get("folder"))
    add = validate_flag_list(data.get("addFlags"), "addFlags")
    remove = validate_flag_list(data.get("removeFlags"), "removeFlags")

    ctx = load_mail_context()
    return _mutation_response(ctx.mail_service().update_flags(folder, uid, add, remove))


# =============================================================================
# Route 5: /mail/messages/batch-flags
# =============================================================================
@mail_bp.route("/messages/batch-flags", methods=["PUT"])
def batch_flags():
    """Flags für viele UIDs eines Ordners in einem IMAP-Round-Trip"""
    data = request.get_json(silent=True) or {}
    uids = validate_uid_list(data.get("uids"))
    folder = _folder(data.get("folder"))
    add = validate_flag_list(data.get("addFlags"), "addFlags")
    remove = validate_flag_list(data.get("removeFlags"), "removeFlags")

    ctx = load_mail_context()
    return _mutation_response(ctx.mail_service().batch_flags(folder, uids, add, remove))


# =============================================================================
# Route 6: /mail/messages/<uid> (DELETE)
# =============================================================================
@mail_bp.route("/messages/<int:uid>", methods=["DELETE"])
def delete_message(uid):
    """Verschiebt in den Papierkorb; im Papierkorb endgültig löschen"""
    folder = _folder(request.args.get("folder"))
    ctx = load_mail_context()
    return _mutation_response(ctx.mail_service().delete(folder, uid))


# =============================================================================
# Route 7+8: /mail/archive, /mail/junk
# =============================================================================
def _uid_and_folder():
    data = request.get_json(silent=True) or {}
    if not data.get("uid") or not data.get("folder"):
        raise ValidationError("Missing uid or folder")
    return validate_integer(data.get("uid"), "uid", min_val=1), _folder(data.get("folder"))


@mail_bp.route("/archive", methods=["POST"])
def archive():
    uid, folder = _uid_and_folder()
    ctx = load_mail_context()
    return _mutation_response(ctx.mail_service().archive(folder, uid))


@mail_bp.route("/junk", methods=["POST"])
def junk():
    uid, folder = _uid_and_folder()
    ctx = load_mail_context()
    return _mutation_response(ctx.mail_service().junk(folder, uid))


# =============================================================================
# Route 9: /mail/search
# =============================================================================
@mail_bp.route("/search", methods=["GET"])
def search():
    args = request.args
    criteria = {
        "text": args.get("q") or None,
        "from": args.get("from") or None,
        "to": args.get("to") or None,
        "subject": args.get("subject") or None,
        "since": _parse_date(args.get("since"), "since"),
        "before": _parse_date(args.get("before"), "before"),
        "larger": validate_integer(args.get("larger"), "larger", min_val=0) if args.get("larger") else None,
        "smaller": validate_integer(args.get("smaller"), "smaller", min_val=0) if args.get("smaller") else None,
        "flagged": parse_bool(args.get("flagged")) or None,
    }
    criteria = {k: v for k, v in criteria.items() if v}
    if not criteria:
        raise ValidationError("At least one search parameter is required")

    folder = _folder(args.get("folder"))
    limit = validate_integer(
        args.get("limit"), "limit", min_val=1, max_val=MAX_PAGE_SIZE, default=DEFAULT_PAGE_SIZE
    )
    ctx = load_mail_context()
    result = ctx.mail_service().search(folder, criteria, limit)
    return api_success(data={**result, "folder": folder})


# =============================================================================
# Route 10: /mail/starred
# =============================================================================
@mail_bp.route("/starred", methods=["GET"])
def starred():
    ctx = load_mail_context()
    return api_success(data=ctx.mail_service().starred())


# =============================================================================
# Route 11: /mail/send
# =============================================================================
def _read_send_payload():
    """JSON-Body oder multipart/form-data mit Datei-Anhängen"""
    if request.mimetype == "multipart/form-data":
        data = request.form.to_dict()
        attachments = [
            Attachment(
                filename=f.filename or "attachment",
                content=f.read(),
                content_type=f.mimetype or "application/octet-stream",
            )
            for f in request.files.getlist("attachments")
            if f and f.filename
        ]
        return data, attachments

    data = request.get_json(silent=True) or {}
    attachments = []
    for item in data.get("attachments") or []:
        if not isinstance(item, dict) or not item.get("filename"):
            raise ValidationError("attachments must contain filename and content")
        try:
            content = base64.b64decode(item.get("content") or "", validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError(f"Attachment {item['filename']} is not valid base64") from None
        attachments.append(Attachment(
            filename=item["filename"],
            content=content,
            content_type=item.get("contentType") or "application/octet-stream",
        ))
    return data, attachments


@mail_bp.route("/send", methods=["POST"])
def send():
    data, attachments = _read_send_payload()

    to = _recipients(data.get("to"), "to")
    if not to or not data.get("subject"):
        raise ValidationError("Missing required fields: to, subject")

    mail = OutgoingMail(
        to=to,
        cc=_recipients(data.get("cc"), "cc"),
        bcc=_recipients(data.get("bcc"), "bcc"),
        subject=validate_string(data.get("subject"), "subject", max_len=998),
        text=data.get("text") or "",
        html=data.get("html") or "",
        reply_to=data.get("replyTo") or None,
        in_reply_to=data.get("inReplyTo") or None,
        attachments=attachments,
    )

    ctx = load_mail_context()
    return _mutation_response(ctx.mail_service().send(mail))


# =============================================================================
# Route 12+13: /mail/draft
# =============================================================================
@mail_bp.route("/draft", methods=["GET"])
def get_draft():
    uid = validate_integer(request.args.get("uid"), "uid", min_val=1)
    folder = _folder(request.args.get("folder"), default="Drafts")
    ctx = load_mail_context()
    return api_success(data=ctx.mail_service().draft(folder, uid))


@mail_bp.route("/draft", methods=["POST"])
def save_draft():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Missing body")

    replace_uid = data.get("replaceUid")
    if replace_uid:
        replace_uid = validate_integer(replace_uid, "replaceUid", min_val=1)

    ctx = load_mail_context()
    service = ctx.mail_service()
    raw = service.build_draft(
        to=", ".join(_recipients(data.get("to"), "to")),
        cc=", ".join(_recipients(data.get("cc"), "cc")),
        bcc=", ".join(_recipients(data.get("bcc"), "bcc")),
        subject=data.get("subject") or "",
        html=data.get("html") or "",
    )
    return _mutation_response(service.save_draft(raw, replace_uid=replace_uid or None))


# =============================================================================
# Route 14-16: /mail/contacts
# =============================================================================
@mail_bp.route("/contacts", methods=["GET"])
def contacts():
    ctx = load_mail_context()
    return api_success(data={"contacts": ctx.mail_service().contacts()})


@mail_bp.route("/contacts/export", methods=["GET"])
def export_contacts():
    ctx = load_mail_context()
    vcf = ctx.mail_service().export_contacts(request.args.get("local"))
    return Response(
        vcf,
        mimetype="text/vcard",
        headers={"Content-Disposition": 'attachment; filename="contacts.vcf"'},
    )


@mail_bp.route("/contacts/import", methods=["POST"])
def import_contacts():
    """vCard (.vcf) oder CSV; Adressen werden dedupliziert"""
    load_mail_context()
    upload = next(iter(request.files.values()), None)
    if upload is None:
        raise ValidationError("No file uploaded")

    content = upload.read().decode("utf-8", "replace")
    return api_success(data=MailService.import_contacts(upload.filename or "", content))


# =============================================================================
# Route 17: /mail/attachment
# =============================================================================
@mail_bp.route("/attachment", methods=["GET"])
def attachment():
    uid = validate_integer(request.args.get("uid"), "uid", min_val=1)
    folder = _folder(request.args.get("folder"))
    filename = validate_string(request.args.get("filename"), "filename", max_len=500)
    disposition = "inline" if request.args.get("mode") == "view" else "attachment"

    ctx = load_mail_context()
    result = ctx.mail_service().attachment(folder, uid, filename)
    safe_name = result["filename"].replace('"', "")
    return Response(
        result["content"],
        mimetype=result["contentType"],
        headers={"Content-Disposition": f'{disposition}; filename="{safe_name}"'},
    )
