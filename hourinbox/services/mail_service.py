# hourinbox/services/mail_service.py
"""Mail Service - Business-Logik zwischen Blueprints, Cache und Gateway.

Reads: Cache prüfen → bei Miss Gateway → Ergebnis zurück in den Cache.
Mutationen: erst Gateway-Operation, nach Erfolg Invalidierung (best effort,
Fehler werden im MailCache geloggt und geschluckt), dann Antwort. Jede
Mutation liefert einen ``invalidate``-Hinweis für den Client-Mirror.
"""

import json
import logging
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import List, Optional

from hourinbox.errors import NotFound, ValidationError
from hourinbox.helpers.message_id import decode_message_id, is_numeric_uid
from hourinbox.services import contacts as contact_utils
from hourinbox.services import mail_cache as keys
from hourinbox.services.mail_cache import MailCache

logger = logging.getLogger(__name__)

STARRED_LIMIT = 50

ACCOUNT_HINT = {"scope": "account"}


def folders_hint(*folders) -> dict:
    return {"scope": "folders", "folders": [f for f in folders if f]}


@dataclass
class MutationResult:
    """Ergebnis einer Mutation inkl. Invalidierungs-Hinweis für den Client"""

    data: dict = field(default_factory=dict)
    invalidate: dict = field(default_factory=lambda: dict(ACCOUNT_HINT))


class MailService:
    def __init__(self, email: str, token: str, gateway, cache: MailCache, sender=None):
        self.email = email
        self.token = token
        self.gateway = gateway
        self.cache = cache
        self.sender = sender

    # =========================================================================
    # Reads
    # =========================================================================

    def folders(self, refresh: bool = False) -> list:
        return self.cache.get_or_load(
            self.email, keys.folders_key(self.email), keys.TTL_FOLDERS,
            self.gateway.list_folders, refresh=refresh,
        )

    def messages(self, folder: str, page: int, limit: int) -> dict:
        return self.cache.get_or_load(
            self.email, keys.messages_key(self.email, folder, page, limit), keys.TTL_MESSAGES,
            lambda: self.gateway.list_messages(folder, page, limit),
        )

    def resolve_uid(self, folder: str, identifier: str) -> int:
        """Numerische UID oder base64url-kodierte Message-ID → UID des Ordners"""
        if is_numeric_uid(identifier):
            return int(identifier)

        message_id = decode_message_id(identifier)
        key = keys.resolve_key(self.email, folder, message_id)
        uid = self.cache.get(key)
        if uid is MailCache.MISS:
            uid = self.gateway.resolve_message_id(folder, message_id)
            if uid is None:
                raise NotFound("Message not found")
            self.cache.set(self.email, key, uid, keys.TTL_RESOLVE)
        return int(uid)

    def message(self, folder: str, identifier: str) -> dict:
        uid = self.resolve_uid(folder, identifier)
        key = keys.message_key(self.email, folder, uid)
        cached = self.cache.get(key)
        if cached is not MailCache.MISS:
            return cached

        message = self.gateway.get_message(folder, uid)
        if message is None:
            raise NotFound("Message not found")
        self.cache.set(self.email, key, message, keys.TTL_MESSAGE)
        return message

    def search(self, folder: str, criteria: dict, limit: int) -> dict:
        key = keys.search_key(self.token, folder, criteria, limit)
        return self.cache.get_or_load(
            self.email, key, keys.TTL_SEARCH,
            lambda: self.gateway.search_messages(folder, criteria, limit),
        )

    def starred(self) -> dict:
        return self.cache.get_or_load(
            self.email, keys.starred_key(self.email), keys.TTL_STARRED,
            lambda: self.gateway.search_messages("INBOX", {"flagged": True}, STARRED_LIMIT),
        )

    def contacts(self) -> list:
        return self.cache.get_or_load(
            self.email, keys.contacts_key(self.email), keys.TTL_CONTACTS,
            self.gateway.collect_addresses,
        )

    def attachment(self, folder: str, uid: int, filename: str) -> dict:
        attachment = self.gateway.get_attachment(folder, uid, filename)
        if attachment is None:
            raise NotFound("Attachment not found")
        return attachment

    def draft(self, folder: str, uid: int) -> dict:
        content = self.gateway.get_draft_content(folder, uid)
        if content is None:
            raise NotFound("Draft not found")
        return content

    # =========================================================================
    # Mutationen
    # =========================================================================

    def update_flags(self, folder: str, uid: int, add: List[str], remove: List[str]) -> MutationResult:
        self.gateway.update_flags(folder, uid, add=add, remove=remove)
        self.cache.invalidate_account(self.email)
        return MutationResult()

    def batch_flags(self, folder: str, uids: List[int], add: List[str], remove: List[str]) -> MutationResult:
        self.gateway.update_flags(folder, uids, add=add, remove=remove)
        self.cache.invalidate_folder(self.email, folder)
        return MutationResult(data={"updated": len(uids)}, invalidate=folders_hint(folder))

    def delete(self, folder: str, uid: int) -> MutationResult:
        outcome = self.gateway.move_to_trash_or_delete(folder, uid)
        self.cache.invalidate_account(self.email)
        return MutationResult(data={
            "permanent": outcome["permanent"],
            "movedTo": None if outcome["permanent"] else outcome["trash"],
        })

    def _move_to_special(self, folder: str, uid: int, special_uses: tuple, label: str) -> MutationResult:
        target = None
        for special_use in special_uses:
            target = self.gateway.move_to_special(folder, uid, special_use)
            if target is not None:
                break
        if target is None:
            raise NotFound(f"No {label} folder found on this server")
        self.cache.invalidate_account(self.email)
        return MutationResult(data={"movedTo": target})

    def archive(self, folder: str, uid: int) -> MutationResult:
        return self._move_to_special(folder, uid, ("\\All", "\\Archive"), "archive")

    def junk(self, folder: str, uid: int) -> MutationResult:
        return self._move_to_special(folder, uid, ("\\Junk",), "junk")

    def send(self, mail) -> MutationResult:
        result = self.sender.send(mail)
        self.cache.invalidate_account(self.email)
        return MutationResult(data=result)

    def build_draft(self, to: str = "", cc: str = "", bcc: str = "", subject: str = "", html: str = "") -> bytes:
        msg = EmailMessage()
        msg["From"] = self.email
        if to:
            msg["To"] = to
        if cc:
            msg["Cc"] = cc
        if bcc:
            msg["Bcc"] = bcc
        msg["Subject"] = subject or "(no subject)"
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(domain=self.email.rsplit("@", 1)[-1])
        if html:
            msg.set_content(html, subtype="html")
        else:
            msg.set_content("")
        return msg.as_bytes()

    def save_draft(self, raw_message: bytes, replace_uid: Optional[int] = None) -> MutationResult:
        result = self.gateway.append_draft(raw_message, replace_uid=replace_uid)
        self.cache.invalidate_folder(self.email, result["folder"])
        return MutationResult(data=result, invalidate=folders_hint(result["folder"]))

    # =========================================================================
    # Kontakte Import/Export
    # =========================================================================

    def export_contacts(self, local_raw: Optional[str] = None) -> str:
        """Server-Kontakte + lokale Kontakte des Clients als vCard 3.0"""
        merged = list(self.gateway.collect_addresses())
        if local_raw:
            try:
                local = json.loads(local_raw)
            except ValueError:
                logger.debug("Lokale Kontakte nicht lesbar, ignoriert")
                local = []
            if isinstance(local, list):
                merged += [c for c in local if isinstance(c, dict) and isinstance(c.get("address"), str)]
        return contact_utils.generate_vcard(contact_utils.sort_contacts(contact_utils.dedupe(merged)))

    @staticmethod
    def import_contacts(filename: str, content: str) -> dict:
        parsed = contact_utils.dedupe(contact_utils.parse_contacts_file(filename, content))
        if not parsed:
            raise ValidationError("No valid contacts found in file")
        return {"imported": len(parsed), "contacts": parsed}
