# hourinbox/services/mail_gateway.py
"""Mail Gateway - IMAP-Operationen mit IMAPClient.

Jede Operation öffnet eine eigene Verbindung, loggt sich ein, führt genau
eine logische Arbeitseinheit aus und trennt wieder (kein Pooling). Ordner-
bezogene Operationen laufen unter einem Mailbox-Lock pro (Account, Ordner):
mit Redis als verteilter Lock, sonst über die LocalLockTable der App.

Fehler:
    - LoginError → AuthenticationFailed
    - Transport/Protokoll (IMAPClientError, OSError, SSL, Timeout) → UpstreamUnavailable
    - fehlende Nachricht → None, fehlender Ordner → NotFound
"""

import html
import logging
import re
import ssl
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from email import message_from_bytes, policy
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from email.parser import BytesHeaderParser
from email.utils import getaddresses
from typing import Dict, List, Optional

import redis
from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError, LoginError

from hourinbox.errors import AuthenticationFailed, NotFound, UpstreamUnavailable

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0
LOCK_TIMEOUT = 60
LOCK_BLOCKING_TIMEOUT = 30
COLLECT_WINDOW = 200
REPLACES_HEADER = "X-HourInbox-Replaces"

SUMMARY_FIELDS = ["UID", "ENVELOPE", "FLAGS", "RFC822.SIZE"]

SPECIAL_USE_FLAGS = ("\\Sent", "\\Drafts", "\\Trash", "\\Junk", "\\Archive", "\\All")

# Fallback für Server ohne SPECIAL-USE (RFC 6154)
SPECIAL_USE_NAMES = {
    "\\Sent": ("sent", "sent items", "sent messages", "gesendet", "gesendete elemente", "inbox.sent"),
    "\\Drafts": ("drafts", "entwürfe", "inbox.drafts"),
    "\\Trash": ("trash", "deleted items", "deleted messages", "papierkorb", "inbox.trash"),
    "\\Junk": ("junk", "spam", "junk e-mail", "inbox.junk", "inbox.spam"),
    "\\Archive": ("archive", "archiv", "inbox.archive"),
}

_APPENDUID_RE = re.compile(rb"APPENDUID\s+\d+\s+(\d+)", re.IGNORECASE)

class LocalLockTable:
    """Prozesslokale Mailbox-Locks für Betrieb ohne Redis.

    Einträge leben nur, solange jemand den Lock hält oder darauf wartet.
    """

    def __init__(self):
        self._locks: Dict[str, list] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, name: str):
        with self._guard:
            entry = self._locks.get(name)
            if entry is None:
                entry = self._locks[name] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[name]


# =============================================================================
# Adress-Normalisierung (einzige Stelle, an der Upstream-Formate geparst werden)
# =============================================================================


def _to_str(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return str(value)


def decode_mime_header(value) -> str:
    """RFC 2047 Encoded-Words dekodieren (Envelope-Felder kommen roh)"""
    text = _to_str(value)
    if not text:
        return ""
    try:
        return str(make_header(decode_header(text)))
    except (HeaderParseError, UnicodeError, LookupError):
        return text


@dataclass(frozen=True)
class Address:
    """Normalisierte Adresse ``{name, address}``"""

    name: str
    address: str

    @classmethod
    def from_parts(cls, name: str, address: str) -> "Address":
        name = (name or "").strip()
        address = (address or "").strip()

        # Manche Server liefern die komplette Adresse im Namensfeld
        if not address and "@" in name and "<" not in name:
            address, name = name, ""

        if not address and name:
            match = re.search(r"<([^>]+)>", name)
            if match:
                address = match.group(1).strip()
                name = re.sub(r"<[^>]+>", "", name).strip().strip('"')

        return cls(name=name, address=address)

    @classmethod
    def from_envelope(cls, addr) -> "Address":
        """imapclient.response_types.Address (name, route, mailbox, host)"""
        if addr is None:
            return cls("", "")
        mailbox = _to_str(getattr(addr, "mailbox", None))
        host = _to_str(getattr(addr, "host", None))
        if mailbox and host:
            address = f"{mailbox}@{host}"
        else:
            address = mailbox or host
        return cls.from_parts(decode_mime_header(getattr(addr, "name", None)), address)

    @classmethod
    def list_from_header(cls, value) -> List["Address"]:
        if not value:
            return []
        return [
            cls.from_parts(decode_mime_header(name), addr)
            for name, addr in getaddresses([str(value)])
            if name or addr
        ]

    @property
    def display_name(self) -> str:
        """Anzeigename, ersatzweise der Local-Part der Adresse"""
        if self.name:
            return self.name
        at = self.address.find("@")
        return self.address[:at] if at > 0 else ""

    def to_dict(self) -> dict:
        return {"name": self.display_name, "address": self.address}

    def formatted(self) -> str:
        return f"{self.name} <{self.address}>" if self.name else self.address


# =============================================================================
# Suchkriterien
# =============================================================================


def build_search_criteria(criteria: dict) -> list:
    """Strukturierte Kriterien → IMAP SEARCH (imapclient-Listenform)

    Unterstützt: text, from, to, subject, since, before (date),
    larger, smaller (Bytes), flagged (bool).
    """
    result = []
    for key, imap_key in (("text", "TEXT"), ("from", "FROM"), ("to", "TO"), ("subject", "SUBJECT")):
        if criteria.get(key):
            result += [imap_key, criteria[key]]
    if criteria.get("since"):
        result += ["SINCE", criteria["since"]]
    if criteria.get("before"):
        result += ["BEFORE", criteria["before"]]
    if criteria.get("larger"):
        result += ["LARGER", int(criteria["larger"])]
    if criteria.get("smaller"):
        result += ["SMALLER", int(criteria["smaller"])]
    if criteria.get("flagged"):
        result.append("FLAGGED")
    return result or ["ALL"]


def _needs_utf8(criteria: list) -> bool:
    return any(isinstance(c, str) and not c.isascii() for c in criteria)


# =============================================================================
# Gateway
# =============================================================================


class MailGateway:
    """IMAP-Zugriff für genau einen Account (SessionData + Klartext-Passwort)"""

    def __init__(self, session, password: str, client_factory=IMAPClient,
                 redis_client=None, timeout: float = CONNECT_TIMEOUT,
                 local_locks: Optional[LocalLockTable] = None):
        self.session = session
        self.password = password
        self.client_factory = client_factory
        self.redis = redis_client
        self.timeout = timeout
        self.local_locks = local_locks if local_locks is not None else LocalLockTable()

    # -------------------------------------------------------------------------
    # Verbindung + Lock
    # -------------------------------------------------------------------------

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if self.session.tls_mode not in ("tls", "starttls"):
            return None
        context = ssl.create_default_context()
        if not self.session.reject_unauthorized:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _open(self):
        context = self._ssl_context()
        client = self.client_factory(
            self.session.imap_host,
            port=self.session.imap_port,
            ssl=self.session.tls_mode == "tls",
            ssl_context=context,
            timeout=self.timeout,
        )
        if self.session.tls_mode == "starttls":
            client.starttls(context)
        client.login(self.session.email, self.password)
        return client

    @contextmanager
    def _connection(self):
        host = f"{self.session.imap_host}:{self.session.imap_port}"
        try:
            client = self._open()
        except LoginError as e:
            logger.warning(f"❌ IMAP-Login fehlgeschlagen für {self.session.email}@{host}")
            raise AuthenticationFailed(f"Authentication failed: {_to_str(e) or 'invalid credentials'}") from None
        except (IMAPClientError, OSError) as e:
            logger.error(f"🔌 IMAP-Verbindung zu {host} fehlgeschlagen: {e}")
            raise UpstreamUnavailable(f"IMAP error: {e}") from None

        try:
            yield client
        except (IMAPClientError, OSError) as e:
            logger.error(f"❌ IMAP-Fehler bei {host}: {e}")
            raise UpstreamUnavailable(f"IMAP error: {e}") from None
        finally:
            try:
                client.logout()
            except (IMAPClientError, OSError) as e:
                logger.debug(f"IMAP-Logout fehlgeschlagen (ignoriert): {e}")

    @contextmanager
    def _mailbox_lock(self, folder: str):
        name = f"lock:mailbox:{self.session.email}:{folder}"
        if self.redis is None:
            with self.local_locks.hold(name):
                yield
            return

        lock = self.redis.lock(name, timeout=LOCK_TIMEOUT, blocking_timeout=LOCK_BLOCKING_TIMEOUT)
        try:
            acquired = lock.acquire()
        except redis.RedisError as e:
            raise UpstreamUnavailable(f"Mailbox lock unavailable: {e}") from None
        if not acquired:
            raise UpstreamUnavailable(f"Mailbox {folder} is busy")
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError:
                logger.warning(f"⚠️ Mailbox-Lock {name} war bereits abgelaufen")

    @contextmanager
    def _mailbox(self, client, folder: str, readonly: bool = True):
        """Lock halten + Ordner selektieren; liefert SELECT-Response"""
        with self._mailbox_lock(folder):
            try:
                info = client.select_folder(folder, readonly=readonly)
            except IMAPClientError as e:
                text = _to_str(e).lower()
                if "nonexistent" in text or "not exist" in text or "no such" in text:
                    raise NotFound(f"Folder not found: {folder}") from None
                raise
            yield info

    # -------------------------------------------------------------------------
    # Ordner
    # -------------------------------------------------------------------------

    @staticmethod
    def _special_use(name: str, flags) -> Optional[str]:
        decoded = {_to_str(f) for f in flags or ()}
        for flag in SPECIAL_USE_FLAGS:
            if flag in decoded:
                return flag
        if name.upper() == "INBOX":
            return "\\Inbox"
        lowered = name.lower()
        for flag, names in SPECIAL_USE_NAMES.items():
            if lowered in names:
                return flag
        return None

    def _list_mailboxes(self, client) -> List[dict]:
        mailboxes = []
        for flags, delimiter, name in client.list_folders():
            decoded = {_to_str(f) for f in flags or ()}
            delimiter = _to_str(delimiter)
            mailboxes.append({
                "path": name,
                "name": name.rsplit(delimiter, 1)[-1] if delimiter else name,
                "specialUse": self._special_use(name, flags),
                "selectable": "\\Noselect" not in decoded and "\\NonExistent" not in decoded,
            })
        return mailboxes

    def _find_special(self, client, special_use: str) -> Optional[str]:
        for mailbox in self._list_mailboxes(client):
            if mailbox["specialUse"] == special_use and mailbox["selectable"]:
                return mailbox["path"]
        return None

    def list_folders(self) -> List[dict]:
        """Alle Ordner mit Nachrichten-/Ungelesen-Zählern (ein STATUS pro Ordner)"""
        with self._connection() as client:
            folders = []
            for mailbox in self._list_mailboxes(client):
                if not mailbox["selectable"]:
                    continue
                status = client.folder_status(mailbox["path"], ["MESSAGES", "UNSEEN"])
                folders.append({
                    "path": mailbox["path"],
                    "name": mailbox["name"],
                    "specialUse": mailbox["specialUse"],
                    "messages": int(status.get(b"MESSAGES", 0)),
                    "unseen": int(status.get(b"UNSEEN", 0)),
                })
            return folders

    # -------------------------------------------------------------------------
    # Listen / Suchen
    # -------------------------------------------------------------------------

    @staticmethod
    def _summary(uid: int, data: dict) -> dict:
        envelope = data.get(b"ENVELOPE")
        date = getattr(envelope, "date", None)
        if isinstance(date, datetime) and date.tzinfo is None:
            date = date.replace(tzinfo=timezone.utc)
        message_id = _to_str(getattr(envelope, "message_id", None)) or None
        flags = [_to_str(f) for f in data.get(b"FLAGS", ())]
        return {
            "uid": int(uid),
            "messageId": message_id,
            "subject": decode_mime_header(getattr(envelope, "subject", None)) or "(no subject)",
            "from": [Address.from_envelope(a).to_dict() for a in (getattr(envelope, "from_", None) or ())],
            "to": [Address.from_envelope(a).to_dict() for a in (getattr(envelope, "to", None) or ())],
            "date": date.isoformat() if isinstance(date, datetime) else "",
            "flags": flags,
            "seen": "\\Seen" in flags,
            "flagged": "\\Flagged" in flags,
            "size": int(data.get(b"RFC822.SIZE", 0)),
        }

    @staticmethod
    def _sort_newest_first(messages: List[dict]) -> List[dict]:
        def key(m):
            try:
                return datetime.fromisoformat(m["date"]).timestamp()
            except ValueError:
                return float("-inf")
        return sorted(messages, key=lambda m: (key(m), m["uid"]), reverse=True)

    @staticmethod
    def page_window(total: int, page: int, limit: int) -> Optional[tuple]:
        """Sequenz-Fenster (start, end) von hinten gezählt; None = Seite leer"""
        end = total - (page - 1) * limit
        if end < 1:
            return None
        start = max(1, total - page * limit + 1)
        return start, end

    def list_messages(self, folder: str = "INBOX", page: int = 1, limit: int = 50) -> dict:
        """Seite ``page`` (1 = neueste ``limit`` Nachrichten), neueste zuerst"""
        with self._connection() as client:
            with self._mailbox(client, folder) as info:
                total = int(info.get(b"EXISTS", 0))
                window = self.page_window(total, page, limit)
                if window is None:
                    return {"messages": [], "total": total}

                # Sequenznummern statt UIDs für das Fenster
                client.use_uid = False
                try:
                    response = client.fetch(f"{window[0]}:{window[1]}", SUMMARY_FIELDS)
                finally:
                    client.use_uid = True

                messages = [
                    self._summary(data[b"UID"], data)
                    for _, data in sorted(response.items(), key=lambda item: item[0], reverse=True)
                ]
                return {"messages": messages, "total": total}

    def search_messages(self, folder: str, criteria: dict, limit: int = 50) -> dict:
        """``total`` = alle Treffer, geliefert werden nur die neuesten ``limit``"""
        imap_criteria = build_search_criteria(criteria)
        charset = "UTF-8" if _needs_utf8(imap_criteria) else None

        with self._connection() as client:
            with self._mailbox(client, folder):
                uids = client.search(imap_criteria, charset=charset)
                if not uids:
                    return {"messages": [], "total": 0}

                page_uids = sorted(uids, reverse=True)[:limit]
                response = client.fetch(page_uids, SUMMARY_FIELDS)
                messages = [self._summary(uid, data) for uid, data in response.items()]
                return {"messages": self._sort_newest_first(messages), "total": len(uids)}

    # -------------------------------------------------------------------------
    # Einzelne Nachricht
    # -------------------------------------------------------------------------

    def _fetch_raw(self, client, uid: int) -> Optional[tuple]:
        response = client.fetch([uid], ["BODY.PEEK[]", "FLAGS"])
        data = response.get(uid)
        if not data or b"BODY[]" not in data:
            return None
        return data[b"BODY[]"], [_to_str(f) for f in data.get(b"FLAGS", ())]

    @staticmethod
    def _bodies(msg) -> tuple:
        html_part = msg.get_body(preferencelist=("html",))
        text_part = msg.get_body(preferencelist=("plain",))
        html_body = html_part.get_content() if html_part is not None else ""
        text_body = text_part.get_content() if text_part is not None else ""
        if not html_body and text_body:
            html_body = "<p>" + html.escape(text_body).replace("\n", "<br>") + "</p>"
        return html_body, text_body

    @staticmethod
    def _attachment_parts(msg):
        for part in msg.walk():
            if part.is_multipart():
                continue
            if part.get_filename() and part.get_content_disposition() in ("attachment", "inline"):
                yield part

    def get_message(self, folder: str, uid: int) -> Optional[dict]:
        """Vollständige Nachricht oder None (UID unbekannt)"""
        with self._connection() as client:
            with self._mailbox(client, folder):
                fetched = self._fetch_raw(client, uid)
        if fetched is None:
            return None

        raw, flags = fetched
        msg = message_from_bytes(raw, policy=policy.default)
        html_body, text_body = self._bodies(msg)
        date = msg.get("Date")
        date_value = getattr(date, "datetime", None)

        return {
            "uid": int(uid),
            "messageId": str(msg.get("Message-ID", "")).strip() or None,
            "subject": str(msg.get("Subject", "")) or "(no subject)",
            "from": [a.to_dict() for a in Address.list_from_header(msg.get("From"))],
            "to": [a.to_dict() for a in Address.list_from_header(msg.get("To"))],
            "cc": [a.to_dict() for a in Address.list_from_header(msg.get("Cc"))],
            "date": date_value.isoformat() if date_value else "",
            "flags": flags,
            "seen": "\\Seen" in flags,
            "flagged": "\\Flagged" in flags,
            "preview": text_body[:200],
            "html": html_body,
            "text": text_body,
            "attachments": [
                {
                    "filename": part.get_filename() or "attachment",
                    "size": len(part.get_payload(decode=True) or b""),
                    "contentType": part.get_content_type(),
                }
                for part in self._attachment_parts(msg)
            ],
        }

    def get_attachment(self, folder: str, uid: int, filename: str) -> Optional[dict]:
        with self._connection() as client:
            with self._mailbox(client, folder):
                fetched = self._fetch_raw(client, uid)
        if fetched is None:
            return None

        msg = message_from_bytes(fetched[0], policy=policy.default)
        for part in self._attachment_parts(msg):
            if part.get_filename() == filename:
                return {
                    "content": part.get_payload(decode=True) or b"",
                    "contentType": part.get_content_type(),
                    "filename": filename,
                }
        return None

    def resolve_message_id(self, folder: str, message_id: str) -> Optional[int]:
        """Message-ID → UID; erst mit, dann ohne spitze Klammern"""
        bare = message_id.strip().strip("<>")
        with self._connection() as client:
            with self._mailbox(client, folder):
                for candidate in (f"<{bare}>", bare):
                    uids = client.search(["HEADER", "Message-ID", candidate])
                    if uids:
                        return int(uids[0])
        return None

    # -------------------------------------------------------------------------
    # Mutationen
    # -------------------------------------------------------------------------

    def update_flags(self, folder: str, uids, add: List[str] = None, remove: List[str] = None):
        """Flags für eine UID oder viele UIDs in einem Round-Trip"""
        uid_list = [uids] if isinstance(uids, int) else list(uids)
        if not uid_list or not (add or remove):
            return
        with self._connection() as client:
            with self._mailbox(client, folder, readonly=False):
                if add:
                    client.add_flags(uid_list, add, silent=True)
                if remove:
                    client.remove_flags(uid_list, remove, silent=True)

    @staticmethod
    def _expunge(client, uids: List[int]):
        """\\Deleted setzen + EXPUNGE (endgültig)"""
        client.delete_messages(uids, silent=True)
        client.expunge()

    def _move(self, client, uids: List[int], target: str):
        """MOVE; ohne MOVE-Capability COPY + \\Deleted + EXPUNGE"""
        if client.has_capability("MOVE"):
            client.move(uids, target)
        else:
            client.copy(uids, target)
            self._expunge(client, uids)

    def move_to_trash_or_delete(self, folder: str, uid: int) -> dict:
        """In den Papierkorb verschieben; im Papierkorb (oder ohne) endgültig löschen"""
        with self._connection() as client:
            trash = self._find_special(client, "\\Trash")
            permanent = trash is None or trash == folder
            with self._mailbox(client, folder, readonly=False):
                if permanent:
                    self._expunge(client, [uid])
                else:
                    self._move(client, [uid], trash)
        logger.info(f"🗑️ UID {uid} in {folder}: {'gelöscht' if permanent else f'→ {trash}'}")
        return {"permanent": permanent, "trash": trash}

    def move_to_special(self, folder: str, uid: int, special_use: str) -> Optional[str]:
        """Verschiebt in den Special-Use-Ordner; None wenn es keinen gibt"""
        with self._connection() as client:
            target = self._find_special(client, special_use)
            if target is None:
                return None
            with self._mailbox(client, folder, readonly=False):
                self._move(client, [uid], target)
        logger.info(f"📧 UID {uid}: {folder} → {target}")
        return target

    # -------------------------------------------------------------------------
    # Entwürfe / Gesendet
    # -------------------------------------------------------------------------

    @staticmethod
    def _appended_uid(response) -> Optional[int]:
        match = _APPENDUID_RE.search(response if isinstance(response, bytes) else _to_str(response).encode())
        return int(match.group(1)) if match else None

    def _superseded_drafts(self, client, replace_uid: int) -> List[int]:
        """UIDs aller Entwürfe, die ``replace_uid`` bereits ersetzt haben"""
        candidates = client.search(["HEADER", REPLACES_HEADER, str(replace_uid)])
        if not candidates:
            return []
        headers = client.fetch(candidates, ["BODY.PEEK[HEADER]"])
        parser = BytesHeaderParser()
        result = []
        for uid, data in headers.items():
            parsed = parser.parsebytes(data.get(b"BODY[HEADER]", b""))
            if (parsed.get(REPLACES_HEADER) or "").strip() == str(replace_uid):
                result.append(int(uid))
        return result

    def append_draft(self, raw_message: bytes, replace_uid: int = None) -> dict:
        """Entwurf speichern; ``replace_uid`` und dessen Nachfolger werden vorher gelöscht"""
        with self._connection() as client:
            drafts = self._find_special(client, "\\Drafts") or "Drafts"

            if replace_uid:
                with self._mailbox(client, drafts, readonly=False):
                    doomed = {int(replace_uid)} | set(self._superseded_drafts(client, replace_uid))
                    self._expunge(client, sorted(doomed))
                raw_message = f"{REPLACES_HEADER}: {int(replace_uid)}\r\n".encode() + raw_message

            with self._mailbox_lock(drafts):
                response = client.append(drafts, raw_message, flags=("\\Draft", "\\Seen"))
            uid = self._appended_uid(response)
            if uid is None:
                uid = self._find_by_message_id(client, drafts, raw_message)
        logger.info(f"📝 Entwurf gespeichert in {drafts} (UID {uid})")
        return {"uid": uid or 0, "folder": drafts}

    def _find_by_message_id(self, client, folder: str, raw_message: bytes) -> Optional[int]:
        # Server ohne UIDPLUS liefern kein APPENDUID
        message_id = BytesHeaderParser().parsebytes(raw_message).get("Message-ID")
        if not message_id:
            return None
        with self._mailbox(client, folder):
            uids = client.search(["HEADER", "Message-ID", message_id.strip()])
        return int(max(uids)) if uids else None

    def get_draft_content(self, folder: str, uid: int) -> Optional[dict]:
        with self._connection() as client:
            with self._mailbox(client, folder):
                fetched = self._fetch_raw(client, uid)
        if fetched is None:
            return None

        msg = message_from_bytes(fetched[0], policy=policy.default)
        html_body, _ = self._bodies(msg)

        def joined(header):
            return ", ".join(a.formatted() for a in Address.list_from_header(msg.get(header)))

        return {
            "to": joined("To"),
            "cc": joined("Cc"),
            "bcc": joined("Bcc"),
            "subject": str(msg.get("Subject", "")),
            "html": html_body,
        }

    def append_to_sent(self, raw_message: bytes) -> Optional[str]:
        """Kopie in den Gesendet-Ordner; None wenn keiner existiert"""
        with self._connection() as client:
            sent = self._find_special(client, "\\Sent")
            if sent is None:
                logger.warning(f"⚠️ Kein Gesendet-Ordner für {self.session.email}")
                return None
            with self._mailbox_lock(sent):
                client.append(sent, raw_message, flags=("\\Seen",))
        return sent

    # -------------------------------------------------------------------------
    # Kontakte
    # -------------------------------------------------------------------------

    def _scan_addresses(self, client, folder: str, use_recipients: bool, found: Dict[str, str]):
        with self._mailbox(client, folder) as info:
            total = int(info.get(b"EXISTS", 0))
            if total == 0:
                return
            client.use_uid = False
            try:
                response = client.fetch(f"{max(1, total - COLLECT_WINDOW + 1)}:{total}", ["ENVELOPE"])
            finally:
                client.use_uid = True

        for data in response.values():
            envelope = data.get(b"ENVELOPE")
            if use_recipients:
                raw = list(getattr(envelope, "to", None) or ()) + list(getattr(envelope, "cc", None) or ())
            else:
                raw = list(getattr(envelope, "from_", None) or ())
            for entry in raw:
                addr = Address.from_envelope(entry)
                if "@" not in addr.address:
                    continue
                key = addr.address.lower()
                if key not in found:
                    found[key] = addr.display_name
                elif addr.name:
                    # Echter Anzeigename schlägt den aus der Adresse abgeleiteten
                    found[key] = addr.name

    def collect_addresses(self) -> List[dict]:
        """Adressbuch aus den letzten ~200 Nachrichten von Gesendet (To/Cc) und INBOX (From)"""
        found: Dict[str, str] = {}
        with self._connection() as client:
            sent = self._find_special(client, "\\Sent") or "Sent"
            for folder, use_recipients in ((sent, True), ("INBOX", False)):
                try:
                    self._scan_addresses(client, folder, use_recipients, found)
                except (NotFound, IMAPClientError) as e:
                    logger.debug(f"Ordner {folder} übersprungen: {e}")

        contacts = [{"name": name, "address": address} for address, name in found.items()]
        contacts.sort(key=lambda c: (c["name"] or c["address"]).lower())
        return contacts

    # -------------------------------------------------------------------------
    # Login-Prüfung
    # -------------------------------------------------------------------------

    def verify_credentials(self):
        """Verbindet + Login; wirft AuthenticationFailed / UpstreamUnavailable"""
        with self._connection():
            pass
        logger.info(f"✅ IMAP-Login erfolgreich für {self.session.email}")
