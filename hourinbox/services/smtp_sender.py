# hourinbox/services/smtp_sender.py
"""SMTP-Versand mit smtplib.

Inline-Bilder (``data:image/...;base64,`` in HTML) werden vor dem Versand in
eigene MIME-Teile mit Content-ID ausgelagert (content-addressed, gleiche
Bilder → gleiche CID). Nach erfolgreichem Versand wird eine Kopie in den
Gesendet-Ordner gelegt; schlägt das fehl, bleibt der Versand erfolgreich.

Struktur:
    mixed (nur mit Anhängen)
    ├── related (nur mit Inline-Bildern)
    │   ├── alternative [text/plain, text/html]
    │   └── image/* (Content-ID)
    └── Anhänge
"""

import base64
import binascii
import hashlib
import html
import logging
import re
import smtplib
import ssl
from dataclasses import dataclass, field
from email import encoders
from email.mime.base import MIMEBase
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid, getaddresses
from typing import List, Optional

from hourinbox.errors import HourInboxError, UpstreamUnavailable

logger = logging.getLogger(__name__)

SMTP_TIMEOUT = 10

_DATA_URL_RE = re.compile(
    # In Anführungszeichen darf der Payload umbrochen sein, ohne (src=data:..., url(data:...)) nicht
    r"""(["'])data:(image/[a-zA-Z0-9.+-]+);base64,([A-Za-z0-9+/=\s]+)\1"""
    r"""|data:(image/[a-zA-Z0-9.+-]+);base64,([A-Za-z0-9+/]+={0,2})""",
    re.IGNORECASE,
)
_TAG_RE = re.compile(r"<[^>]+>")


@dataclass
class Attachment:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class OutgoingMail:
    """Zu versendende Nachricht (bereits validiert)"""

    to: List[str]
    subject: str
    cc: List[str] = field(default_factory=list)
    bcc: List[str] = field(default_factory=list)
    text: str = ""
    html: str = ""
    reply_to: Optional[str] = None
    in_reply_to: Optional[str] = None
    attachments: List[Attachment] = field(default_factory=list)


@dataclass
class InlineImage:
    cid: str
    content_type: str
    data: bytes


def extract_inline_images(html_body: str) -> tuple:
    """Ersetzt base64-Data-URLs durch ``cid:``-Referenzen

    Returns:
        (neues HTML, Liste von InlineImage) - jede CID genau einmal
    """
    images = {}

    def replace(match):
        quote = match.group(1) or ""
        if quote:
            content_type, payload = match.group(2), match.group(3)
        else:
            content_type, payload = match.group(4), match.group(5)
        try:
            data = base64.b64decode(re.sub(r"\s+", "", payload), validate=True)
        except (binascii.Error, ValueError):
            return match.group(0)
        digest = hashlib.sha256(data).hexdigest()[:24]
        cid = f"{digest}@hourinbox"
        images.setdefault(cid, InlineImage(cid=cid, content_type=content_type.lower(), data=data))
        return f"{quote}cid:{cid}{quote}"

    return _DATA_URL_RE.sub(replace, html_body or ""), list(images.values())


def html_to_text(html_body: str) -> str:
    text = re.sub(r"<br\s*/?>|</p>", "\n", html_body or "", flags=re.IGNORECASE)
    return html.unescape(_TAG_RE.sub("", text)).strip()


def _address_list(values: List[str]) -> List[str]:
    return [addr for _, addr in getaddresses(values or []) if addr]


def default_smtp_factory(host: str, port: int, tls_mode: str, reject_unauthorized: bool = True,
                         timeout: float = SMTP_TIMEOUT):
    """Verbindung je nach TLS-Modus (tls = SMTPS, starttls = Upgrade, none = Klartext)"""
    context = ssl.create_default_context()
    if not reject_unauthorized:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    if tls_mode == "tls":
        return smtplib.SMTP_SSL(host, port, context=context, timeout=timeout)

    smtp = smtplib.SMTP(host, port, timeout=timeout)
    smtp.ehlo()
    if tls_mode == "starttls":
        smtp.starttls(context=context)
        smtp.ehlo()
    return smtp


class SMTPSender:
    """Versendet Nachrichten für einen Account"""

    def __init__(self, session, password: str, smtp_factory=default_smtp_factory, gateway=None):
        self.session = session
        self.password = password
        self.smtp_factory = smtp_factory
        self.gateway = gateway

    def build_message(self, mail: OutgoingMail) -> MIMEMultipart:
        html_body, images = extract_inline_images(mail.html)
        text_body = mail.text or html_to_text(html_body)

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(text_body, "plain", "utf-8"))
        if html_body:
            body.attach(MIMEText(html_body, "html", "utf-8"))

        if images:
            related = MIMEMultipart("related")
            related.attach(body)
            for image in images:
                part = MIMEImage(image.data, _subtype=image.content_type.split("/", 1)[1])
                part.add_header("Content-ID", f"<{image.cid}>")
                part.add_header("Content-Disposition", "inline", filename=image.cid.split("@")[0])
                related.attach(part)
            body = related

        if mail.attachments:
            msg = MIMEMultipart("mixed")
            msg.attach(body)
            for attachment in mail.attachments:
                maintype, _, subtype = (attachment.content_type or "application/octet-stream").partition("/")
                part = MIMEBase(maintype, subtype or "octet-stream")
                part.set_payload(attachment.content)
                encoders.encode_base64(part)
                part.add_header("Content-Disposition", "attachment", filename=attachment.filename)
                msg.attach(part)
        else:
            msg = body

        domain = self.session.email.rsplit("@", 1)[-1]
        msg["From"] = self.session.email
        msg["To"] = ", ".join(mail.to)
        if mail.cc:
            msg["Cc"] = ", ".join(mail.cc)
        msg["Subject"] = mail.subject
        msg["Date"] = formatdate(localtime=True)
        msg["Message-ID"] = make_msgid(domain=domain)
        if mail.reply_to:
            msg["Reply-To"] = mail.reply_to
        if mail.in_reply_to:
            msg["In-Reply-To"] = mail.in_reply_to
            msg["References"] = mail.in_reply_to
        return msg

    def send(self, mail: OutgoingMail) -> dict:
        """SMTP-Submission + Best-Effort-Kopie nach Gesendet

        Returns:
            {"messageId", "sentFolder"}
        """
        msg = self.build_message(mail)
        recipients = _address_list(mail.to + mail.cc + mail.bcc)

        try:
            smtp = self.smtp_factory(
                self.session.smtp_host,
                self.session.smtp_port,
                self.session.tls_mode,
                self.session.reject_unauthorized,
            )
            try:
                smtp.login(self.session.email, self.password)
                # Bcc nur im Envelope, nicht im Header
                smtp.sendmail(self.session.email, recipients, msg.as_bytes())
            finally:
                try:
                    smtp.quit()
                except (smtplib.SMTPException, OSError):
                    pass
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"❌ SMTP-Login fehlgeschlagen für {self.session.email}: {e}")
            raise UpstreamUnavailable(f"SMTP error: authentication failed ({e.smtp_code})") from None
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"❌ SMTP-Fehler bei {self.session.smtp_host}: {e}")
            raise UpstreamUnavailable(f"SMTP error: {e}") from None

        message_id = msg["Message-ID"]
        logger.info(f"📧 Nachricht {message_id} an {len(recipients)} Empfänger versendet")

        sent_folder = None
        if self.gateway is not None:
            if mail.bcc:
                msg["Bcc"] = ", ".join(mail.bcc)
            try:
                sent_folder = self.gateway.append_to_sent(msg.as_bytes())
            except HourInboxError as e:
                logger.warning(f"⚠️ Kopie nach Gesendet fehlgeschlagen (Versand ok): {e.message}")

        return {"messageId": message_id, "sentFolder": sent_folder}
