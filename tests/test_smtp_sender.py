"""
Tests für den SMTP-Versand (Inline-Bilder, Struktur, Bcc, Gesendet-Kopie)
"""

import base64
import smtplib
from email import message_from_bytes, policy
from unittest.mock import MagicMock

import pytest

from fakes import FakeSMTPServer
from hourinbox.errors import NotFound, UpstreamUnavailable
from hourinbox.services.session_store import SessionData
from hourinbox.services.smtp_sender import (
    Attachment,
    OutgoingMail,
    SMTPSender,
    extract_inline_images,
    html_to_text,
)

EMAIL = "alice@example.com"
PASSWORD = "alice-secret"

PNG_A = base64.b64encode(b"\x89PNG\r\n\x1a\nbild-a").decode()
PNG_B = base64.b64encode(b"\x89PNG\r\n\x1a\nbild-b").decode()


def _session():
    return SessionData(
        email=EMAIL,
        org_id="org-1",
        imap_host="imap.example.com",
        imap_port=993,
        smtp_host="smtp.example.com",
        smtp_port=465,
    )


@pytest.fixture
def smtp():
    return FakeSMTPServer(users={EMAIL: PASSWORD})


def test_inline_images_become_cid_parts():
    """Zwei verschiedene Bilder (eins doppelt) → zwei CIDs, keine data:-URLs"""
    html = (
        f'<p>A <img src="data:image/png;base64,{PNG_A}"></p>'
        f"<p>B <img src='data:image/png;base64,{PNG_B}'></p>"
        f'<p>A nochmal <img src="data:image/png;base64,{PNG_A}"></p>'
    )

    rewritten, images = extract_inline_images(html)

    assert "data:" not in rewritten
    assert len(images) == 2
    assert len({image.cid for image in images}) == 2
    assert rewritten.count(f"cid:{images[0].cid}") == 2
    assert all(image.cid.endswith("@hourinbox") for image in images)


def test_unquoted_and_css_data_urls_are_extracted():
    """Auch src=data:... ohne Anführungszeichen und CSS url(...) werden zu CIDs"""
    html = (
        f"<img src=data:image/png;base64,{PNG_A} alt=a>"
        f"<div style=\"background:url('data:image/png;base64,{PNG_B}')\">x</div>"
        f"<div style=\"background:url(data:image/png;base64,{PNG_A})\">y</div>"
    )

    rewritten, images = extract_inline_images(html)

    assert "data:" not in rewritten
    assert len(images) == 2
    cid_a = next(image.cid for image in images if image.data.endswith(b"bild-a"))
    assert f"<img src=cid:{cid_a} alt=a>" in rewritten
    assert f"url(cid:{cid_a})" in rewritten
    assert "url('cid:" in rewritten


def test_invalid_base64_is_left_alone():
    html = '<img src="data:image/png;base64,@@@@">'
    rewritten, images = extract_inline_images(html)
    assert images == []
    assert rewritten == html


def test_html_to_text():
    assert html_to_text("<p>Hallo<br>Welt</p><p>&amp; mehr</p>") == "Hallo\nWelt\n& mehr"


def test_message_structure_with_images_and_attachments():
    """mixed → related → alternative, Bilder mit Content-ID"""
    sender = SMTPSender(_session(), PASSWORD)
    mail = OutgoingMail(
        to=["Bob <bob@example.org>"],
        subject="Bericht",
        html=f'<p>Grafik: <img src="data:image/png;base64,{PNG_A}"></p>',
        attachments=[Attachment("zahlen.csv", b"a,b\n1,2\n", "text/csv")],
    )

    msg = message_from_bytes(sender.build_message(mail).as_bytes(), policy=policy.default)

    assert msg.get_content_type() == "multipart/mixed"
    related, attachment = msg.get_payload()
    assert related.get_content_type() == "multipart/related"
    alternative, image = related.get_payload()
    assert alternative.get_content_type() == "multipart/alternative"
    assert image["Content-ID"].startswith("<") and image["Content-ID"].endswith("@hourinbox>")
    assert "cid:" in alternative.get_body(preferencelist=("html",)).get_content()
    assert attachment.get_filename() == "zahlen.csv"
    assert msg["Message-ID"].endswith("@example.com>")


def test_plain_message_without_images():
    sender = SMTPSender(_session(), PASSWORD)
    msg = sender.build_message(OutgoingMail(to=["bob@example.org"], subject="Kurz", text="Nur Text"))
    assert msg.get_content_type() == "multipart/alternative"
    assert len(msg.get_payload()) == 1


def test_reply_headers():
    sender = SMTPSender(_session(), PASSWORD)
    msg = sender.build_message(OutgoingMail(
        to=["bob@example.org"], subject="Re: Frage", text="Antwort",
        in_reply_to="<frage-1@example.org>", reply_to="team@example.com",
    ))
    assert msg["In-Reply-To"] == "<frage-1@example.org>"
    assert msg["References"] == "<frage-1@example.org>"
    assert msg["Reply-To"] == "team@example.com"


def test_send_bcc_only_in_envelope(smtp):
    """Bcc-Empfänger bekommen die Mail, stehen aber nicht im Header"""
    gateway = MagicMock()
    gateway.append_to_sent.return_value = "Sent"
    sender = SMTPSender(_session(), PASSWORD, smtp_factory=smtp.factory, gateway=gateway)

    result = sender.send(OutgoingMail(
        to=["bob@example.org"], cc=["carol@example.org"], bcc=["dave@example.org"],
        subject="Einladung", text="Hallo",
    ))

    sent = smtp.sent[0]
    assert sent.to_addrs == ["bob@example.org", "carol@example.org", "dave@example.org"]
    assert b"dave@example.org" not in sent.raw
    assert result == {"messageId": result["messageId"], "sentFolder": "Sent"}
    assert smtp.connections == [("smtp.example.com", 465, "tls", True)]

    sent_copy = gateway.append_to_sent.call_args[0][0]
    assert b"Bcc: dave@example.org" in sent_copy


def test_send_survives_sent_copy_failure(smtp):
    gateway = MagicMock()
    gateway.append_to_sent.side_effect = NotFound("Folder not found: Sent")
    sender = SMTPSender(_session(), PASSWORD, smtp_factory=smtp.factory, gateway=gateway)

    result = sender.send(OutgoingMail(to=["bob@example.org"], subject="Hi", text="x"))

    assert result["sentFolder"] is None
    assert len(smtp.sent) == 1


def test_smtp_auth_failure(smtp):
    sender = SMTPSender(_session(), "falsch", smtp_factory=smtp.factory)
    with pytest.raises(UpstreamUnavailable):
        sender.send(OutgoingMail(to=["bob@example.org"], subject="Hi", text="x"))
    assert smtp.sent == []


def test_smtp_connection_failure(smtp):
    smtp.fail_with = smtplib.SMTPConnectError(421, b"Service not available")
    sender = SMTPSender(_session(), PASSWORD, smtp_factory=smtp.factory)
    with pytest.raises(UpstreamUnavailable):
        sender.send(OutgoingMail(to=["bob@example.org"], subject="Hi", text="x"))
