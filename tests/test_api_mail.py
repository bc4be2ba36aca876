"""
API-Tests: Ordner, Nachrichten, Flags, Verschieben, Suche, Versand, Entwürfe, Kontakte
"""

import io
from datetime import datetime, timedelta, timezone

import pytest

from conftest import ALICE
from fakes import make_message
from hourinbox.helpers.message_id import encode_message_id

START = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _data(response):
    assert response.status_code == 200, response.get_json()
    return response.get_json()["data"]


def _error(response):
    return response.get_json()["error"]["message"]


@pytest.fixture
def inbox(mail_server):
    """Drei Nachrichten in der INBOX (UIDs 1-3, UID 3 am neuesten)"""
    for i in range(3):
        mail_server.deliver("INBOX", make_message(
            subject=f"Nachricht {i + 1}",
            date=START + timedelta(hours=i),
            message_id=f"<inbox-{i + 1}@example.org>",
        ))
    return mail_server


# =============================================================================
# Auth-Pflicht
# =============================================================================

@pytest.mark.parametrize("method,path", [
    ("get", "/mail/folders"),
    ("get", "/mail/messages"),
    ("get", "/mail/starred"),
    ("get", "/mail/search?q=rechnung"),
    ("delete", "/mail/messages/1?folder=INBOX"),
    ("get", "/mail/contacts"),
])
def test_mail_routes_require_session(client, method, path):
    response = getattr(client, method)(path)
    assert response.status_code == 401


# =============================================================================
# Ordner / Liste / Cache
# =============================================================================

def test_folders(logged_in, inbox):
    folders = _data(logged_in.get("/mail/folders"))["folders"]
    by_path = {f["path"]: f for f in folders}

    assert by_path["INBOX"]["messages"] == 3
    assert by_path["INBOX"]["unseen"] == 3
    assert by_path["Trash"]["specialUse"] == "\\Trash"


def test_folders_are_cached_until_refresh(logged_in, inbox):
    logged_in.get("/mail/folders")
    connections = inbox.connections

    logged_in.get("/mail/folders")
    assert inbox.connections == connections

    logged_in.get("/mail/folders?refresh=true")
    assert inbox.connections == connections + 1


def test_list_messages_page(logged_in, inbox):
    data = _data(logged_in.get("/mail/messages?folder=INBOX&page=1&limit=2"))

    assert [m["uid"] for m in data["messages"]] == [3, 2]
    assert data["total"] == 3
    assert (data["page"], data["limit"], data["folder"]) == (1, 2, "INBOX")

    page2 = _data(logged_in.get("/mail/messages?folder=INBOX&page=2&limit=2"))
    assert [m["uid"] for m in page2["messages"]] == [1]


def test_invalid_paging_rejected_before_imap(logged_in, inbox):
    connections = inbox.connections

    assert logged_in.get("/mail/messages?limit=101").status_code == 400
    assert logged_in.get("/mail/messages?page=0").status_code == 400
    assert logged_in.get("/mail/messages?page=abc").status_code == 400
    assert inbox.connections == connections


def test_unknown_folder_is_404(logged_in, inbox):
    assert logged_in.get("/mail/messages?folder=Gibt-es-nicht").status_code == 404


def test_mutation_invalidates_cached_list(logged_in, inbox):
    """Nach einer Mutation wird die Liste neu vom Server geholt"""
    logged_in.get("/mail/messages?folder=INBOX")
    connections = inbox.connections
    logged_in.get("/mail/messages?folder=INBOX")
    assert inbox.connections == connections

    response = logged_in.put("/mail/messages/1", json={"folder": "INBOX", "addFlags": ["\\Seen"]})
    assert response.get_json()["invalidate"] == {"scope": "account"}

    messages = _data(logged_in.get("/mail/messages?folder=INBOX"))["messages"]
    assert {m["uid"]: m["seen"] for m in messages}[1] is True


# =============================================================================
# Einzelne Nachricht
# =============================================================================

def test_get_message_by_uid(logged_in, inbox):
    message = _data(logged_in.get("/mail/messages/2?folder=INBOX"))["message"]
    assert message["subject"] == "Nachricht 2"
    assert message["text"].strip() == "Hallo Alice"


def test_get_message_by_message_id_slug(logged_in, inbox):
    slug = encode_message_id("<inbox-3@example.org>")
    message = _data(logged_in.get(f"/mail/messages/{slug}?folder=INBOX"))["message"]
    assert message["uid"] == 3


def test_get_unknown_message(logged_in, inbox):
    assert logged_in.get("/mail/messages/99?folder=INBOX").status_code == 404
    slug = encode_message_id("<fehlt@example.org>")
    assert logged_in.get(f"/mail/messages/{slug}?folder=INBOX").status_code == 404


def test_unicode_digit_identifier_is_400(logged_in, inbox):
    """Hochgestellte Ziffer ist weder UID noch gültiger Slug"""
    response = logged_in.get("/mail/messages/%C2%B2?folder=INBOX")
    assert response.status_code == 400


def test_attachment_download(logged_in, mail_server):
    uid = mail_server.deliver("INBOX", make_message(
        attachments=[("plan.txt", b"Schritt 1", "text/plain")],
    ))

    response = logged_in.get(f"/mail/attachment?folder=INBOX&uid={uid}&filename=plan.txt")
    assert response.status_code == 200
    assert response.data == b"Schritt 1"
    assert response.headers["Content-Disposition"] == 'attachment; filename="plan.txt"'

    inline = logged_in.get(f"/mail/attachment?folder=INBOX&uid={uid}&filename=plan.txt&mode=view")
    assert inline.headers["Content-Disposition"].startswith("inline")

    assert logged_in.get(f"/mail/attachment?folder=INBOX&uid={uid}&filename=x.pdf").status_code == 404


# =============================================================================
# Flags / Verschieben / Löschen
# =============================================================================

def test_batch_flags_one_round_trip(logged_in, inbox):
    response = logged_in.put("/mail/messages/batch-flags", json={
        "folder": "INBOX", "uids": [1, 2, 3], "addFlags": ["\\Seen"],
    })

    body = response.get_json()
    assert body["data"] == {"updated": 3}
    assert body["invalidate"] == {"scope": "folders", "folders": ["INBOX"]}
    assert inbox.calls_named("add_flags") == [("add_flags", (1, 2, 3), ("\\Seen",))]


def test_batch_flags_validation(logged_in, inbox):
    for payload in ({"uids": []}, {"uids": "1,2"}, {"uids": [1, "x"]}, {"uids": [1], "addFlags": "\\Seen"}):
        assert logged_in.put("/mail/messages/batch-flags", json=payload).status_code == 400


def test_delete_moves_to_trash(logged_in, inbox):
    data = _data(logged_in.delete("/mail/messages/1?folder=INBOX"))

    assert data == {"permanent": False, "movedTo": "Trash"}
    assert inbox.uids("INBOX") == [2, 3]
    assert len(inbox.uids("Trash")) == 1


def test_delete_in_trash_is_permanent(logged_in, mail_server):
    uid = mail_server.deliver("Trash", make_message())

    data = _data(logged_in.delete(f"/mail/messages/{uid}?folder=Trash"))

    assert data == {"permanent": True, "movedTo": None}
    assert mail_server.uids("Trash") == []


def test_archive_without_archive_folder(logged_in, inbox):
    response = logged_in.post("/mail/archive", json={"uid": 1, "folder": "INBOX"})
    assert response.status_code == 404
    assert _error(response) == "No archive folder found on this server"
    assert inbox.uids("INBOX") == [1, 2, 3]


def test_archive_prefers_all_mail(logged_in, inbox):
    inbox.add_folder("Archive", (b"\\Archive",))
    inbox.add_folder("All Mail", (b"\\All",))

    data = _data(logged_in.post("/mail/archive", json={"uid": 1, "folder": "INBOX"}))

    assert data == {"movedTo": "All Mail"}


def test_junk(logged_in, inbox):
    assert logged_in.post("/mail/junk", json={"uid": 2, "folder": "INBOX"}).status_code == 404

    inbox.add_folder("Junk", (b"\\Junk",))
    data = _data(logged_in.post("/mail/junk", json={"uid": 2, "folder": "INBOX"}))
    assert data == {"movedTo": "Junk"}
    assert inbox.uids("INBOX") == [1, 3]


def test_archive_requires_uid_and_folder(logged_in, inbox):
    response = logged_in.post("/mail/archive", json={"uid": 1})
    assert response.status_code == 400
    assert _error(response) == "Missing uid or folder"


# =============================================================================
# Suche / Starred
# =============================================================================

def test_search_requires_criteria(logged_in, inbox):
    response = logged_in.get("/mail/search?folder=INBOX")
    assert response.status_code == 400
    assert _error(response) == "At least one search parameter is required"


def test_search_by_subject(logged_in, inbox):
    data = _data(logged_in.get("/mail/search?folder=INBOX&subject=Nachricht 2"))
    assert [m["uid"] for m in data["messages"]] == [2]
    assert data["total"] == 1


def test_search_invalid_date(logged_in, inbox):
    assert logged_in.get("/mail/search?since=gestern").status_code == 400


def test_starred(logged_in, inbox):
    inbox.message("INBOX", 2).flags.add("\\Flagged")
    data = _data(logged_in.get("/mail/starred"))
    assert [m["uid"] for m in data["messages"]] == [2]


# =============================================================================
# Versand
# =============================================================================

def test_send_json(logged_in, mail_server, smtp_server):
    response = logged_in.post("/mail/send", json={
        "to": ["Bob <bob@example.org>"],
        "bcc": "carol@example.org",
        "subject": "Hallo",
        "html": "<p>Hallo Bob</p>",
    })

    body = response.get_json()
    assert response.status_code == 200
    assert body["data"]["sentFolder"] == "Sent"
    assert body["invalidate"] == {"scope": "account"}
    assert smtp_server.sent[0].to_addrs == ["bob@example.org", "carol@example.org"]
    assert len(mail_server.uids("Sent")) == 1


def test_send_multipart_with_attachment(logged_in, smtp_server):
    response = logged_in.post("/mail/send", data={
        "to": "bob@example.org",
        "subject": "Anhang",
        "text": "Siehe Anhang",
        "attachments": (io.BytesIO(b"Inhalt"), "notiz.txt"),
    }, content_type="multipart/form-data")

    assert response.status_code == 200
    assert b'filename="notiz.txt"' in smtp_server.sent[0].raw


def test_send_requires_to_and_subject(logged_in, smtp_server):
    response = logged_in.post("/mail/send", json={"to": ["bob@example.org"]})
    assert response.status_code == 400
    assert _error(response) == "Missing required fields: to, subject"
    assert logged_in.post("/mail/send", json={"to": ["kaputt"], "subject": "x"}).status_code == 400
    assert smtp_server.sent == []


def test_send_smtp_failure_is_502(logged_in, smtp_server):
    smtp_server.fail_with = OSError("connection refused")
    response = logged_in.post("/mail/send", json={"to": ["bob@example.org"], "subject": "x"})
    assert response.status_code == 502


# =============================================================================
# Entwürfe
# =============================================================================

def test_save_and_replace_draft(logged_in, mail_server):
    first = logged_in.post("/mail/draft", json={"to": "bob@example.org", "subject": "v1", "html": "<p>1</p>"})
    first_body = first.get_json()
    assert first_body["invalidate"] == {"scope": "folders", "folders": ["Drafts"]}
    uid = first_body["data"]["uid"]

    payload = {"to": "bob@example.org", "subject": "v2", "html": "<p>2</p>", "replaceUid": uid}
    logged_in.post("/mail/draft", json=payload)
    retry = _data(logged_in.post("/mail/draft", json=payload))

    assert mail_server.uids("Drafts") == [retry["uid"]]

    draft = _data(logged_in.get(f"/mail/draft?folder=Drafts&uid={retry['uid']}"))
    assert draft["subject"] == "v2"
    assert draft["to"] == "bob@example.org"
    assert "<p>2</p>" in draft["html"]


def test_draft_requires_body(logged_in):
    response = logged_in.post("/mail/draft", data="kein json", content_type="text/plain")
    assert response.status_code == 400
    assert _error(response) == "Missing body"


def test_unknown_draft(logged_in):
    assert logged_in.get("/mail/draft?folder=Drafts&uid=42").status_code == 404


# =============================================================================
# Kontakte
# =============================================================================

def test_contacts_from_mailboxes(logged_in, mail_server):
    mail_server.deliver("INBOX", make_message(sender="Bob Beispiel <bob@example.org>"))
    mail_server.deliver("Sent", make_message(sender=ALICE, to="Carol <carol@example.org>"))

    contacts = _data(logged_in.get("/mail/contacts"))["contacts"]

    assert contacts == [
        {"name": "Bob Beispiel", "address": "bob@example.org"},
        {"name": "Carol", "address": "carol@example.org"},
    ]


def test_contacts_export_merges_local(logged_in, mail_server):
    mail_server.deliver("INBOX", make_message(sender="Bob Beispiel <bob@example.org>"))
    local = '[{"name": "Zora", "address": "zora@example.net"}, {"name": "Doppelt", "address": "BOB@example.org"}]'

    response = logged_in.get("/mail/contacts/export", query_string={"local": local})

    assert response.status_code == 200
    assert response.mimetype == "text/vcard"
    text = response.get_data(as_text=True)
    assert text.count("BEGIN:VCARD") == 2
    assert "EMAIL:zora@example.net" in text
    assert "FN:Bob Beispiel" in text


def test_contacts_import_csv(logged_in):
    content = b"Name,E-Mail\nBob,bob@example.org\nBob Doppelt,BOB@example.org\n"
    response = logged_in.post(
        "/mail/contacts/import",
        data={"file": (io.BytesIO(content), "kontakte.csv")},
        content_type="multipart/form-data",
    )

    data = _data(response)
    assert data["imported"] == 1
    assert data["contacts"] == [{"name": "Bob", "address": "bob@example.org"}]


def test_contacts_import_errors(logged_in):
    missing = logged_in.post("/mail/contacts/import", data={}, content_type="multipart/form-data")
    assert missing.status_code == 400
    assert _error(missing) == "No file uploaded"

    response = logged_in.post(
        "/mail/contacts/import",
        data={"file": (io.BytesIO(b"nur text"), "leer.vcf")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 400
    assert _error(response) == "No valid contacts found in file"
