# tests/conftest.py
"""Pytest Configuration & Shared Fixtures.

Redis läuft als fakeredis, IMAP/SMTP als In-Memory-Fakes (tests/fakes.py),
die Datenbank als SQLite-Datei pro Test.
"""

import importlib

import fakeredis
import pytest

from fakes import FakeMailServer, FakeProbe, FakeSMTPServer

ALICE = "alice@example.com"
ALICE_PASSWORD = "alice-secret"
BOB = "bob@example.com"
BOB_PASSWORD = "bob-secret"


# ===== INFRASTRUKTUR =====

@pytest.fixture
def redis_client():
    """Frischer fakeredis pro Test (decode_responses wie in create_app)"""
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def mail_server():
    return FakeMailServer(users={ALICE: ALICE_PASSWORD, BOB: BOB_PASSWORD})


@pytest.fixture
def smtp_server():
    return FakeSMTPServer(users={ALICE: ALICE_PASSWORD, BOB: BOB_PASSWORD})


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'hourinbox-test.db'}"


# ===== FLASK =====

@pytest.fixture
def app(redis_client, mail_server, smtp_server, probe, database_url):
    from hourinbox.app_factory import create_app

    return create_app(
        "testing",
        redis_client=redis_client,
        imap_client_factory=mail_server.factory,
        smtp_factory=smtp_server.factory,
        connection_probe=probe,
        database_url=database_url,
    )


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def organization(app):
    """Registrierte Organisation für example.com (ohne Erreichbarkeits-Test)"""
    from hourinbox.helpers import get_db_session

    models = importlib.import_module(".02_models", "hourinbox")
    with get_db_session() as db:
        org = models.Organization(
            name="Example GmbH",
            domain="example.com",
            imap_host="imap.example.com",
            imap_port=993,
            smtp_host="smtp.example.com",
            smtp_port=465,
        )
        db.add(org)
        db.commit()
        return org


def login(client, email=ALICE, password=ALICE_PASSWORD):
    return client.post("/auth/login", json={"email": email, "password": password})


@pytest.fixture
def logged_in(client, organization):
    """Test-Client mit aktiver Session für alice@example.com"""
    response = login(client)
    assert response.status_code == 200, response.get_json()
    return client
