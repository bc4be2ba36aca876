"""
API-Tests: Login, Rate Limiting, Multi-Account
"""

import base64

from conftest import ALICE, ALICE_PASSWORD, BOB, BOB_PASSWORD, login
from hourinbox.helpers.context import ACCOUNTS_COOKIE, EXTENSION_KEY, SESSION_COOKIE


def _error(response):
    return response.get_json()["error"]["message"]


def test_login_sets_http_only_cookies(client, organization):
    response = login(client)

    assert response.status_code == 200
    assert response.get_json()["data"]["user"] == {"email": ALICE, "organization": "Example GmbH"}
    cookies = response.headers.getlist("Set-Cookie")
    session_cookie = next(c for c in cookies if c.startswith(f"{SESSION_COOKIE}="))
    assert "HttpOnly" in session_cookie
    assert "SameSite=Lax" in session_cookie
    assert any(c.startswith(f"{ACCOUNTS_COOKIE}=") for c in cookies)


def test_login_requires_email_and_password(client, organization):
    response = client.post("/auth/login", json={"email": ALICE})
    assert response.status_code == 400
    assert _error(response) == "Email and password are required"


def test_login_unknown_domain(client, organization):
    response = login(client, "eve@unbekannt.org", "x")
    assert response.status_code == 404
    assert _error(response) == "No organization registered for unbekannt.org"


def test_wrong_password_counts_attempt(app, client, organization):
    """Abgelehnte Zugangsdaten → 401 und Zähler +1"""
    guard = app.extensions[EXTENSION_KEY].login_guard

    response = login(client, ALICE, "falsch")

    assert response.status_code == 401
    assert guard.attempts(ALICE) == 1
    assert client.get_cookie(SESSION_COOKIE) is None


def test_sixth_attempt_is_rate_limited(app, client, organization, mail_server):
    """Nach 5 Fehlversuchen wird auch das richtige Passwort abgewiesen, ohne IMAP-Verbindung"""
    for _ in range(5):
        assert login(client, ALICE, "falsch").status_code == 401
    connections = mail_server.connections

    response = login(client)

    assert response.status_code == 429
    assert mail_server.connections == connections


def test_successful_login_resets_counter(app, client, organization):
    guard = app.extensions[EXTENSION_KEY].login_guard
    login(client, ALICE, "falsch")
    login(client)
    assert guard.attempts(ALICE) == 0


def test_me_requires_session(client, organization):
    response = client.get("/auth/me")
    assert response.status_code == 401
    assert response.get_json()["error"]["code"] == "UNAUTHENTICATED"


def test_me_returns_active_account(logged_in):
    data = logged_in.get("/auth/me").get_json()["data"]
    assert data["user"] == {"email": ALICE, "organization": "Example GmbH", "domain": "example.com"}


def test_expired_session_is_unauthenticated(logged_in, redis_client):
    token = logged_in.get_cookie(SESSION_COOKIE).value
    redis_client.delete(f"session:{token}")
    assert logged_in.get("/auth/me").status_code == 401


def test_tampered_password_is_session_expired(logged_in, redis_client):
    """Manipulierter Ciphertext → 401, nie ein 500er"""
    token = logged_in.get_cookie(SESSION_COOKIE).value
    redis_client.set(f"password:{token}", "AAAA:AAAA:AAAA")

    response = logged_in.get("/mail/folders")

    assert response.status_code == 401
    assert _error(response) == "Session expired"


def test_non_utf8_legacy_password_is_session_expired(logged_in, redis_client):
    """Altformat, das sich nicht als UTF-8 lesen lässt → 401, kein 500er"""
    token = logged_in.get_cookie(SESSION_COOKIE).value
    redis_client.set(f"password:{token}", base64.b64encode(b"\xff\xfe\xfa").decode())

    response = logged_in.get("/mail/folders")

    assert response.status_code == 401
    assert _error(response) == "Session expired"


def test_multi_account_switch_and_logout(client, organization):
    login(client)
    login(client, BOB, BOB_PASSWORD)

    accounts = client.get("/auth/accounts").get_json()["data"]["accounts"]
    assert [(a["email"], a["active"]) for a in accounts] == [(ALICE, False), (BOB, True)]

    assert client.post("/auth/switch", json={"email": ALICE}).status_code == 200
    assert client.get("/auth/me").get_json()["data"]["user"]["email"] == ALICE

    response = client.post("/auth/logout")
    assert response.get_json()["data"]["activeEmail"] == BOB
    assert client.get("/auth/me").get_json()["data"]["user"]["email"] == BOB

    client.post("/auth/logout")
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/accounts").get_json()["data"]["accounts"] == []


def test_relogin_same_account_keeps_single_entry(client, organization):
    login(client)
    login(client)
    accounts = client.get("/auth/accounts").get_json()["data"]["accounts"]
    assert [a["email"] for a in accounts] == [ALICE]


def test_switch_to_unknown_account(logged_in):
    response = logged_in.post("/auth/switch", json={"email": "carol@example.com"})
    assert response.status_code == 404
    assert _error(response) == "Account not found"


def test_remove_background_account(client, organization):
    login(client)
    login(client, BOB, BOB_PASSWORD)

    assert client.post("/auth/remove", json={"email": ALICE}).status_code == 200

    accounts = client.get("/auth/accounts").get_json()["data"]["accounts"]
    assert [a["email"] for a in accounts] == [BOB]
    assert client.post("/auth/remove", json={"email": ALICE}).status_code == 404


def test_password_stored_encrypted(client, organization):
    """Passwort liegt nur verschlüsselt in Redis"""
    login(client)
    token = client.get_cookie(SESSION_COOKIE).value
    stored = client.application.extensions[EXTENSION_KEY].redis.get(f"password:{token}")
    assert ALICE_PASSWORD not in stored
    assert stored.count(":") == 2
