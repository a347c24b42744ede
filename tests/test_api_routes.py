"""
tests/test_api_routes.py -- Integration tests for the /api/v1/users routes.

These tests exercise the full stack: FastAPI routing -> auth dependency injection
-> TokenAuthenticator/TokenIssuer -> UserStore -> response model serialization.

Coverage:
  - Registration: 201, duplicate 409, account/email/password validation 422
  - Login: 200 with token, identical 401 for unknown account and bad password
  - Multi-device sessions: two logins, logout of one leaves the other live
  - Expiry: expired token rejected on /me, accepted on /extend and /logout
  - Role gate: USER token on the admin route -> 403, ADMIN -> 200
  - Error envelope shape and WWW-Authenticate header

Fixtures used (from conftest.py):
  - api_client: (client, clock, store) -- TestClient over the real app with
    an isolated in-memory store and a FakeClock shared by issuer and authenticator.
"""

from __future__ import annotations

import pytest
from conftest import TEST_SECRET, bearer
from fastapi.testclient import TestClient
from jose import jwt

from auth.models import Role


def _register(client: TestClient, account: str = "alice1", password: str = "pass123", email: str | None = None):
    return client.post(
        "/api/v1/users",
        json={"account": account, "email": email or f"{account}@example.com", "password": password},
    )


def _login(client: TestClient, account: str = "alice1", password: str = "pass123") -> str:
    resp = client.post("/api/v1/users/login", json={"account": account, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["token"]


def _error_code(resp) -> str:
    return resp.json()["error"]["code"]


@pytest.fixture
def client(api_client) -> TestClient:
    return api_client[0]


class TestRegister:
    def test_register_returns_profile(self, client: TestClient) -> None:
        resp = _register(client)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["account"] == "alice1"
        assert data["email"] == "alice1@example.com"
        assert data["role"] == "user"
        assert "password" not in data and "password_hash" not in data and "tokens" not in data

    def test_password_is_stored_hashed(self, api_client) -> None:
        client, _clock, store = api_client
        _register(client)
        stored = store.find_user(account="alice1")
        assert stored.password_hash != "pass123"
        assert stored.password_hash.startswith("$2b$")

    def test_duplicate_account_conflict(self, client: TestClient) -> None:
        _register(client)
        resp = _register(client, email="second@example.com")
        assert resp.status_code == 409
        assert _error_code(resp) == "conflict"

    def test_duplicate_email_conflict(self, client: TestClient) -> None:
        _register(client, "alice1", email="shared@example.com")
        resp = _register(client, "bob12345", email="shared@example.com")
        assert resp.status_code == 409

    @pytest.mark.parametrize("account", ["abc", "a" * 21, "alice_1", "alice 1", ""])
    def test_invalid_account_rejected(self, client: TestClient, account: str) -> None:
        resp = _register(client, account=account, email="valid@example.com")
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"

    def test_invalid_email_rejected(self, client: TestClient) -> None:
        resp = _register(client, email="not-an-email")
        assert resp.status_code == 422

    @pytest.mark.parametrize("password", ["abc", "a" * 21])
    def test_password_length_rejected(self, api_client, password: str) -> None:
        client, _clock, store = api_client
        resp = _register(client, password=password)
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"
        assert "between 4 and 20" in resp.json()["error"]["message"]
        assert store.find_user(account="alice1") is None


class TestLogin:
    def test_login_returns_bearer_token(self, client: TestClient) -> None:
        _register(client)
        resp = client.post("/api/v1/users/login", json={"account": "alice1", "password": "pass123"})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 3600
        assert data["account"] == "alice1"
        assert data["role"] == "user"

    def test_unknown_account_and_bad_password_look_identical(self, client: TestClient) -> None:
        _register(client)
        unknown = client.post("/api/v1/users/login", json={"account": "nobody1", "password": "pass123"})
        wrong = client.post("/api/v1/users/login", json={"account": "alice1", "password": "wrong99"})
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert _error_code(wrong) == "invalid_credentials"
        assert wrong.headers["www-authenticate"] == "Bearer"
        assert wrong.headers["cache-control"] == "no-store"

    @pytest.mark.parametrize("password", ["pass123 ", "  abcd", " pass 12 "])
    def test_surrounding_spaces_are_part_of_the_password(self, client: TestClient, password: str) -> None:
        assert _register(client, password=password).status_code == 201
        assert _login(client, password=password)
        resp = client.post("/api/v1/users/login", json={"account": "alice1", "password": password.strip()})
        assert resp.status_code == 401

    def test_max_length_multibyte_password(self, client: TestClient) -> None:
        password = "\U0001F600" * 20
        assert _register(client, password=password).status_code == 201
        assert _login(client, password=password)

    def test_missing_fields_rejected(self, client: TestClient) -> None:
        resp = client.post("/api/v1/users/login", json={"account": "alice1"})
        assert resp.status_code == 422


class TestSessions:
    def test_multi_device_login_and_single_logout(self, client: TestClient) -> None:
        """alice1 logs in twice, logs out with T1; T2 keeps working."""
        _register(client)
        t1 = _login(client)
        assert client.get("/api/v1/users/me", headers=bearer(t1)).status_code == 200

        t2 = _login(client)
        assert t2 != t1
        assert client.get("/api/v1/users/me", headers=bearer(t1)).status_code == 200
        assert client.get("/api/v1/users/me", headers=bearer(t2)).status_code == 200

        resp = client.delete("/api/v1/users/logout", headers=bearer(t1))
        assert resp.status_code == 200
        assert resp.json()["message"] == "Logged out."

        resp = client.get("/api/v1/users/me", headers=bearer(t1))
        assert resp.status_code == 401
        assert _error_code(resp) == "token_revoked"

        resp = client.get("/api/v1/users/me", headers=bearer(t2))
        assert resp.status_code == 200
        assert resp.json()["account"] == "alice1"

    def test_me_requires_token(self, client: TestClient) -> None:
        resp = client.get("/api/v1/users/me")
        assert resp.status_code == 401
        assert _error_code(resp) == "missing_token"
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_garbage_token_is_invalid(self, client: TestClient) -> None:
        resp = client.get("/api/v1/users/me", headers=bearer("garbage"))
        assert resp.status_code == 401
        assert _error_code(resp) == "invalid_token"

    def test_forged_subject_rejected(self, client: TestClient) -> None:
        _register(client, "alice1")
        _register(client, "bob12345")
        alice_token = _login(client, "alice1")
        bob_token = _login(client, "bob12345")
        alice_id = client.get("/api/v1/users/me", headers=bearer(alice_token)).json()["id"]

        claims = jwt.decode(bob_token, TEST_SECRET, algorithms=["HS256"], options={"verify_exp": False})
        claims["sub"] = str(alice_id)
        forged = jwt.encode(claims, TEST_SECRET, algorithm="HS256")

        resp = client.get("/api/v1/users/me", headers=bearer(forged))
        assert resp.status_code == 401
        assert _error_code(resp) == "token_revoked"

    def test_logout_twice(self, client: TestClient) -> None:
        _register(client)
        token = _login(client)
        assert client.delete("/api/v1/users/logout", headers=bearer(token)).status_code == 200
        resp = client.delete("/api/v1/users/logout", headers=bearer(token))
        assert resp.status_code == 401
        assert _error_code(resp) == "token_revoked"


class TestExpiry:
    def test_expired_token_rejected_then_extended(self, api_client, settings) -> None:
        """Token with TTL 1s, 2s later: 401 on /me, but /extend swaps it for a fresh one."""
        client, clock, store = api_client
        # The issuer holds this same Settings object, so the new TTL applies to the next login.
        settings.token_expire_seconds = 1
        _register(client)
        t1 = _login(client)
        clock.advance(2)

        resp = client.get("/api/v1/users/me", headers=bearer(t1))
        assert resp.status_code == 401
        assert _error_code(resp) == "token_expired"

        resp = client.patch("/api/v1/users/extend", headers=bearer(t1))
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        t3 = resp.json()["token"]
        assert t3 != t1

        old_exp = jwt.get_unverified_claims(t1)["exp"]
        new_exp = jwt.get_unverified_claims(t3)["exp"]
        assert new_exp > old_exp

        assert t1 not in store.find_user(account="alice1").tokens
        assert client.get("/api/v1/users/me", headers=bearer(t3)).status_code == 200
        resp = client.patch("/api/v1/users/extend", headers=bearer(t1))
        assert resp.status_code == 401
        assert _error_code(resp) == "token_revoked"

    def test_expired_token_can_log_out(self, api_client) -> None:
        client, clock, store = api_client
        _register(client)
        token = _login(client)
        clock.advance(3600)

        assert client.get("/api/v1/users/me", headers=bearer(token)).status_code == 401
        assert client.delete("/api/v1/users/logout", headers=bearer(token)).status_code == 200
        assert store.find_user(account="alice1").tokens == []

    def test_expired_token_cannot_reach_admin_route(self, api_client) -> None:
        client, clock, store = api_client
        _register(client, "admin1")
        admin = store.find_user(account="admin1")
        admin.role = Role.ADMIN
        store.save_user(admin)
        token = _login(client, "admin1")
        clock.advance(3600)

        resp = client.get("/api/v1/users", headers=bearer(token))
        assert resp.status_code == 401
        assert _error_code(resp) == "token_expired"


class TestAdminGate:
    def test_user_role_is_forbidden(self, client: TestClient) -> None:
        _register(client)
        token = _login(client)
        resp = client.get("/api/v1/users", headers=bearer(token))
        assert resp.status_code == 403
        assert _error_code(resp) == "forbidden"
        assert "www-authenticate" not in resp.headers

    def test_admin_role_lists_users(self, api_client) -> None:
        client, _clock, store = api_client
        _register(client, "admin1")
        _register(client, "alice1")
        admin = store.find_user(account="admin1")
        admin.role = Role.ADMIN
        store.save_user(admin)

        token = _login(client, "admin1")
        resp = client.get("/api/v1/users", headers=bearer(token))
        assert resp.status_code == 200
        assert [u["account"] for u in resp.json()] == ["admin1", "alice1"]

    def test_admin_route_without_token_is_401_not_403(self, client: TestClient) -> None:
        resp = client.get("/api/v1/users")
        assert resp.status_code == 401


class TestStoreFailure:
    def test_store_outage_during_authentication_is_503(self, api_client, settings) -> None:
        from conftest import BrokenStore

        from auth.authenticator import TokenAuthenticator

        client, clock, _store = api_client
        _register(client)
        token = _login(client)
        client.app.state.authenticator = TokenAuthenticator(settings, BrokenStore(), clock=clock)

        resp = client.get("/api/v1/users/me", headers=bearer(token))
        assert resp.status_code == 503
        assert _error_code(resp) == "unavailable"

    def test_store_outage_during_login_is_503(self, api_client, settings) -> None:
        from conftest import BrokenStore

        from auth.credentials import CredentialVerifier

        client, _clock, _store = api_client
        client.app.state.verifier = CredentialVerifier(BrokenStore(), client.app.state.hasher)

        resp = client.post("/api/v1/users/login", json={"account": "alice1", "password": "pass123"})
        assert resp.status_code == 503
        assert _error_code(resp) == "unavailable"
