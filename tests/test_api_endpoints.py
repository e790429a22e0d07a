"""
Tests for API Endpoints

This test suite verifies:
- Registration and login routes, including the session cookie
- Error replies for rejected ceremonies
- Health, liveness, readiness and status endpoints
- Maintenance mode and the unhealthy gate
- CORS preflight

Run with: pytest tests/test_api_endpoints.py -v

The routes are exercised with a deterministic engine; real WebAuthn
verification is covered in test_fido2_engine.py.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from authn import __version__
from authn.accounts import AccountStore
from authn.ceremony import CeremonyOrchestrator
from authn.challenges import ChallengeSession
from authn.config import DEFAULT_CONFIG, merge_config
from authn_api.server import Server

from fake_engine import FakeEngine, respond

COOKIE = "webauthn-session"


def make_server(overrides=None):
    config = merge_config(DEFAULT_CONFIG, overrides or {})
    orchestrator = CeremonyOrchestrator(AccountStore(), FakeEngine(), ChallengeSession())
    server = Server(config, orchestrator=orchestrator)
    server.set_status(True, True)
    return server


@pytest.fixture
def server():
    return make_server()


@pytest.fixture
def client(server):
    with TestClient(server.app) as client:
        yield client


def register(client, name, email, credential_id, counter=0):
    begin = client.post("/v1/register/begin", json={"name": name, "email": email})
    assert begin.status_code == 200
    return client.post("/v1/register/finish", json=respond(begin.json(), credential_id, counter))


def login(client, email, credential_id, counter):
    begin = client.post("/v1/login/begin", json={"email": email})
    assert begin.status_code == 200
    return client.post("/v1/login/finish", json=respond(begin.json(), credential_id, counter))


class TestRegistrationEndpoints:
    """Tests for /v1/register/*."""

    def test_begin_returns_options_and_cookie(self, client):
        response = client.post("/v1/register/begin", json={"name": "Alice", "email": "a@example.com"})

        assert response.status_code == 200
        assert "challenge" in response.json()["publicKey"]

        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith(f"{COOKIE}=")
        assert "httponly" in set_cookie.lower()
        assert "samesite=strict" in set_cookie.lower()
        assert "max-age=300" in set_cookie.lower()
        assert "; secure" not in set_cookie.lower()
        assert client.cookies.get(COOKIE)

    def test_finish_success_clears_cookie(self, client):
        response = register(client, "Alice", "a@example.com", b"K1")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert "max-age=0" in response.headers["set-cookie"].lower()
        assert client.cookies.get(COOKIE) is None

    def test_begin_validates_body(self, client):
        response = client.post("/v1/register/begin", json={"name": "Alice"})
        assert response.status_code == 422

    def test_finish_without_cookie(self, server):
        with TestClient(server.app) as fresh:
            response = fresh.post("/v1/register/finish", json={})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "INVALID_CEREMONY"

    def test_finish_with_tampered_cookie(self, client):
        client.post("/v1/register/begin", json={"name": "Alice", "email": "a@example.com"})
        client.cookies.clear()
        client.cookies.set(COOKIE, "garbage")

        response = client.post("/v1/register/finish", json={})

        assert response.status_code == 400
        assert response.json()["code"] == "TAMPERED_CEREMONY"

    def test_failed_finish_clears_cookie(self, client):
        begin = client.post("/v1/register/begin", json={"name": "Alice", "email": "a@example.com"})
        bad = respond(begin.json(), b"K1")
        bad["challenge"] = "bogus"

        response = client.post("/v1/register/finish", json=bad)

        assert response.status_code == 401
        assert response.json()["code"] == "VERIFICATION_FAILED"
        assert "max-age=0" in response.headers["set-cookie"].lower()
        assert client.cookies.get(COOKIE) is None

    def test_replayed_cookie_rejected(self, client):
        begin = client.post("/v1/register/begin", json={"name": "Alice", "email": "a@example.com"})
        token = client.cookies.get(COOKIE)
        client.post("/v1/register/finish", json=respond(begin.json(), b"K1"))

        client.cookies.clear()
        client.cookies.set(COOKIE, token)
        response = client.post("/v1/register/finish", json=respond(begin.json(), b"K2"))

        assert response.status_code == 400
        assert response.json()["code"] == "REPLAYED_CEREMONY"

    def test_duplicate_credential(self, client):
        register(client, "Alice", "a@example.com", b"K1")
        response = register(client, "Alice", "a@example.com", b"K1")

        assert response.status_code == 409
        assert response.json()["code"] == "CREDENTIAL_ALREADY_BOUND"

    def test_secure_cookie_with_tls(self):
        server = make_server({"server": {"tls": {"use_tls": True}}})
        with TestClient(server.app) as client:
            response = client.post(
                "/v1/register/begin", json={"name": "Alice", "email": "a@example.com"}
            )

        assert "; secure" in response.headers["set-cookie"].lower()


class TestLoginEndpoints:
    """Tests for /v1/login/*."""

    def test_login(self, client, server):
        register(client, "Alice", "a@example.com", b"K1")

        response = login(client, "a@example.com", b"K1", 1)

        assert response.status_code == 200
        assert response.json() == {"success": True, "error": None}
        account = server.orchestrator.accounts.find_by_address("a@example.com")
        assert account.get_credential(b"K1").sign_count == 1

    def test_unknown_address(self, client):
        response = client.post("/v1/login/begin", json={"email": "nobody@example.com"})

        assert response.status_code == 404
        assert response.json()["code"] == "UNKNOWN_ACCOUNT"
        assert COOKIE not in response.headers.get("set-cookie", "")

    def test_counter_regression(self, client):
        register(client, "Alice", "a@example.com", b"K1")
        login(client, "a@example.com", b"K1", 5)

        response = login(client, "a@example.com", b"K1", 5)

        assert response.status_code == 401
        assert response.json()["code"] == "COUNTER_REGRESSION"

    def test_registration_cookie_rejected_for_login(self, client):
        register(client, "Alice", "a@example.com", b"K1")
        begin = client.post("/v1/register/begin", json={"name": "Alice", "email": "a@example.com"})

        response = client.post("/v1/login/finish", json=respond(begin.json(), b"K1", 1))

        assert response.status_code == 400
        assert response.json()["code"] == "WRONG_CEREMONY_KIND"


class TestHealthEndpoints:
    """Tests for probes and status."""

    @pytest.mark.parametrize("path", ["/healthz", "/livez"])
    def test_liveness(self, client, server, path):
        assert client.get(path).json() == {"status": "ok"}

        server.set_status(False, True)
        response = client.get(path)
        assert response.status_code == 503
        assert response.json() == {"status": "unhealthy"}

    def test_readiness(self, client, server):
        assert client.get("/readyz").json() == {"status": "ready"}

        server.set_status(True, False)
        response = client.get("/readyz")
        assert response.status_code == 503
        assert response.json() == {"status": "not ready"}

    def test_status(self, client):
        response = client.get("/v1/status")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["version"] == __version__
        assert "uptime" in body
        assert body["accounts"] == 0
        assert body["credentials"] == 0

    def test_status_counts_accounts(self, client):
        register(client, "Alice", "a@example.com", b"K1")
        register(client, "Alice", "a@example.com", b"K2")
        register(client, "Bob", "b@example.com", b"K3")
        client.post("/v1/register/begin", json={"name": "Carol", "email": "c@example.com"})

        body = client.get("/v1/status").json()

        assert body["accounts"] == 3
        assert body["credentials"] == 3

    def test_unhealthy_server_refuses_ceremonies(self, client, server):
        server.set_status(False, False)

        response = client.post("/v1/register/begin", json={"name": "Alice", "email": "a@example.com"})

        assert response.status_code == 503
        assert response.json() == {"status": "unavailable"}

    def test_unknown_route_and_method(self, client):
        assert client.get("/v1/nothing").status_code == 404
        assert client.get("/v1/register/begin").status_code == 405


class TestMaintenanceMode:
    """Tests for server.maintenance."""

    @pytest.fixture
    def client(self):
        server = make_server({"server": {"maintenance": True}})
        with TestClient(server.app) as client:
            yield client

    def test_ceremonies_unavailable(self, client):
        response = client.post("/v1/login/begin", json={"email": "a@example.com"})

        assert response.status_code == 503
        assert response.json() == {"status": "maintenance"}

    def test_status_unavailable(self, client):
        assert client.get("/v1/status").status_code == 503

    def test_probes_still_answer(self, client):
        assert client.get("/healthz").status_code == 200
        assert client.get("/readyz").status_code == 200


class TestCORS:
    """Tests for cross-origin requests."""

    def test_preflight_allowed_origin(self, client):
        response = client.options(
            "/v1/register/begin",
            headers={
                "Origin": "http://localhost:8000",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:8000"

    def test_preflight_other_origin(self, client):
        response = client.options(
            "/v1/register/begin",
            headers={
                "Origin": "https://evil.example.com",
                "Access-Control-Request-Method": "POST",
            },
        )

        assert "access-control-allow-origin" not in response.headers


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
