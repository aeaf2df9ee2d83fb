from __future__ import annotations

from bizledger import main


def test_health_endpoints(client):
    assert client.get("/health").json() == {"status": "ok"}
    billing = client.get("/billing/health").json()
    assert billing["module"] == "billing"
    assert billing["stripe_configured"] is True
    assert billing["webhook_secret_configured"] is True


def test_allowed_origins_from_env(monkeypatch):
    monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://app.example.com, https://admin.example.com,")
    assert main._allowed_origins() == ["https://app.example.com", "https://admin.example.com"]


def test_allowed_origins_default(monkeypatch):
    monkeypatch.delenv("CORS_ALLOWED_ORIGINS", raising=False)
    assert "http://localhost:5173" in main._allowed_origins()


def test_module_level_app_has_collaborators():
    state = main.app.state
    assert state.rate_limiter is not None
    assert state.identity_verifier is not None
    assert state.stripe_gateway.secret_key == "sk_test_dummy"


def test_shutdown_closes_identity_client(gateway):
    import httpx
    from fastapi.testclient import TestClient

    from bizledger.security import SupabaseIdentityVerifier

    http = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(401, json={})))
    verifier = SupabaseIdentityVerifier("https://project.supabase.test", "anon-key", client=http)
    app = main.create_app(identity_verifier=verifier, stripe_gateway=gateway)

    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert http.is_closed is False

    assert http.is_closed is True
