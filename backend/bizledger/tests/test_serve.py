from __future__ import annotations

from bizledger import serve


def _run_kwargs(monkeypatch) -> dict:
    captured = {}

    def fake_run(app, **kwargs):
        captured["app"] = app
        captured.update(kwargs)

    monkeypatch.setattr(serve.uvicorn, "run", fake_run)
    serve.main()
    return captured


def test_forwarded_headers_ignored_by_default(monkeypatch):
    monkeypatch.delenv("TRUST_FORWARDED_FOR", raising=False)
    monkeypatch.delenv("FORWARDED_ALLOW_IPS", raising=False)

    kwargs = _run_kwargs(monkeypatch)

    assert kwargs["app"] == "bizledger.main:app"
    assert kwargs["proxy_headers"] is False
    assert "forwarded_allow_ips" not in kwargs


def test_forwarded_allow_ips_is_ignored_without_trusted_proxy(monkeypatch):
    monkeypatch.delenv("TRUST_FORWARDED_FOR", raising=False)
    monkeypatch.setenv("FORWARDED_ALLOW_IPS", "*")

    kwargs = _run_kwargs(monkeypatch)

    assert kwargs["proxy_headers"] is False


def test_trusted_proxy_defaults_to_loopback(monkeypatch):
    monkeypatch.setenv("TRUST_FORWARDED_FOR", "true")
    monkeypatch.delenv("FORWARDED_ALLOW_IPS", raising=False)

    kwargs = _run_kwargs(monkeypatch)

    assert kwargs["proxy_headers"] is True
    assert kwargs["forwarded_allow_ips"] == "127.0.0.1"


def test_trusted_proxy_list_from_env(monkeypatch):
    monkeypatch.setenv("TRUST_FORWARDED_FOR", "1")
    monkeypatch.setenv("FORWARDED_ALLOW_IPS", "10.0.0.2,10.0.0.3")

    kwargs = _run_kwargs(monkeypatch)

    assert kwargs["forwarded_allow_ips"] == "10.0.0.2,10.0.0.3"
