import json

import pytest
from fastapi.testclient import TestClient

import app as app_module
from etfsectors import access, pipeline
from etfsectors.models import ResolutionResult, SectorWeight, SourceAttempt


def _fake_resolve(ticker=None, url=None, *, cancel=None):
    if ticker == "BAD":
        return ResolutionResult(
            success=False,
            source_url="https://fund.example/bad",
            attempts=(SourceAttempt("direct", "https://fund.example/bad", False, error="timeout"),),
            error="Could not find sector breakdown data",
        )
    return ResolutionResult(
        success=True,
        sectors=(SectorWeight("Financials", 0.6), SectorWeight("Technology", 0.4)),
        source_url=url or f"https://fund.example/{(ticker or '').lower()}",
        attempts=(SourceAttempt("direct", "https://fund.example/x", True, note="2 sectors"),),
    )


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(pipeline, "resolve", _fake_resolve)
    return TestClient(app_module.api, base_url="https://testserver")


@pytest.fixture
def production(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("ETF_ACCESS_PASSWORD", "letmein")
    monkeypatch.setenv("RECAPTCHA_SECRET_KEY", "captcha-key")


def test_etf_lookup_in_development(client):
    r = client.post("/api/etf", json={"ticker": "VGS"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["data"] == [{"sector": "Financials", "weight": 0.6}, {"sector": "Technology", "weight": 0.4}]
    assert body["sourceUrl"] == "https://fund.example/vgs"
    assert body["sources"] == [{"stage": "direct", "url": "https://fund.example/x", "ok": True, "note": "2 sectors"}]


def test_etf_lookup_failure_keeps_attempt_log(client):
    body = client.post("/api/etf", json={"ticker": "BAD"}).json()
    assert body["success"] is False
    assert "data" not in body
    assert body["sourceUrl"] == "https://fund.example/bad"
    assert body["sources"][0]["error"] == "timeout"


def test_etf_rejects_non_string_ticker(client):
    assert client.post("/api/etf", json={"ticker": 42}).status_code == 400


def test_configuration_error(client, monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("ETF_ACCESS_PASSWORD", "letmein")
    r = client.post("/api/etf", json={"ticker": "VGS"})
    assert r.status_code == 500
    assert r.json() == {"success": False, "sources": [], "error": "Server configuration error: Missing reCAPTCHA Secret."}


def test_captcha_required_outside_development(client, production):
    r = client.post("/api/etf", json={"ticker": "VGS"})
    assert r.status_code == 401
    assert r.json()["error"] == "Please complete the captcha."


def test_login_then_lookup(client, production, monkeypatch):
    monkeypatch.setattr(access, "verify_captcha", lambda token, secret: token == "human")

    assert client.get("/api/session").json() == {"authenticated": False}
    assert client.post("/api/login", json={"password": "nope"}).status_code == 401

    r = client.post("/api/login", json={"password": "letmein"})
    assert r.status_code == 200
    assert access.SESSION_COOKIE in r.cookies
    assert client.get("/api/session").json() == {"authenticated": True}

    failed = client.post("/api/etf", json={"ticker": "VGS", "captchaToken": "robot"})
    assert failed.json()["error"] == "Captcha verification failed. Please try again."
    ok = client.post("/api/etf", json={"ticker": "VGS", "captchaToken": "human"})
    assert ok.status_code == 200 and ok.json()["success"] is True


def test_expired_session(client, production, monkeypatch):
    monkeypatch.setattr(access, "verify_captcha", lambda token, secret: True)
    stale = access.issue_session_token("letmein", now=0)
    r = client.post(
        "/api/etf",
        json={"ticker": "VGS", "captchaToken": "human"},
        headers={"Cookie": f"{access.SESSION_COOKIE}={stale}"},
    )
    assert r.json()["error"] == "Unauthorized. Session expired."


def test_portfolio_endpoint(client):
    rows = [
        {"ticker": "VGS", "sum": "$1,000"},
        {"ticker": "A200", "sum": "3000"},
        {"ticker": "BAD", "sum": "5000"},
        {"ticker": "", "url": "", "sum": "10"},
    ]
    body = client.post("/api/portfolio", json={"rows": rows, "concurrency": 2}).json()
    assert [r["ticker"] for r in body["rows"]] == ["VGS", "A200", "BAD"]
    assert [r["success"] for r in body["rows"]] == [True, True, False]
    assert body["aggregate"]["totalValue"] == 4000
    assert body["aggregate"]["rows"][0] == {"sector": "Financials", "value": pytest.approx(2400), "percent": pytest.approx(0.6)}


def test_portfolio_default_section(client):
    body = client.post("/api/portfolio", json={"section": "cba"}).json()
    assert len(body["rows"]) == 8
    assert client.post("/api/portfolio", json={"section": "westpac"}).status_code == 400


def test_portfolio_requires_session_outside_development(client, production):
    assert client.post("/api/portfolio", json={"rows": []}).status_code == 401


def _events(text):
    return [json.loads(line[len("data: "):]) for line in text.splitlines() if line.startswith("data: ")]


def test_portfolio_stream(client):
    r = client.get("/api/portfolio/stream", params={"section": "cba"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    events = _events(r.text)
    kinds = [e["type"] for e in events]
    assert kinds[-1] == "done"
    assert kinds.count("row") == 8
    assert "error" not in kinds
    aggregate = [e for e in events if e["type"] == "aggregate"][0]
    assert aggregate["totalValue"] == pytest.approx(142340)
    progress = [e for e in events if e["type"] == "progress"]
    assert progress[-1]["done"] == 8 and progress[-1]["total"] == 8


def test_portfolio_stream_unknown_section(client):
    assert client.get("/api/portfolio/stream", params={"section": "westpac"}).status_code == 400


def test_cli_single_ticker(monkeypatch, capsys):
    monkeypatch.setattr(pipeline.SectorResolver, "resolve", lambda self, ticker=None, url=None, cancel=None: _fake_resolve(ticker, url))
    assert app_module.main(["VGS"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["success"] is True and out["sourceUrl"] == "https://fund.example/vgs"


def test_cli_prefer_url_flag(monkeypatch, capsys):
    seen = {}

    def fake(self, ticker=None, url=None, cancel=None):
        seen["prefer"] = self.prefer_explicit_url
        return _fake_resolve(ticker, url)

    monkeypatch.setattr(pipeline.SectorResolver, "resolve", fake)
    app_module.main(["VGS", "--url", "https://mine.example/vgs", "--prefer-url"])
    assert seen["prefer"] is True


def test_cli_requires_input():
    with pytest.raises(SystemExit) as exc:
        app_module.main([])
    assert exc.value.code == 2


def test_non_ascii_session_cookie_is_unauthenticated(client, production, monkeypatch):
    monkeypatch.setattr(access, "verify_captcha", lambda token, secret: True)
    cookie = {"Cookie": b"etf_auth=1.\xe9"}
    r = client.get("/api/session", headers=cookie)
    assert r.status_code == 200
    assert r.json() == {"authenticated": False}
    r = client.post("/api/etf", json={"ticker": "VGS", "captchaToken": "human"}, headers=cookie)
    assert r.status_code == 401
    assert r.json()["error"] == "Unauthorized. Session expired."
