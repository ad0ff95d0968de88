import importlib.util
from pathlib import Path

import requests

SCRIPTS = Path(__file__).resolve().parent.parent / "scripts"


def _load(name):
    spec = importlib.util.spec_from_file_location(f"scripts_{name}", SCRIPTS / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self):
        if self.body is None:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self.body


def test_keep_warm_ping_ok(monkeypatch) -> None:
    keep_warm = _load("keep_warm")
    seen = []

    def fake_get(url, timeout):
        seen.append((url, timeout))
        return FakeResponse(body={"status": "healthy"})

    monkeypatch.setattr(keep_warm.requests, "get", fake_get)

    assert keep_warm.ping("https://bot.example.com/") is True
    assert seen == [("https://bot.example.com/health", 10)]


def test_keep_warm_ping_survives_non_json_reply(monkeypatch) -> None:
    keep_warm = _load("keep_warm")
    monkeypatch.setattr(keep_warm.requests, "get", lambda url, timeout: FakeResponse(body=None))

    assert keep_warm.ping("https://bot.example.com") is False


def test_keep_warm_ping_reports_http_errors(monkeypatch) -> None:
    keep_warm = _load("keep_warm")
    monkeypatch.setattr(keep_warm.requests, "get", lambda url, timeout: FakeResponse(status_code=502))

    assert keep_warm.ping("https://bot.example.com") is False


def test_check_health_exit_codes(monkeypatch) -> None:
    check_health = _load("check_health")
    monkeypatch.setenv("HEALTH_URL", "http://localhost:3000/health")

    monkeypatch.setattr(check_health.requests, "get", lambda url, timeout: FakeResponse(body={}))
    assert check_health.main() == 0

    monkeypatch.setattr(check_health.requests, "get", lambda url, timeout: FakeResponse(status_code=503))
    assert check_health.main() == 1
