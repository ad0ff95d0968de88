import signal

import pytest
from slack_bolt import App

import app as entrypoint
from app import ProjectTrackerBot
from config import load_settings
from conftest import FakeAnalyst, FakeScheduler
from errors import ConfigError


@pytest.fixture
def settings(tmp_path):
    return load_settings({
        "SLACK_BOT_TOKEN": "xoxb-test",
        "SLACK_SIGNING_SECRET": "secret",
        "SLACK_APP_TOKEN": "xapp-test",
        "DATABASE_URL": f"sqlite:///{tmp_path / 'tracker.db'}",
    })


@pytest.fixture
def bot(settings):
    slack_app = App(token="xoxb-test", signing_secret="secret", token_verification_enabled=False)
    tracker = ProjectTrackerBot(settings, slack_app=slack_app, analyst=FakeAnalyst())
    tracker.digest.scheduler = FakeScheduler()
    tracker.db.open()
    yield tracker
    tracker.db.close()


def test_wiring_shares_one_database(bot) -> None:
    assert bot.projects.db is bot.db
    assert bot.users.db is bot.db
    assert bot.handlers.analyst is bot.analyst
    assert bot.directory.client is bot.app.client
    assert bot.slack_status()["is_running"] is False


def test_trigger_digest_without_channel_is_skipped(bot) -> None:
    assert bot.trigger_digest() is False


def test_http_surface_uses_bot_state(bot) -> None:
    data = bot.http.test_client().get("/status").get_json()

    assert data["database"] == "connected"
    assert data["slack"]["is_running"] is False


def test_stop_closes_everything(bot) -> None:
    bot.stop()

    assert not bot.db.is_open
    assert bot.socket_handler is None
    assert bot.digest.is_scheduled is False


def test_second_signal_forces_exit(bot) -> None:
    with pytest.raises(SystemExit) as first:
        bot.handle_signal(signal.SIGTERM, None)
    assert first.value.code == 0
    assert not bot.db.is_open

    with pytest.raises(SystemExit) as second:
        bot.handle_signal(signal.SIGINT, None)
    assert second.value.code == 1


def test_main_exits_nonzero_on_missing_config(monkeypatch) -> None:
    def broken_settings():
        raise ConfigError("Missing required environment variables: SLACK_BOT_TOKEN")

    monkeypatch.setattr(entrypoint, "load_settings", broken_settings)
    monkeypatch.setattr(entrypoint, "configure_logging", lambda *a, **k: None)

    assert entrypoint.main() == 1
