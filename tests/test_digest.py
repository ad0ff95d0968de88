from datetime import date, datetime, timezone

from conftest import FakeScheduler, FakeSlackClient
from digest import DIGEST_JOB_ID, FALLBACK_DIGEST_TEXT, WeeklyDigest, upcoming_deadlines
from models import Project


def _digest(projects, analyst, client=None, channel="C-GENERAL", scheduler=None):
    return WeeklyDigest(
        client or FakeSlackClient(),
        projects,
        analyst,
        channel,
        scheduler=scheduler or FakeScheduler(),
        clock=lambda: datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc),
    )


def test_upcoming_deadlines_window_and_order() -> None:
    today = date(2024, 3, 4)
    projects = [
        Project(id=1, name="Late", client_name="X", deadline=date(2024, 3, 1)),
        Project(id=2, name="Far", client_name="X", deadline=date(2024, 3, 25)),
        Project(id=3, name="Soon", client_name="X", deadline=date(2024, 3, 6)),
        Project(id=4, name="Edge", client_name="X", deadline=date(2024, 3, 18)),
        Project(id=5, name="None", client_name="X"),
    ]

    result = upcoming_deadlines(projects, today)

    assert [(p.name, days) for p, days in result] == [("Soon", 2), ("Edge", 14)]


def test_schedule_registers_monday_job_once(projects, analyst) -> None:
    scheduler = FakeScheduler()
    digest = _digest(projects, analyst, scheduler=scheduler)

    digest.schedule()
    digest.schedule()

    func, kwargs = scheduler.jobs[DIGEST_JOB_ID]
    assert func == digest.generate_and_send
    assert kwargs["trigger"] == "cron"
    assert (kwargs["day_of_week"], kwargs["hour"], kwargs["minute"]) == ("mon", 9, 0)
    assert kwargs["timezone"] == "America/New_York"
    assert scheduler.running
    assert digest.status() == {"is_scheduled": True, "next_run": "Next Monday at 9:00 AM"}


def test_stop_shuts_scheduler_down(projects, analyst) -> None:
    scheduler = FakeScheduler()
    digest = _digest(projects, analyst, scheduler=scheduler)
    digest.schedule()

    digest.stop()

    assert scheduler.shutdowns == [False]
    assert digest.status() == {"is_scheduled": False, "next_run": "Not scheduled"}


def test_generate_and_send_posts_digest(projects, analyst, users) -> None:
    ada = users.find_or_create_user("U1", name="Ada")
    p = projects.create_project({"name": "Site", "client_name": "Acme", "deadline": "2024-03-07"})
    projects.add_project_update(p.id, ada.id, "kickoff")
    client = FakeSlackClient()

    assert _digest(projects, analyst, client=client).generate_and_send() is True

    [msg] = client.calls_to("chat_postMessage")
    assert msg["channel"] == "C-GENERAL"
    texts = [b["text"]["text"] for b in msg["blocks"] if b["type"] == "section"]
    assert any("digest: 1 active, 1 updates" in t for t in texts)
    assert any("⚠️ *Site*" in t or "🚨 *Site*" in t for t in texts)


def test_generate_and_send_posts_fallback_on_error(projects, analyst) -> None:
    class BrokenAnalyst:
        def generate_weekly_digest(self, projects, updates):
            raise RuntimeError("no digest today")

    client = FakeSlackClient()

    assert _digest(projects, BrokenAnalyst(), client=client).generate_and_send() is False

    [msg] = client.calls_to("chat_postMessage")
    assert msg["text"] == FALLBACK_DIGEST_TEXT


def test_generate_and_send_without_channel_is_skipped(projects, analyst) -> None:
    client = FakeSlackClient()

    assert _digest(projects, analyst, client=client, channel="").generate_and_send() is False
    assert client.calls == []


def test_today_is_taken_in_the_digest_timezone(projects, analyst) -> None:
    # 02:00 UTC on Monday is still Sunday evening in New York
    digest = WeeklyDigest(
        FakeSlackClient(),
        projects,
        analyst,
        "C-GENERAL",
        tz="America/New_York",
        scheduler=FakeScheduler(),
        clock=lambda: datetime(2024, 3, 4, 2, 0, tzinfo=timezone.utc),
    )
    projects.create_project({"name": "Site", "client_name": "Acme", "deadline": "2024-03-05"})

    assert digest.today() == date(2024, 3, 3)
    client = digest.client
    assert digest.generate_and_send() is True
    [msg] = client.calls_to("chat_postMessage")
    texts = [b["text"]["text"] for b in msg["blocks"] if b["type"] == "section"]
    assert any("*Site* (Acme) - Mar 05, 2024 (2 days)" in t for t in texts)
