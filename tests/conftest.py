from datetime import datetime, timedelta, timezone

import pytest

from database import Database
from projects import ProjectService
from users import UserService


class FakeClock:
    def __init__(self, start=None):
        self.current = start or datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class FakeAnalyst:
    enabled = True

    def __init__(self):
        self.analyzed = []

    def analyze_project_update(self, content, project):
        self.analyzed.append((content, project.id))
        return {"analysis": "Looks on track.", "risks": ["scope creep"], "opportunities": ["upsell"]}

    def generate_weekly_digest(self, projects, updates):
        return f"digest: {len(projects)} active, {len(updates)} updates"

    def generate_project_detail_summary(self, project):
        return f"summary of {project.name}"


class FakeSlackClient:
    """Records every Web API call; canned responses per method."""

    def __init__(self, responses=None):
        self.calls = []
        self.responses = responses or {}

    def __getattr__(self, method):
        if method.startswith("_"):
            raise AttributeError(method)

        def call(**kwargs):
            self.calls.append((method, kwargs))
            response = self.responses.get(method, {"ok": True})
            if isinstance(response, Exception):
                raise response
            return response

        return call

    def calls_to(self, method):
        return [kwargs for name, kwargs in self.calls if name == method]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db(tmp_path, clock):
    database = Database(str(tmp_path / "tracker.db"), clock=clock).open()
    yield database
    database.close()


@pytest.fixture
def users(db):
    return UserService(db)


@pytest.fixture
def analyst():
    return FakeAnalyst()


@pytest.fixture
def projects(db, analyst):
    return ProjectService(db, analyst=analyst)


@pytest.fixture
def slack_client():
    return FakeSlackClient()


class FakeScheduler:
    def __init__(self):
        self.jobs = {}
        self.running = False
        self.shutdowns = []

    def add_job(self, func, **kwargs):
        self.jobs[kwargs["id"]] = (func, kwargs)

    def get_job(self, job_id):
        return None

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.shutdowns.append(wait)
        self.running = False
