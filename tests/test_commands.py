import json

import pytest
from slack_sdk.errors import SlackApiError

import blocks
from commands import TrackerHandlers
from conftest import FakeSlackClient
from directory import SlackDirectory


class Recorder:
    """Stands in for ack, respond and say."""

    def __init__(self):
        self.calls = []

    def __call__(self, *args, **kwargs):
        self.calls.append((args, kwargs))

    @property
    def last(self):
        return self.calls[-1][1]


WORKSPACE = {
    "conversations_info": {"channel": {"name": "client-acme-corp"}},
    "conversations_list": {"channels": [
        {"id": "C1", "name": "client-acme-corp"},
        {"id": "C2", "name": "general"},
        {"id": "C3", "name": "client-globex"},
    ]},
    "users_list": {"members": [
        {"id": "U1", "name": "ada", "real_name": "Ada Lovelace", "profile": {"email": "ada@example.com"}},
        {"id": "B1", "name": "bot", "is_bot": True},
        {"id": "USLACKBOT", "name": "slackbot"},
    ]},
    "users_info": {"user": {"id": "U1", "name": "ada", "real_name": "Ada Lovelace",
                            "profile": {"email": "ada@example.com"}}},
}


@pytest.fixture
def client():
    return FakeSlackClient(dict(WORKSPACE))


@pytest.fixture
def handlers(projects, users, client, analyst):
    return TrackerHandlers(projects, users, SlackDirectory(client), analyst=analyst)


def _update_view(channel_id="C1", client_name="Acme Corp", project_id=None, content=None, status=None):
    def selected(value):
        return {"selected_option": {"value": value}} if value else {"selected_option": None}

    return {
        "id": "V1",
        "hash": "h-1",
        "private_metadata": json.dumps({"channel_id": channel_id, "client": client_name}),
        "state": {"values": {
            "project_select": {"project_dropdown": selected(project_id)},
            "update_content": {"content_input": {"value": content}},
            "status_update": {"status_select": selected(status)},
        }},
    }


def test_project_new_command_opens_modal_with_workspace_people(handlers, client) -> None:
    ack = Recorder()

    handlers.project_new_command(ack, {"channel_id": "C1", "user_id": "U1"}, client, {"trigger_id": "T1"})

    assert ack.calls
    [opened] = client.calls_to("views_open")
    assert opened["trigger_id"] == "T1"
    assert opened["view"]["callback_id"] == blocks.NEW_PROJECT_CALLBACK
    assignees = [b for b in opened["view"]["blocks"] if b["block_id"] == "assigned_to"][0]
    assert [o["value"] for o in assignees["element"]["options"]] == [blocks.UNASSIGNED, "U1"]


def test_project_new_command_reports_modal_errors(handlers, client) -> None:
    client.responses["views_open"] = SlackApiError("bad", {"ok": False, "error": "expired_trigger_id"})

    handlers.project_new_command(Recorder(), {"channel_id": "C1", "user_id": "U1"}, client, {"trigger_id": "T1"})

    [msg] = client.calls_to("chat_postEphemeral")
    assert "error opening the project creation form" in msg["text"]


def test_project_new_submission_creates_project_and_assignee(handlers, client, projects) -> None:
    view = {"state": {"values": {
        "project_name": {"name_input": {"value": "Website"}},
        "client_name": {"client_input": {"value": "Acme Corp"}},
        "project_status": {"status_select": {"selected_option": {"value": "IN_PROGRESS"}}},
        "assigned_to": {"assignee_select": {"selected_option": {"value": "U1"}}},
        "project_deadline": {"deadline_picker": {"selected_date": "2024-04-01"}},
    }}}

    handlers.project_new_submission(Recorder(), {"user": {"id": "U2", "name": "grace"}}, view, client)

    [project] = projects.get_all_projects()
    assert project.status == "IN_PROGRESS"
    assert project.assignee.name == "Ada Lovelace"
    [dm] = client.calls_to("chat_postMessage")
    assert dm["channel"] == "U2"
    assert dm["text"] == 'Project "Website" created'


def test_project_new_submission_reports_validation_errors(handlers, client, projects) -> None:
    view = {"state": {"values": {
        "project_name": {"name_input": {"value": "Website"}},
        "client_name": {"client_input": {"value": ""}},
    }}}

    handlers.project_new_submission(Recorder(), {"user": {"id": "U2"}}, view, client)

    assert projects.get_all_projects() == []
    [dm] = client.calls_to("chat_postMessage")
    assert "Client name is required" in dm["text"]


def test_project_update_command_preselects_client_from_channel(handlers, client, projects) -> None:
    projects.create_project({"name": "Site", "client_name": "Acme Corp"})
    projects.create_project({"name": "App", "client_name": "Globex"})

    handlers.project_update_command(Recorder(), {"channel_id": "C1", "user_id": "U1"}, client, {"trigger_id": "T1"})

    [opened] = client.calls_to("views_open")
    view = opened["view"]
    assert json.loads(view["private_metadata"]) == {"channel_id": "C1", "client": "Acme Corp"}
    project_block = [b for b in view["blocks"] if b.get("block_id") == "project_select"][0]
    assert [o["text"]["text"] for o in project_block["element"]["options"]] == ["Site (Acme Corp)"]


def test_project_update_command_without_projects(handlers, client) -> None:
    handlers.project_update_command(Recorder(), {"channel_id": "C1", "user_id": "U1"}, client, {"trigger_id": "T1"})

    assert client.calls_to("views_open") == []
    assert "No projects found" in client.calls_to("chat_postEphemeral")[0]["text"]


def test_client_filter_rebuilds_modal_and_keeps_input(handlers, client, projects) -> None:
    projects.create_project({"name": "Site", "client_name": "Acme Corp"})
    projects.create_project({"name": "App", "client_name": "Globex"})
    body = {
        "view": _update_view(content="half done", status="ON_HOLD"),
        "actions": [{"action_id": "client_filter_dropdown", "selected_option": {"value": "Globex"}}],
    }

    handlers.client_filter_selection(Recorder(), body, client)

    [update] = client.calls_to("views_update")
    assert update["view_id"] == "V1"
    assert update["hash"] == "h-1"
    view = update["view"]
    assert json.loads(view["private_metadata"]) == {"channel_id": "C1", "client": "Globex"}
    by_id = {b.get("block_id"): b for b in view["blocks"]}
    assert [o["value"] for o in by_id["project_select"]["element"]["options"]] == ["2"]
    assert by_id["update_content"]["element"]["initial_value"] == "half done"
    assert by_id["status_update"]["element"]["initial_option"]["value"] == "ON_HOLD"


def test_client_filter_tolerates_hash_conflicts(handlers, client) -> None:
    client.responses["views_update"] = SlackApiError("conflict", {"ok": False, "error": "hash_conflict"})
    body = {"view": _update_view(), "actions": [{"selected_option": {"value": blocks.ALL_CLIENTS}}]}

    handlers.client_filter_selection(Recorder(), body, client)

    assert len(client.calls_to("views_update")) == 1


def test_update_submission_requires_a_project(handlers, client) -> None:
    ack = Recorder()

    handlers.project_update_submission(ack, {"user": {"id": "U1"}}, _update_view(content="x"), client)

    assert ack.last == {"response_action": "errors", "errors": {"project_select": "Please pick a project."}}
    assert client.calls == []


def test_update_submission_adds_update_changes_status_and_announces(handlers, client, projects, users) -> None:
    p = projects.create_project({"name": "Site", "client_name": "Acme Corp"})
    view = _update_view(project_id=str(p.id), content="Launched beta", status="IN_PROGRESS")

    handlers.project_update_submission(Recorder(), {"user": {"id": "U1", "name": "ada"}}, view, client)

    stored = projects.get_project(p.id)
    assert stored.status == "IN_PROGRESS"
    assert [u.content for u in stored.updates] == ["Launched beta"]
    assert stored.updates[0].user.name == "Ada Lovelace"

    dm, announcement = client.calls_to("chat_postMessage")
    assert dm["channel"] == "U1"
    assert "Planning → In Progress" in json.dumps(dm["blocks"], ensure_ascii=False)
    assert announcement["channel"] == "C1"
    assert "Ada Lovelace" in announcement["text"]


def test_update_submission_from_dm_skips_announcement(handlers, client, projects) -> None:
    p = projects.create_project({"name": "Site", "client_name": "Acme Corp"})
    view = _update_view(channel_id="D123", project_id=str(p.id), content="note", status=blocks.NO_STATUS_CHANGE)

    handlers.project_update_submission(Recorder(), {"user": {"id": "U1"}}, view, client)

    [dm] = client.calls_to("chat_postMessage")
    assert dm["channel"] == "U1"
    assert projects.get_project(p.id).status == "PLANNING"


def test_project_list_auto_filters_from_client_channel(handlers, projects) -> None:
    projects.create_project({"name": "Site", "client_name": "Acme Corp"})
    projects.create_project({"name": "App", "client_name": "Globex"})
    respond = Recorder()

    handlers.project_list_command(Recorder(), {"channel_id": "C1", "user_id": "U1", "text": ""}, respond)

    reply = respond.last
    assert reply["response_type"] == "ephemeral"
    assert reply["text"] == '📋 Project Portfolio Overview for client "Acme Corp"'
    assert "Auto-filtered" in json.dumps(reply["blocks"])
    assert "Globex" not in json.dumps(reply["blocks"])


def test_project_list_all_overrides_channel_filter(handlers, projects) -> None:
    projects.create_project({"name": "Site", "client_name": "Acme Corp"})
    projects.create_project({"name": "App", "client_name": "Globex"})
    respond = Recorder()

    handlers.project_list_command(Recorder(), {"channel_id": "C1", "user_id": "U1", "text": "all"}, respond)

    text = json.dumps(respond.last["blocks"])
    assert "Globex" in text and "Acme Corp" in text


def test_project_list_no_match_for_explicit_client(handlers, client, projects) -> None:
    client.responses["conversations_info"] = {"channel": {"name": "general"}}
    projects.create_project({"name": "Site", "client_name": "Acme Corp"})
    respond = Recorder()

    handlers.project_list_command(Recorder(), {"channel_id": "C2", "user_id": "U1", "text": '"Initech"'}, respond)

    assert respond.last["text"].startswith('📋 No projects found for client "Initech".')
    assert "without parameters" in respond.last["text"]


def test_view_project_details_posts_summary(handlers, client, projects) -> None:
    p = projects.create_project({"name": "Site", "client_name": "Acme Corp"})
    body = {"user": {"id": "U1"}, "channel": {"id": "C1"}, "actions": [{"value": str(p.id)}]}

    handlers.view_project_details(Recorder(), body, client)

    [msg] = client.calls_to("chat_postEphemeral")
    assert msg["channel"] == "C1"
    assert "summary of Site" in json.dumps(msg["blocks"])


def test_view_project_details_missing_project(handlers, client) -> None:
    body = {"user": {"id": "U1"}, "container": {"channel_id": "C1"}, "actions": [{"value": "99"}]}

    handlers.view_project_details(Recorder(), body, client)

    assert client.calls_to("chat_postEphemeral")[0]["text"] == "❌ Project not found."


def test_direct_message_routing(handlers) -> None:
    say = Recorder()

    handlers.direct_message({"channel_type": "im", "channel": "D1", "user": "U1", "text": "Hello"}, say)
    handlers.direct_message({"channel_type": "im", "channel": "D1", "user": "U1", "text": "create a project"}, say)
    handlers.direct_message({"channel_type": "im", "channel": "D1", "user": "U1", "text": "what?"}, say)

    texts = [kwargs["text"] for _, kwargs in say.calls]
    assert texts[0] == "Here's what I can help you with"
    assert "/project-new" in texts[1]
    assert texts[2].startswith("I didn't quite understand")


def test_direct_message_ignores_bots_and_channels(handlers) -> None:
    say = Recorder()

    handlers.direct_message({"channel_type": "im", "bot_id": "B1", "text": "help"}, say)
    handlers.direct_message({"channel_type": "channel", "text": "help"}, say)
    handlers.direct_message({"channel_type": "im", "subtype": "message_changed", "text": "help"}, say)

    assert say.calls == []


def test_app_mention_replies_in_thread(handlers) -> None:
    say = Recorder()

    handlers.app_mention({"user": "U1", "ts": "123.45"}, say)

    assert say.last == {"text": blocks.MENTION_HELP, "thread_ts": "123.45"}
