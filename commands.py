import logging
import re
from typing import Callable, List, Optional, Tuple

from slack_bolt import App
from slack_sdk.errors import SlackApiError

import blocks
from analysis import fallback_summary
from directory import SlackDirectory, client_from_channel_name
from errors import NotFoundError
from projects import ProjectService, stats_for_projects
from users import UserService

logger = logging.getLogger(__name__)

GREETINGS = {"hi", "hello", "hey"}


def _channel_id(body: dict) -> Optional[str]:
    return (body.get("channel") or {}).get("id") or (body.get("container") or {}).get("channel_id")


def _is_dm_channel(channel_id: str) -> bool:
    return channel_id.startswith("D")


class TrackerHandlers:
    """Slash commands, modal submissions, actions and events for the tracker."""

    def __init__(
        self,
        projects: ProjectService,
        users: UserService,
        directory: SlackDirectory,
        analyst=None,
    ) -> None:
        self.projects = projects
        self.users = users
        self.directory = directory
        self.analyst = analyst

    # ---- helpers ----

    def _ensure_user(self, slack_user: dict):
        user_id = slack_user["id"]
        existing = self.users.get_user_by_slack_id(user_id)
        if existing:
            return existing
        info = self.directory.get_user_info(user_id) or {}
        return self.users.find_or_create_user(
            user_id,
            name=info.get("name") or slack_user.get("name") or slack_user.get("username"),
            email=info.get("email"),
        )

    def _assignee_choices(self) -> List[Tuple[str, str]]:
        people = self.directory.get_workspace_users()
        if people:
            return [(p["name"], p["id"]) for p in people if p.get("name")]
        # workspace listing unavailable: fall back to people we already know
        return [(u.name, u.slack_user_id) for u in self.users.get_all_users()]

    def _client_choices(self, extra: Optional[str] = None) -> List[str]:
        clients = set(self.projects.get_unique_clients())
        clients.update(c["display_name"] for c in self.directory.get_client_channels())
        if extra:
            clients.add(extra)
        return sorted(clients, key=str.lower)

    @staticmethod
    def _ephemeral(client, channel_id: str, user_id: str) -> Callable[..., None]:
        def respond(text: str = "", blocks=None, **_):
            client.chat_postEphemeral(channel=channel_id, user=user_id, text=text, blocks=blocks)
        return respond

    @staticmethod
    def _post(client, channel_id: str) -> Callable[..., None]:
        def respond(text: str = "", blocks=None, **_):
            client.chat_postMessage(channel=channel_id, text=text, blocks=blocks)
        return respond

    # ---- /project-new ----

    def project_new_command(self, ack, command, client, body):
        ack()
        try:
            modal = blocks.project_new_modal(self._assignee_choices())
            client.views_open(trigger_id=body["trigger_id"], view=modal)
            logger.info("Project creation modal opened by %s", body.get("user_id"))
        except Exception as e:
            logger.error("Error opening project creation modal: %r", e)
            client.chat_postEphemeral(
                channel=command["channel_id"],
                user=command["user_id"],
                text="❌ Sorry, there was an error opening the project creation form. Please try again.",
            )

    def project_new_submission(self, ack, body, view, client):
        ack()
        slack_user = body["user"]
        try:
            data = blocks.read_new_project_state(view)
            self._ensure_user(slack_user)

            assignee_slack_id = data.pop("assignee_slack_id")
            if assignee_slack_id:
                info = self.directory.get_user_info(assignee_slack_id) or {}
                assignee = self.users.find_or_create_user(
                    assignee_slack_id, name=info.get("name"), email=info.get("email")
                )
                data["assigned_to"] = assignee.id

            project = self.projects.create_project(data, slack_user["id"])
            client.chat_postMessage(
                channel=slack_user["id"],
                text=f"Project \"{project.name}\" created",
                blocks=blocks.project_created_blocks(project),
            )
        except Exception as e:
            logger.error("Error creating project: %r", e)
            client.chat_postMessage(channel=slack_user["id"], text=f"❌ Error creating project: {e}")

    # ---- /project-update ----

    def project_update_command(self, ack, command, client, body):
        ack()
        try:
            projects = self.projects.get_all_projects()
            if not projects:
                client.chat_postEphemeral(
                    channel=command["channel_id"],
                    user=command["user_id"],
                    text="📝 No projects found. Create a project first using `/project-new`.",
                )
                return

            channel_id = command["channel_id"]
            client_name = client_from_channel_name(self.directory.get_channel_name(channel_id) or "")
            modal = blocks.project_update_modal(
                projects,
                self._client_choices(client_name),
                channel_id=channel_id,
                selected_client=client_name,
            )
            client.views_open(trigger_id=body["trigger_id"], view=modal)
            logger.info("Project update modal opened by %s", body.get("user_id"))
        except Exception as e:
            logger.error("Error opening project update modal: %r", e)
            client.chat_postEphemeral(
                channel=command["channel_id"],
                user=command["user_id"],
                text="❌ Sorry, there was an error opening the project update form. Please try again.",
            )

    def client_filter_selection(self, ack, body, client):
        """Rebuild the update modal for the chosen client, keeping typed input."""
        ack()
        view = body["view"]
        state = blocks.read_update_modal_state(view)
        picked = ((body.get("actions") or [{}])[0].get("selected_option") or {}).get("value")
        if picked:
            state["client"] = None if picked == blocks.ALL_CLIENTS else picked
        try:
            modal = blocks.project_update_modal(
                self.projects.get_all_projects(),
                self._client_choices(state["client"]),
                channel_id=state["channel_id"],
                selected_client=state["client"],
                content=state["content"],
                status=state["status"],
            )
            client.views_update(view_id=view["id"], hash=view.get("hash"), view=modal)
        except SlackApiError as e:
            # hash_conflict means the user changed the view again; the newer event wins
            logger.warning("Could not update project modal: %s", e.response.get("error"))

    def project_update_submission(self, ack, body, view, client):
        state = blocks.read_update_modal_state(view)
        if not state["project_id"]:
            ack(response_action="errors", errors={"project_select": "Please pick a project."})
            return
        ack()

        slack_user = body["user"]
        content = state["content"] or ""
        try:
            user = self._ensure_user(slack_user)
            project = self.projects.get_project(state["project_id"])
            if not project:
                raise NotFoundError("Project not found")

            update = self.projects.add_project_update(project.id, user.id, content)

            new_status = state["status"]
            if new_status in (None, blocks.NO_STATUS_CHANGE, project.status):
                new_status = None
            else:
                self.projects.update_project(project.id, status=new_status)

            client.chat_postMessage(
                channel=slack_user["id"],
                text=f"Update added to \"{project.name}\"",
                blocks=blocks.update_added_blocks(project, update, new_status),
            )

            channel_id = state["channel_id"]
            if channel_id and channel_id != slack_user["id"] and not _is_dm_channel(channel_id):
                author = user.name or slack_user.get("name") or "Someone"
                client.chat_postMessage(
                    channel=channel_id,
                    text=f"📝 {author} added an update to *{project.name}*",
                    blocks=blocks.update_announcement_blocks(author, project, content),
                )

            logger.info(
                "Project update added: project=%s update=%s user=%s status_changed=%s",
                project.id, update.id, user.id, bool(new_status),
            )
        except Exception as e:
            logger.error("Error adding project update: %r", e)
            client.chat_postMessage(channel=slack_user["id"], text=f"❌ Error adding project update: {e}")

    # ---- /project-list ----

    def show_project_list(self, channel_id: str, user_id: str, text: str, respond) -> None:
        channel_name = self.directory.get_channel_name(channel_id) or ""
        detected = client_from_channel_name(channel_name)

        text = (text or "").strip().strip('"').strip()
        client_filter, filter_message, auto = "", "", False
        if text.lower() == "all":
            filter_message = " (showing all clients)"
        elif text:
            client_filter = text
            filter_message = f" for client \"{client_filter}\""
        elif detected:
            client_filter, auto = detected, True
            filter_message = f" for client \"{client_filter}\""

        projects = self.projects.get_all_projects(client_name=client_filter or None)
        if not projects:
            if client_filter:
                hint = (
                    "Use `/project-list all` to see all projects or `/project-list \"Other Client\"` to filter by a different client."
                    if auto else
                    "Use `/project-list` without parameters to see all projects."
                )
                respond(text=f"📋 No projects found for client \"{client_filter}\". {hint}", response_type="ephemeral")
            else:
                respond(text="📋 No projects found. Create your first project using `/project-new`.", response_type="ephemeral")
            return

        stats = stats_for_projects(projects) if client_filter else self.projects.get_project_stats()

        help_text = None
        if auto:
            help_text = (
                f"💡 _Auto-filtered for \"{client_filter}\" (from #{channel_name}). Use `/project-list all` "
                "to see all projects or `/project-list \"Other Client\"` to filter by a different client._"
            )
        elif client_filter:
            help_text = f"💡 _Showing projects for \"{client_filter}\". Use `/project-list all` to see all projects._"
        elif text.lower() == "all":
            help_text = "💡 _Showing all projects. Use `/project-list \"Client Name\"` to filter by a specific client._"

        respond(
            text=f"📋 Project Portfolio Overview{filter_message}",
            blocks=blocks.project_list_blocks(projects, stats, filter_message=filter_message, help_text=help_text),
            response_type="ephemeral",
        )
        logger.info(
            "Project list displayed: user=%s projects=%d client_filter=%s auto=%s",
            user_id, len(projects), client_filter or "none", auto,
        )

    def project_list_command(self, ack, command, respond):
        ack()
        try:
            self.show_project_list(command["channel_id"], command["user_id"], command.get("text", ""), respond)
        except Exception as e:
            logger.error("Error displaying project list: %r", e)
            respond(
                text="❌ Sorry, there was an error retrieving the project list. Please try again.",
                response_type="ephemeral",
            )

    # ---- buttons ----

    def view_project_details(self, ack, body, client):
        ack()
        channel_id, user_id = _channel_id(body), body["user"]["id"]
        respond = self._ephemeral(client, channel_id, user_id)
        try:
            project = self.projects.get_project(int(body["actions"][0]["value"]))
            if not project:
                respond(text="❌ Project not found.")
                return

            if self.analyst is not None:
                summary = self.analyst.generate_project_detail_summary(project)
            else:
                summary = fallback_summary(project)

            respond(
                text=f"📋 {project.name} - Project Details",
                blocks=blocks.project_detail_blocks(project, summary),
            )
            logger.info("Project details viewed: project=%s user=%s", project.id, user_id)
        except Exception as e:
            logger.error("Error showing project details: %r", e)
            respond(text="❌ Error loading project details.")

    def view_project_stats(self, ack, body, client):
        ack()
        channel_id, user_id = _channel_id(body), body["user"]["id"]
        respond = self._ephemeral(client, channel_id, user_id)
        try:
            stats = self.projects.get_project_stats()
            recent = self.projects.get_recent_updates(days=7, limit=5)
            respond(text="📊 Project Portfolio Statistics", blocks=blocks.stats_blocks(stats, recent))
        except Exception as e:
            logger.error("Error showing project statistics: %r", e)
            respond(text="❌ Error loading project statistics.")

    def view_all_projects(self, ack, body, client):
        ack()
        channel_id, user_id = _channel_id(body), body["user"]["id"]
        respond = self._ephemeral(client, channel_id, user_id)
        try:
            self.show_project_list(channel_id, user_id, "all", respond)
        except Exception as e:
            logger.error("Error listing projects from digest: %r", e)
            respond(text="❌ Sorry, there was an error retrieving the project list. Please try `/project-list`.")

    def create_project_hint(self, ack, body, client):
        ack()
        try:
            client.chat_postEphemeral(
                channel=_channel_id(body),
                user=body["user"]["id"],
                text="To create a new project, use the `/project-new` command in any channel!",
            )
        except SlackApiError as e:
            logger.error("Error handling create project button: %s", e.response.get("error"))

    def dm_view_projects(self, ack, body, client):
        ack()
        channel_id = _channel_id(body)
        respond = self._post(client, channel_id)
        try:
            self.show_project_list(channel_id, body["user"]["id"], "", respond)
        except Exception as e:
            logger.error("Error handling DM view projects button: %r", e)
            respond(text="Sorry, there was an error retrieving the project list. Please try the `/project-list` command.")

    def dm_create_project(self, ack, body, client):
        ack()
        client.chat_postMessage(
            channel=_channel_id(body),
            text="To create a new project, please use the `/project-new` command. "
                 "This will open an interactive form where you can enter all the project details.",
        )

    def dm_update_project(self, ack, body, client):
        ack()
        client.chat_postMessage(
            channel=_channel_id(body),
            text="To update a project, please use the `/project-update` command. "
                 "This will show you a list of projects to choose from and let you add updates.",
        )

    # ---- events ----

    def app_mention(self, event, say):
        try:
            say(text=blocks.MENTION_HELP, thread_ts=event.get("ts"))
            logger.info("App mention handled: user=%s", event.get("user"))
        except SlackApiError as e:
            logger.error("Error handling app mention: %s", e.response.get("error"))

    def direct_message(self, event, say):
        # only DMs from humans; skip edits, joins and other subtypes
        if event.get("channel_type") != "im" or event.get("bot_id") or event.get("subtype"):
            return

        text = (event.get("text") or "").strip().lower()
        try:
            if "help" in text or text in GREETINGS:
                say(text="Here's what I can help you with", blocks=blocks.dm_help_blocks())
            elif "project" in text and any(k in text for k in ("list", "show", "view")):
                self.show_project_list(event["channel"], event.get("user"), "", self._say(say))
            elif "create" in text and "project" in text:
                say(text="To create a new project, use the `/project-new` command.", blocks=blocks.dm_create_blocks())
            elif "status" in text or "update" in text:
                say(text="To update a project or check status, use `/project-update` or `/project-list`.",
                    blocks=blocks.dm_status_blocks())
            else:
                say(text="I didn't quite understand that. Type \"help\" to see what I can do.",
                    blocks=blocks.dm_unknown_blocks())
            logger.info("Direct message handled: user=%s", event.get("user"))
        except Exception as e:
            logger.error("Error handling direct message: %r", e)
            say("Sorry, I encountered an error. Please try again or use the slash commands.")

    @staticmethod
    def _say(say) -> Callable[..., None]:
        def respond(text: str = "", blocks=None, **_):
            say(text=text, blocks=blocks)
        return respond


def register_handlers(app: App, handlers: TrackerHandlers) -> None:
    @app.command("/project-new")
    def handle_project_new(ack, command, client, body):
        handlers.project_new_command(ack=ack, command=command, client=client, body=body)

    @app.command("/project-update")
    def handle_project_update(ack, command, client, body):
        handlers.project_update_command(ack=ack, command=command, client=client, body=body)

    @app.command("/project-list")
    def handle_project_list(ack, command, respond):
        handlers.project_list_command(ack=ack, command=command, respond=respond)

    @app.view(blocks.NEW_PROJECT_CALLBACK)
    def handle_new_submission(ack, body, view, client):
        handlers.project_new_submission(ack=ack, body=body, view=view, client=client)

    @app.view(blocks.UPDATE_PROJECT_CALLBACK)
    def handle_update_submission(ack, body, view, client):
        handlers.project_update_submission(ack=ack, body=body, view=view, client=client)

    @app.action("client_filter_dropdown")
    def handle_client_filter(ack, body, client):
        handlers.client_filter_selection(ack=ack, body=body, client=client)

    @app.action("view_project_details")
    def handle_view_details(ack, body, client):
        handlers.view_project_details(ack=ack, body=body, client=client)

    @app.action("view_project_stats")
    def handle_view_stats(ack, body, client):
        handlers.view_project_stats(ack=ack, body=body, client=client)

    @app.action("view_all_projects_digest")
    def handle_view_all(ack, body, client):
        handlers.view_all_projects(ack=ack, body=body, client=client)

    @app.action(re.compile(r"^create_new_project(_digest)?$"))
    def handle_create_hint(ack, body, client):
        handlers.create_project_hint(ack=ack, body=body, client=client)

    @app.action("dm_view_projects")
    def handle_dm_view(ack, body, client):
        handlers.dm_view_projects(ack=ack, body=body, client=client)

    @app.action("dm_create_project")
    def handle_dm_create(ack, body, client):
        handlers.dm_create_project(ack=ack, body=body, client=client)

    @app.action("dm_update_project")
    def handle_dm_update(ack, body, client):
        handlers.dm_update_project(ack=ack, body=body, client=client)

    @app.event("app_mention")
    def handle_app_mention(event, say):
        handlers.app_mention(event=event, say=say)

    @app.event("message")
    def handle_message_events(event, say):
        handlers.direct_message(event=event, say=say)

    @app.error
    def handle_errors(error, body):
        logger.error("Slack app error: %r", error)

    logger.info("Slack commands, views, actions and events registered")
