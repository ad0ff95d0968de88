"""
Block Kit builders. Everything here is a pure function of its arguments so the
Slack handlers stay thin and the layouts can be tested without a workspace.
"""
import json
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from models import FALLBACK_ANALYSIS, STATUS_EMOJIS, STATUSES, Project, ProjectUpdate, status_label

NEW_PROJECT_CALLBACK = "project_new_modal"
UPDATE_PROJECT_CALLBACK = "project_update_modal"

ALL_CLIENTS = "__all__"
NO_STATUS_CHANGE = "no_change"
UNASSIGNED = "unassigned"

MAX_SELECT_OPTIONS = 100  # Slack's limit for static_select
SHORT_CONTENT = 100


# ---- primitives ----

def plain(text: str) -> Dict[str, Any]:
    return {"type": "plain_text", "text": text, "emoji": True}


def mrkdwn(text: str) -> Dict[str, Any]:
    return {"type": "mrkdwn", "text": text}


def section(text: str, **extra) -> Dict[str, Any]:
    block = {"type": "section", "text": mrkdwn(text)}
    block.update(extra)
    return block


def fields_section(*texts: str) -> Dict[str, Any]:
    return {"type": "section", "fields": [mrkdwn(t) for t in texts]}


def divider() -> Dict[str, Any]:
    return {"type": "divider"}


def context(text: str) -> Dict[str, Any]:
    return {"type": "context", "elements": [mrkdwn(text)]}


def button(text: str, action_id: str, value: Optional[str] = None, style: Optional[str] = None) -> Dict[str, Any]:
    b = {"type": "button", "text": plain(text), "action_id": action_id}
    if value is not None:
        b["value"] = value
    if style:
        b["style"] = style
    return b


def actions(*elements: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "actions", "elements": list(elements)}


def option(text: str, value: str) -> Dict[str, Any]:
    # option text is capped at 75 chars by Slack
    return {"text": plain(text[:75]), "value": value}


def fmt_date(value: Optional[date]) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime("%b %d, %Y")


def shorten(text: str, limit: int = SHORT_CONTENT) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _status_options(include_no_change: bool = False, statuses: Sequence[str] = STATUSES) -> List[Dict[str, Any]]:
    opts = [option("Keep current status", NO_STATUS_CHANGE)] if include_no_change else []
    return opts + [option(status_label(s), s) for s in statuses]


# ---- modals ----

def project_new_modal(assignees: List[Tuple[str, str]]) -> Dict[str, Any]:
    """`assignees` is a list of (label, value) pairs."""
    assignee_options = [option("Unassigned", UNASSIGNED)] + [
        option(label, value) for label, value in assignees
    ][: MAX_SELECT_OPTIONS - 1]

    return {
        "type": "modal",
        "callback_id": NEW_PROJECT_CALLBACK,
        "title": plain("Create New Project"),
        "submit": plain("Create Project"),
        "close": plain("Cancel"),
        "blocks": [
            {
                "type": "input",
                "block_id": "project_name",
                "element": {
                    "type": "plain_text_input",
                    "action_id": "name_input",
                    "placeholder": plain("Enter project name"),
                    "max_length": 100,
                },
                "label": plain("Project Name"),
            },
            {
                "type": "input",
                "block_id": "client_name",
                "element": {
                    "type": "plain_text_input",
                    "action_id": "client_input",
                    "placeholder": plain("Enter client name"),
                    "max_length": 100,
                },
                "label": plain("Client Name"),
            },
            {
                "type": "input",
                "block_id": "project_description",
                "optional": True,
                "element": {
                    "type": "plain_text_input",
                    "action_id": "description_input",
                    "multiline": True,
                    "placeholder": plain("Enter project description (optional)"),
                    "max_length": 500,
                },
                "label": plain("Description"),
            },
            {
                "type": "input",
                "block_id": "project_status",
                "element": {
                    "type": "static_select",
                    "action_id": "status_select",
                    "placeholder": plain("Select project status"),
                    "options": _status_options(statuses=["PLANNING", "IN_PROGRESS", "ON_HOLD"]),
                    "initial_option": option(status_label("PLANNING"), "PLANNING"),
                },
                "label": plain("Status"),
            },
            {
                "type": "input",
                "block_id": "assigned_to",
                "optional": True,
                "element": {
                    "type": "static_select",
                    "action_id": "assignee_select",
                    "placeholder": plain("Select assignee"),
                    "options": assignee_options,
                },
                "label": plain("Assigned To"),
            },
            {
                "type": "input",
                "block_id": "project_deadline",
                "optional": True,
                "element": {
                    "type": "datepicker",
                    "action_id": "deadline_picker",
                    "placeholder": plain("Select deadline"),
                },
                "label": plain("Deadline"),
            },
        ],
    }


def read_new_project_state(view: Dict[str, Any]) -> Dict[str, Any]:
    values = view["state"]["values"]

    def selected(block: str, action: str) -> Optional[str]:
        opt = ((values.get(block) or {}).get(action) or {}).get("selected_option") or {}
        return opt.get("value")

    assignee = selected("assigned_to", "assignee_select")
    return {
        "name": values["project_name"]["name_input"]["value"],
        "client_name": values["client_name"]["client_input"]["value"],
        "description": ((values.get("project_description") or {}).get("description_input") or {}).get("value"),
        "status": selected("project_status", "status_select") or "PLANNING",
        "assignee_slack_id": None if assignee in (None, UNASSIGNED) else assignee,
        "deadline": ((values.get("project_deadline") or {}).get("deadline_picker") or {}).get("selected_date"),
    }


def project_update_modal(
    projects: List[Project],
    clients: List[str],
    *,
    channel_id: str = "",
    selected_client: Optional[str] = None,
    content: Optional[str] = None,
    status: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Update form. Rebuilding it with the values read back from the previous
    view keeps what the user already typed or picked.
    """
    shown = projects
    note = None
    if selected_client:
        shown = [p for p in projects if p.client_name.lower() == selected_client.lower()]
        if not shown:
            shown = projects
            note = f"_No projects for {selected_client}; showing all projects._"

    client_options = [option("All clients", ALL_CLIENTS)] + [
        option(c, c) for c in clients
    ][: MAX_SELECT_OPTIONS - 1]
    client_select = {
        "type": "static_select",
        "action_id": "client_filter_dropdown",
        "placeholder": plain("Filter by client"),
        "options": client_options,
    }
    if selected_client:
        client_select["initial_option"] = option(selected_client, selected_client)

    project_options = [
        option(f"{p.name} ({p.client_name})", str(p.id)) for p in shown
    ][:MAX_SELECT_OPTIONS]

    content_element = {
        "type": "plain_text_input",
        "action_id": "content_input",
        "multiline": True,
        "placeholder": plain("Describe the progress, challenges, or any updates for this project..."),
        "max_length": 1000,
    }
    if content:
        content_element["initial_value"] = content

    status_value = status or NO_STATUS_CHANGE
    status_text = "Keep current status" if status_value == NO_STATUS_CHANGE else status_label(status_value)

    blocks: List[Dict[str, Any]] = [
        {
            "type": "section",
            "block_id": "client_filter",
            "text": mrkdwn("*Client*"),
            "accessory": client_select,
        },
    ]
    if note:
        blocks.append(context(note))
    blocks += [
        {
            "type": "input",
            "block_id": "project_select",
            "element": {
                "type": "static_select",
                "action_id": "project_dropdown",
                "placeholder": plain("Select a project to update"),
                "options": project_options,
            },
            "label": plain("Project"),
        },
        {
            "type": "input",
            "block_id": "update_content",
            "element": content_element,
            "label": plain("Update Details"),
        },
        {
            "type": "input",
            "block_id": "status_update",
            "optional": True,
            "element": {
                "type": "static_select",
                "action_id": "status_select",
                "placeholder": plain("Update project status (optional)"),
                "options": _status_options(include_no_change=True),
                "initial_option": option(status_text, status_value),
            },
            "label": plain("Status Change"),
        },
    ]

    return {
        "type": "modal",
        "callback_id": UPDATE_PROJECT_CALLBACK,
        "title": plain("Update Project"),
        "submit": plain("Add Update"),
        "close": plain("Cancel"),
        "private_metadata": json.dumps({"channel_id": channel_id, "client": selected_client or ""}),
        "blocks": blocks,
    }


def read_update_modal_state(view: Dict[str, Any]) -> Dict[str, Any]:
    values = (view.get("state") or {}).get("values") or {}

    def selected(block: str, action: str) -> Optional[str]:
        opt = ((values.get(block) or {}).get(action) or {}).get("selected_option") or {}
        return opt.get("value")

    try:
        meta = json.loads(view.get("private_metadata") or "{}")
    except ValueError:
        meta = {}

    client = selected("client_filter", "client_filter_dropdown") or meta.get("client") or None
    project_id = selected("project_select", "project_dropdown")
    return {
        "channel_id": meta.get("channel_id") or "",
        "client": None if client == ALL_CLIENTS else client,
        "project_id": int(project_id) if project_id else None,
        "content": ((values.get("update_content") or {}).get("content_input") or {}).get("value"),
        "status": selected("status_update", "status_select"),
    }


# ---- messages ----

def project_created_blocks(project: Project) -> List[Dict[str, Any]]:
    blocks = [
        section(f"✅ *Project \"{project.name}\" created successfully!*"),
        fields_section(
            f"*Client:*\n{project.client_name}",
            f"*Status:*\n{status_label(project.status)}",
            f"*Assigned To:*\n{project.assignee.name if project.assignee else 'Unassigned'}",
            f"*Deadline:*\n{fmt_date(project.deadline) or 'No deadline set'}",
        ),
    ]
    if project.description:
        blocks.append(section(f"*Description:*\n{project.description}"))
    return blocks


def update_added_blocks(
    project: Project,
    update: ProjectUpdate,
    new_status: Optional[str] = None,
) -> List[Dict[str, Any]]:
    blocks = [
        section(f"✅ *Update added to \"{project.name}\"*"),
        section(f"*Your Update:*\n{update.content}"),
    ]
    if new_status:
        blocks.append(section(f"*Status Updated:* {status_label(project.status)} → {status_label(new_status)}"))

    if has_real_analysis(update):
        blocks.append(section(f"*🤖 AI Analysis:*\n{update.ai_analysis}"))
        if update.risks_identified:
            blocks.append(section("*⚠️ Risks Identified:*\n" + "\n".join(f"• {r}" for r in update.risks_identified)))
        if update.opportunities_noted:
            blocks.append(section("*💡 Opportunities:*\n" + "\n".join(f"• {o}" for o in update.opportunities_noted)))
    return blocks


def update_announcement_blocks(author: str, project: Project, content: str) -> List[Dict[str, Any]]:
    return [
        section(f"📝 *{author}* added an update to *{project.name}* ({project.client_name})"),
        section(f"*Update:* {shorten(content, 150)}"),
    ]


def has_real_analysis(update: ProjectUpdate) -> bool:
    return bool(update.ai_analysis) and update.ai_analysis != FALLBACK_ANALYSIS


def project_list_blocks(
    projects: List[Project],
    stats: Dict[str, Any],
    *,
    filter_message: str = "",
    help_text: Optional[str] = None,
) -> List[Dict[str, Any]]:
    blocks = [
        section(
            f"📋 *Project Portfolio Overview{filter_message}*\n\n"
            f"*Total Projects:* {stats['total']} | *Active:* {stats['active']} | "
            f"*Completed:* {stats['by_status']['COMPLETED']}"
        ),
        divider(),
    ]

    by_status: Dict[str, List[Project]] = {s: [] for s in STATUSES}
    for p in projects:
        by_status.setdefault(p.status, []).append(p)

    for status, group in by_status.items():
        if not group:
            continue
        blocks.append(section(f"{STATUS_EMOJIS.get(status, '•')} *{status_label(status)} ({len(group)})*"))
        for p in group:
            lead = p.assignee.name if p.assignee else "No Project Lead"
            deadline = fmt_date(p.deadline) or "No deadline"
            last = f"Last update: {fmt_date(p.updates[0].created_at)}" if p.updates else "No updates yet"
            blocks.append(section(
                f"*{p.name}* ({p.client_name})\n👤 {lead} | 📅 {deadline}\n{last}",
                accessory=button("View Details", "view_project_details", value=str(p.id)),
            ))
            if p.description:
                blocks.append(context(f"_{shorten(p.description)}_"))
        blocks.append(divider())

    if blocks[-1]["type"] == "divider":
        blocks.pop()

    blocks += [
        divider(),
        actions(
            button("📊 View Statistics", "view_project_stats", style="primary"),
            button("➕ New Project", "create_new_project"),
        ),
    ]
    if help_text:
        blocks.append(context(help_text))
    return blocks


def project_detail_blocks(project: Project, summary: str) -> List[Dict[str, Any]]:
    blocks = [
        section(f"📋 *{project.name}*\n*Client:* {project.client_name}"),
        section(f"🤖 *AI Project Summary:*\n_{summary}_"),
        divider(),
        fields_section(
            f"*Status:*\n{status_label(project.status)}",
            f"*Project Lead:*\n{project.assignee.name if project.assignee else 'No Project Lead'}",
            f"*Deadline:*\n{fmt_date(project.deadline) or 'No deadline set'}",
            f"*Created:*\n{fmt_date(project.created_at)}",
        ),
    ]
    if project.description:
        blocks.append(section(f"*Description:*\n{project.description}"))

    if not project.updates:
        blocks.append(section("*Recent Updates:*\nNo updates yet"))
        return blocks

    blocks.append(section(f"*Recent Updates ({len(project.updates)}):*"))
    for u in project.updates[:3]:
        author = u.user.name if u.user else "Unknown"
        blocks.append(section(f"*{author}* - {fmt_date(u.created_at)}\n{u.content}"))
        if has_real_analysis(u):
            blocks.append(context(f"🤖 _{u.ai_analysis}_"))
    return blocks


def recent_update_line(u: ProjectUpdate) -> str:
    project_name = u.project.name if u.project else f"Project {u.project_id}"
    author = u.user.name if u.user else "Unknown"
    return f"*{project_name}* - {fmt_date(u.created_at)}\n{author}: {shorten(u.content)}"


def stats_blocks(stats: Dict[str, Any], recent: List[ProjectUpdate]) -> List[Dict[str, Any]]:
    by = stats["by_status"]
    blocks = [
        section("📊 *Project Portfolio Statistics*"),
        fields_section(
            f"*Total Projects:*\n{stats['total']}",
            f"*Active Projects:*\n{stats['active']}",
            f"*Planning:*\n{by['PLANNING']}",
            f"*In Progress:*\n{by['IN_PROGRESS']}",
            f"*On Hold:*\n{by['ON_HOLD']}",
            f"*Completed:*\n{by['COMPLETED']}",
        ),
    ]
    if recent:
        blocks += [divider(), section("*Recent Activity (Last 7 days):*")]
        blocks += [section(recent_update_line(u)) for u in recent]
    return blocks


def deadline_marker(days_until: int) -> str:
    if days_until <= 3:
        return "🚨"
    if days_until <= 7:
        return "⚠️"
    return "📅"


def digest_blocks(
    stats: Dict[str, Any],
    active_projects: List[Project],
    recent_updates: List[ProjectUpdate],
    ai_digest: str,
    deadlines: List[Tuple[Project, int]],
) -> List[Dict[str, Any]]:
    """`deadlines` holds (project, days until deadline), soonest first."""
    blocks = [
        section("📊 *Weekly Project Digest*"),
        section(
            f"*Portfolio Overview:* {stats['total']} total projects | {stats['active']} active | "
            f"{stats['by_status']['COMPLETED']} completed"
        ),
        divider(),
    ]

    if ai_digest:
        blocks += [section(f"*🤖 AI Summary:*\n{ai_digest}"), divider()]

    if active_projects:
        blocks.append(section(f"*🚀 Active Projects ({len(active_projects)}):*"))
        for status in ("PLANNING", "IN_PROGRESS"):
            group = [p for p in active_projects if p.status == status]
            if not group:
                continue
            lines = "\n".join(
                f"• {p.name} ({p.client_name})" + (f" - {p.assignee.name}" if p.assignee else "")
                for p in group
            )
            blocks.append(section(f"*{STATUS_EMOJIS[status]} {status_label(status)} ({len(group)}):*\n{lines}"))
        blocks.append(divider())

    if recent_updates:
        blocks.append(section("*📝 Recent Activity (Last 7 days):*"))
        blocks += [section(recent_update_line(u)) for u in recent_updates[:5]]
        if len(recent_updates) > 5:
            blocks.append(context(f"_... and {len(recent_updates) - 5} more updates_"))
        blocks.append(divider())

    if deadlines:
        blocks.append(section("*⏰ Upcoming Deadlines:*"))
        for p, days in deadlines:
            blocks.append(section(
                f"{deadline_marker(days)} *{p.name}* ({p.client_name}) - {fmt_date(p.deadline)} ({days} days)"
            ))
        blocks.append(divider())

    blocks.append(actions(
        button("📋 View All Projects", "view_all_projects_digest"),
        button("➕ New Project", "create_new_project_digest"),
    ))
    return blocks


COMMANDS_HELP = (
    "• `/project-new` - Create a new project\n"
    "• `/project-update` - Add an update to an existing project\n"
    "• `/project-list` - View all projects and their status"
)

MENTION_HELP = (
    "👋 Hi there! I'm your project management assistant. Here's what I can help you with:\n\n"
    f"*Available Commands:*\n{COMMANDS_HELP}\n\n"
    "*Features:*\n"
    "• 🤖 AI-powered project analysis\n"
    "• 📊 Weekly automated digests\n"
    "• ⏰ Deadline tracking\n"
    "• 📈 Project statistics\n\n"
    "Just use any of the commands above to get started!"
)


def dm_help_blocks() -> List[Dict[str, Any]]:
    return [
        section("👋 Hello! I'm your project management assistant. Here's what I can help you with:"),
        section(f"*Available Commands:*\n{COMMANDS_HELP}"),
        section(
            "*Quick Actions:*\nYou can also type simple messages like:\n"
            "• \"show projects\" or \"list projects\"\n• \"create project\"\n• \"project status\"\n• \"help\""
        ),
        actions(
            button("📋 View Projects", "dm_view_projects", style="primary"),
            button("➕ Create Project", "dm_create_project"),
        ),
    ]


def dm_create_blocks() -> List[Dict[str, Any]]:
    return [
        section("To create a new project, use the `/project-new` command, or click the button below:"),
        actions(button("➕ Create Project", "dm_create_project", style="primary")),
    ]


def dm_status_blocks() -> List[Dict[str, Any]]:
    return [
        section("To update a project or check status, use these commands:"),
        actions(
            button("📋 View Projects", "dm_view_projects"),
            button("📝 Update Project", "dm_update_project"),
        ),
    ]


def dm_unknown_blocks() -> List[Dict[str, Any]]:
    return [
        section("I didn't quite understand that. Type \"help\" to see what I can do, or use one of these commands:"),
        section(COMMANDS_HELP),
    ]
