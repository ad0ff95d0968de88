import json
import logging
import sqlite3
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional

from database import Database
from errors import NotFoundError, ValidationError
from models import ACTIVE_STATUSES, STATUSES, Project, ProjectUpdate
from users import row_to_user

logger = logging.getLogger(__name__)

PROJECT_FIELDS = ("name", "client_name", "description", "status", "assigned_to", "deadline")

_PROJECT_SELECT = """
SELECT p.*,
       a.id AS a_id, a.slack_user_id AS a_slack_user_id, a.name AS a_name,
       a.email AS a_email, a.role AS a_role, a.created_at AS a_created_at
FROM projects p
LEFT JOIN users a ON a.id = p.assigned_to
"""

_UPDATE_SELECT = """
SELECT pu.*,
       u.id AS u_id, u.slack_user_id AS u_slack_user_id, u.name AS u_name,
       u.email AS u_email, u.role AS u_role, u.created_at AS u_created_at,
       p.name AS p_name, p.client_name AS p_client_name, p.status AS p_status
FROM project_updates pu
JOIN users u ON u.id = pu.user_id
JOIN projects p ON p.id = pu.project_id
"""


def _parse_deadline(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value)[:10]).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid deadline: {value!r}")


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _check_status(status: str) -> str:
    if status not in STATUSES:
        raise ValidationError(f"Invalid status: {status!r}")
    return status


def row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        client_name=row["client_name"],
        status=row["status"],
        description=row["description"],
        assigned_to=row["assigned_to"],
        deadline=date.fromisoformat(row["deadline"]) if row["deadline"] else None,
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        assignee=row_to_user(row, prefix="a_"),
    )


def row_to_update(row: sqlite3.Row) -> ProjectUpdate:
    return ProjectUpdate(
        id=row["id"],
        project_id=row["project_id"],
        user_id=row["user_id"],
        content=row["content"],
        ai_analysis=row["ai_analysis"],
        risks_identified=json.loads(row["risks_identified"] or "[]"),
        opportunities_noted=json.loads(row["opportunities_noted"] or "[]"),
        created_at=datetime.fromisoformat(row["created_at"]),
        user=row_to_user(row, prefix="u_"),
        project=Project(
            id=row["project_id"],
            name=row["p_name"],
            client_name=row["p_client_name"],
            status=row["p_status"],
        ),
    )


class ProjectService:
    def __init__(self, db: Database, analyst=None) -> None:
        self.db = db
        self.analyst = analyst

    # ---- writes ----

    def create_project(self, data: Dict[str, Any], creator_slack_id: Optional[str] = None) -> Project:
        name = (data.get("name") or "").strip()
        client_name = (data.get("client_name") or "").strip()
        if not name:
            raise ValidationError("Project name is required")
        if not client_name:
            raise ValidationError("Client name is required")

        status = _check_status(data.get("status") or "PLANNING")
        now = self.db.now()
        cur = self.db.execute(
            "INSERT INTO projects (name, client_name, description, status, assigned_to, deadline, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                name,
                client_name,
                data.get("description") or None,
                status,
                data.get("assigned_to") or None,
                _parse_deadline(data.get("deadline")),
                now,
                now,
            ),
        )
        project = self.get_project(cur.lastrowid)
        logger.info("Project created: id=%s name=%r created_by=%s", project.id, project.name, creator_slack_id)
        return project

    def update_project(self, project_id: int, **fields) -> Project:
        unknown = set(fields) - set(PROJECT_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown project fields: {', '.join(sorted(unknown))}")
        if "status" in fields:
            _check_status(fields["status"])
        if "deadline" in fields:
            fields["deadline"] = _parse_deadline(fields["deadline"])

        values = dict(fields, updated_at=self.db.now())
        assignments = ", ".join(f"{k} = ?" for k in values)
        cur = self.db.execute(
            f"UPDATE projects SET {assignments} WHERE id = ?", (*values.values(), project_id)
        )
        if cur.rowcount == 0:
            raise NotFoundError("Project not found")

        logger.info("Project updated: id=%s fields=%s", project_id, sorted(fields))
        return self.get_project(project_id, updates_limit=5)

    def add_project_update(self, project_id: int, user_id: int, content: str) -> ProjectUpdate:
        project = self.get_project(project_id)
        if not project:
            raise NotFoundError("Project not found")

        analysis = {"analysis": None, "risks": [], "opportunities": []}
        if self.analyst is not None:
            analysis = self.analyst.analyze_project_update(content, project)

        now = self.db.now()
        with self.db.transaction() as conn:
            cur = conn.execute(
                "INSERT INTO project_updates (project_id, user_id, content, ai_analysis, risks_identified, opportunities_noted, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    project_id,
                    user_id,
                    content,
                    analysis.get("analysis"),
                    json.dumps(analysis.get("risks") or []),
                    json.dumps(analysis.get("opportunities") or []),
                    now,
                ),
            )
            update_id = cur.lastrowid
            conn.execute("UPDATE projects SET updated_at = ? WHERE id = ?", (now, project_id))

        update = self.get_update(update_id)
        logger.info(
            "Project update added: id=%s project=%s user=%s has_ai_analysis=%s",
            update.id, project_id, user_id, bool(update.ai_analysis),
        )
        return update

    def delete_project(self, project_id: int) -> None:
        cur = self.db.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        if cur.rowcount == 0:
            raise NotFoundError("Project not found")
        logger.info("Project deleted: id=%s", project_id)

    # ---- reads ----

    def _attach_updates(self, projects: List[Project], limit: Optional[int]) -> List[Project]:
        for p in projects:
            p.updates = self.get_project_updates(p.id, limit=limit)
        return projects

    def get_project(self, project_id: int, updates_limit: Optional[int] = None) -> Optional[Project]:
        row = self.db.fetch_one(_PROJECT_SELECT + " WHERE p.id = ?", (project_id,))
        if not row:
            return None
        return self._attach_updates([row_to_project(row)], updates_limit)[0]

    def get_all_projects(
        self,
        status: Optional[str] = None,
        assigned_to: Optional[int] = None,
        client_name: Optional[str] = None,
    ) -> List[Project]:
        clauses, params = [], []
        if status:
            clauses.append("p.status = ?")
            params.append(status)
        if assigned_to:
            clauses.append("p.assigned_to = ?")
            params.append(assigned_to)
        if client_name:
            clauses.append("LOWER(p.client_name) LIKE ? ESCAPE '\\'")
            params.append(f"%{_escape_like(client_name.lower())}%")

        sql = _PROJECT_SELECT
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY p.updated_at DESC, p.id DESC"

        projects = [row_to_project(r) for r in self.db.fetch_all(sql, params)]
        return self._attach_updates(projects, 3)

    def get_active_projects(self) -> List[Project]:
        marks = ", ".join("?" for _ in ACTIVE_STATUSES)
        rows = self.db.fetch_all(
            _PROJECT_SELECT + f" WHERE p.status IN ({marks}) ORDER BY p.updated_at DESC, p.id DESC",
            ACTIVE_STATUSES,
        )
        return self._attach_updates([row_to_project(r) for r in rows], 3)

    def get_update(self, update_id: int) -> Optional[ProjectUpdate]:
        row = self.db.fetch_one(_UPDATE_SELECT + " WHERE pu.id = ?", (update_id,))
        return row_to_update(row) if row else None

    def get_project_updates(self, project_id: int, limit: Optional[int] = 10) -> List[ProjectUpdate]:
        sql = _UPDATE_SELECT + " WHERE pu.project_id = ? ORDER BY pu.created_at DESC, pu.id DESC"
        params: List[Any] = [project_id]
        if limit:
            sql += " LIMIT ?"
            params.append(limit)
        return [row_to_update(r) for r in self.db.fetch_all(sql, params)]

    def get_recent_updates(self, days: int = 7, limit: int = 20) -> List[ProjectUpdate]:
        since = (self.db.clock() - timedelta(days=days)).isoformat()
        rows = self.db.fetch_all(
            _UPDATE_SELECT + " WHERE pu.created_at >= ? ORDER BY pu.created_at DESC, pu.id DESC LIMIT ?",
            (since, limit),
        )
        return [row_to_update(r) for r in rows]

    def get_project_stats(self) -> Dict[str, Any]:
        rows = self.db.fetch_all("SELECT status, COUNT(*) AS n FROM projects GROUP BY status")
        counts = {r["status"]: r["n"] for r in rows}
        return stats_from_counts(counts)

    def get_unique_clients(self) -> List[str]:
        rows = self.db.fetch_all("SELECT DISTINCT client_name FROM projects ORDER BY client_name COLLATE NOCASE ASC")
        clients = [r["client_name"] for r in rows]
        logger.info("Unique clients fetched: %d", len(clients))
        return clients


def stats_from_counts(counts: Dict[str, int]) -> Dict[str, Any]:
    by_status = {s: counts.get(s, 0) for s in STATUSES}
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "active": sum(by_status[s] for s in ACTIVE_STATUSES),
    }


def stats_for_projects(projects: List[Project]) -> Dict[str, Any]:
    counts: Dict[str, int] = {}
    for p in projects:
        counts[p.status] = counts.get(p.status, 0) + 1
    return stats_from_counts(counts)
