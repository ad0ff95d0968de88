import logging
import sqlite3
from datetime import datetime
from typing import Dict, List, Optional

from database import Database
from errors import NotFoundError, ValidationError
from models import ACTIVE_STATUSES, User

logger = logging.getLogger(__name__)

USER_FIELDS = ("name", "email", "role")


def row_to_user(row: sqlite3.Row, prefix: str = "") -> Optional[User]:
    if row[f"{prefix}id"] is None:
        return None
    created = row[f"{prefix}created_at"]
    return User(
        id=row[f"{prefix}id"],
        slack_user_id=row[f"{prefix}slack_user_id"],
        name=row[f"{prefix}name"],
        email=row[f"{prefix}email"],
        role=row[f"{prefix}role"],
        created_at=datetime.fromisoformat(created) if created else None,
    )


class UserService:
    def __init__(self, db: Database) -> None:
        self.db = db

    def find_or_create_user(
        self,
        slack_user_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: str = "member",
    ) -> User:
        user = self.get_user_by_slack_id(slack_user_id)
        if user:
            return user

        self.db.execute(
            "INSERT OR IGNORE INTO users (slack_user_id, name, email, role, created_at) VALUES (?, ?, ?, ?, ?)",
            (slack_user_id, name or "Unknown User", email, role, self.db.now()),
        )
        user = self.get_user_by_slack_id(slack_user_id)
        logger.info("New user created: id=%s slack_user_id=%s", user.id, slack_user_id)
        return user

    def get_user_by_slack_id(self, slack_user_id: str) -> Optional[User]:
        row = self.db.fetch_one("SELECT * FROM users WHERE slack_user_id = ?", (slack_user_id,))
        return row_to_user(row) if row else None

    def get_user(self, user_id: int) -> Optional[User]:
        row = self.db.fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        return row_to_user(row) if row else None

    def get_all_users(self) -> List[User]:
        rows = self.db.fetch_all("SELECT * FROM users ORDER BY name COLLATE NOCASE ASC")
        return [row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> User:
        unknown = set(fields) - set(USER_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown user fields: {', '.join(sorted(unknown))}")
        if fields:
            assignments = ", ".join(f"{k} = ?" for k in fields)
            self.db.execute(f"UPDATE users SET {assignments} WHERE id = ?", (*fields.values(), user_id))

        user = self.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_user_stats(self, user_id: int) -> Dict[str, object]:
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")

        statuses = [r["status"] for r in self.db.fetch_all(
            "SELECT status FROM projects WHERE assigned_to = ?", (user_id,)
        )]
        updates = self.db.fetch_one(
            "SELECT COUNT(*) AS n FROM project_updates WHERE user_id = ?", (user_id,)
        )["n"]

        return {
            "user": user,
            "stats": {
                "total_projects": len(statuses),
                "active_projects": sum(1 for s in statuses if s in ACTIVE_STATUSES),
                "completed_projects": sum(1 for s in statuses if s == "COMPLETED"),
                "total_updates": updates,
            },
        }
