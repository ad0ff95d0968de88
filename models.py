from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional

STATUSES = ["PLANNING", "IN_PROGRESS", "ON_HOLD", "COMPLETED", "CANCELLED"]
ACTIVE_STATUSES = ["PLANNING", "IN_PROGRESS"]

FALLBACK_ANALYSIS = "Unable to generate AI analysis at this time."

STATUS_LABELS = {
    "PLANNING": "Planning",
    "IN_PROGRESS": "In Progress",
    "ON_HOLD": "On Hold",
    "COMPLETED": "Completed",
    "CANCELLED": "Cancelled",
}

STATUS_EMOJIS = {
    "PLANNING": "📝",
    "IN_PROGRESS": "🚀",
    "ON_HOLD": "⏸️",
    "COMPLETED": "✅",
    "CANCELLED": "❌",
}


@dataclass
class User:
    id: int
    slack_user_id: str
    name: str
    email: Optional[str] = None
    role: str = "member"
    created_at: Optional[datetime] = None


@dataclass
class ProjectUpdate:
    id: int
    project_id: int
    user_id: int
    content: str
    ai_analysis: Optional[str] = None
    risks_identified: List[str] = field(default_factory=list)
    opportunities_noted: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    user: Optional[User] = None
    project: Optional["Project"] = None


@dataclass
class Project:
    id: int
    name: str
    client_name: str
    status: str = "PLANNING"
    description: Optional[str] = None
    assigned_to: Optional[int] = None
    deadline: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    assignee: Optional[User] = None
    updates: List[ProjectUpdate] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, status.replace("_", " ").title())
