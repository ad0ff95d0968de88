import logging
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from apscheduler.schedulers.background import BackgroundScheduler

import blocks
from models import Project
from projects import ProjectService

logger = logging.getLogger(__name__)

DIGEST_JOB_ID = "weekly_digest"
DEADLINE_WINDOW_DAYS = 14

FALLBACK_DIGEST_TEXT = (
    "📊 *Weekly Project Digest*\n\n"
    "Sorry, there was an issue generating the automated digest. "
    "Please use `/project-list` to view current project status."
)


def upcoming_deadlines(
    projects: List[Project],
    today: date,
    days: int = DEADLINE_WINDOW_DAYS,
) -> List[Tuple[Project, int]]:
    """(project, days until deadline) for deadlines within the window, soonest first."""
    out = []
    for p in projects:
        if not p.deadline:
            continue
        delta = (p.deadline - today).days
        if 0 <= delta <= days:
            out.append((p, delta))
    out.sort(key=lambda x: x[0].deadline)
    return out


class WeeklyDigest:
    """Monday morning portfolio digest, posted to the general channel."""

    def __init__(
        self,
        client,
        projects: ProjectService,
        analyst,
        channel_id: str,
        tz: str = "America/New_York",
        scheduler: Optional[BackgroundScheduler] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.client = client
        self.projects = projects
        self.analyst = analyst
        self.channel_id = channel_id
        self.tz = tz
        self.scheduler = scheduler or BackgroundScheduler(timezone=tz)
        self.clock = clock
        self.is_scheduled = False

    def schedule(self) -> None:
        if self.is_scheduled:
            logger.warning("Weekly digest already scheduled")
            return

        # every Monday at 9:00 in the digest timezone
        self.scheduler.add_job(
            self.generate_and_send,
            trigger="cron",
            day_of_week="mon",
            hour=9,
            minute=0,
            timezone=self.tz,
            id=DIGEST_JOB_ID,
            replace_existing=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()
        self.is_scheduled = True
        logger.info("Weekly digest scheduled for Mondays at 9:00 AM (%s)", self.tz)

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.is_scheduled = False
        logger.info("Weekly digest scheduling stopped")

    def status(self) -> Dict[str, object]:
        next_run = None
        if self.is_scheduled:
            job = self.scheduler.get_job(DIGEST_JOB_ID)
            if job is not None and job.next_run_time is not None:
                next_run = job.next_run_time.isoformat()
        return {
            "is_scheduled": self.is_scheduled,
            "next_run": next_run or ("Next Monday at 9:00 AM" if self.is_scheduled else "Not scheduled"),
        }

    def today(self) -> date:
        """Current date in the digest timezone."""
        return self.clock().astimezone(ZoneInfo(self.tz)).date()

    def build_blocks(self) -> List[dict]:
        active = self.projects.get_active_projects()
        recent = self.projects.get_recent_updates(days=7, limit=20)
        stats = self.projects.get_project_stats()
        ai_digest = self.analyst.generate_weekly_digest(active, recent) if self.analyst else ""
        deadlines = upcoming_deadlines(active, self.today())
        return blocks.digest_blocks(stats, active, recent, ai_digest, deadlines)

    def generate_and_send(self) -> bool:
        """Returns True when the digest itself (not the fallback) was posted."""
        if not self.channel_id:
            logger.error("GENERAL_CHANNEL_ID not configured; weekly digest skipped")
            return False

        logger.info("Starting weekly digest generation")
        try:
            digest_blocks = self.build_blocks()
            self.client.chat_postMessage(
                channel=self.channel_id,
                text="📊 Weekly Project Digest",
                blocks=digest_blocks,
            )
        except Exception as e:
            logger.error("Error generating weekly digest: %r", e)
            try:
                self.client.chat_postMessage(channel=self.channel_id, text=FALLBACK_DIGEST_TEXT)
            except Exception as fallback_error:
                logger.error("Error sending fallback digest message: %r", fallback_error)
            return False

        logger.info("Weekly digest sent to %s", self.channel_id)
        return True
