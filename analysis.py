import json
import logging
from typing import Dict, List, Optional

from openai import OpenAI

from models import FALLBACK_ANALYSIS, Project, ProjectUpdate, status_label
from retry import RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

ANALYST_SYSTEM_PROMPT = (
    "You are a project management assistant. Analyze project updates and provide "
    "insights about risks and opportunities. Always respond with valid JSON."
)

DIGEST_SYSTEM_PROMPT = (
    "You are a project management assistant creating weekly digests for a team. "
    "Be concise, professional, and focus on actionable insights."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are a project management assistant. Summarize a single project's health "
    "in two or three sentences for a busy team lead."
)


def _strip_code_fence(text: str) -> str:
    t = text.strip()
    if t.startswith("```"):
        t = t.split("\n", 1)[1] if "\n" in t else ""
        if t.rstrip().endswith("```"):
            t = t.rstrip()[:-3]
    return t.strip()


def parse_analysis(raw: str) -> Dict[str, object]:
    data = json.loads(_strip_code_fence(raw))
    if not isinstance(data, dict):
        raise ValueError("analysis reply is not a JSON object")

    def as_list(value) -> List[str]:
        if not value:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value if v]

    return {
        "analysis": str(data.get("analysis") or "").strip() or FALLBACK_ANALYSIS,
        "risks": as_list(data.get("risks")),
        "opportunities": as_list(data.get("opportunities")),
    }


def fallback_digest(projects: List[Project], updates: List[ProjectUpdate]) -> str:
    return (
        "📊 *Weekly Project Digest*\n\n"
        f"Active Projects: {len(projects)}\n"
        f"Recent Updates: {len(updates)}\n\n"
        "_AI analysis temporarily unavailable. Please check individual projects for detailed status._"
    )


def fallback_summary(project: Project) -> str:
    n = len(project.updates)
    lead = project.assignee.name if project.assignee else "no project lead"
    return (
        f"{project.name} for {project.client_name} is {status_label(project.status).lower()} "
        f"with {lead} and {n} recorded update{'s' if n != 1 else ''}."
    )


class Analyst:
    """
    OpenAI-backed analysis. Every public method degrades to a fallback instead
    of raising, so a flaky completion never blocks a Slack reply.
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "gpt-4.1-mini",
        client: Optional[OpenAI] = None,
        retry: Optional[RetryConfig] = None,
        sleep=None,
    ) -> None:
        self.model = model
        self.client = client or (OpenAI(api_key=api_key) if api_key else None)
        self.retry = retry or RetryConfig(max_retries=2, base_delay=1.0, max_delay=5.0, operation="openai completion")
        self._sleep = sleep

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _complete(self, system: str, user_text: str, max_tokens: int, temperature: float) -> str:
        def call():
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user_text},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
            )
            return (resp.choices[0].message.content or "").strip()

        kwargs = {"sleep": self._sleep} if self._sleep else {}
        return retry_with_backoff(call, self.retry, **kwargs)

    def analyze_project_update(self, content: str, project: Project) -> Dict[str, object]:
        fallback = {"analysis": FALLBACK_ANALYSIS, "risks": [], "opportunities": []}
        if not self.enabled:
            return fallback

        prompt = f"""
Analyze the following project update and provide insights:

Project Context:
- Name: {project.name}
- Client: {project.client_name}
- Status: {status_label(project.status)}
- Description: {project.description or 'No description provided'}

Update Content:
{content}

Please provide:
1. A brief analysis of the update (2-3 sentences)
2. Potential risks identified (if any)
3. Opportunities noted (if any)

Format your response as JSON with the following structure:
{{
  "analysis": "Brief analysis here",
  "risks": ["risk1", "risk2"],
  "opportunities": ["opportunity1", "opportunity2"]
}}
""".strip()

        try:
            result = parse_analysis(self._complete(ANALYST_SYSTEM_PROMPT, prompt, 500, 0.3))
        except Exception as e:
            logger.error("OpenAI analysis failed for project %s: %r", project.id, e)
            return fallback

        logger.info(
            "OpenAI analysis completed: project=%s risks=%d opportunities=%d",
            project.id, len(result["risks"]), len(result["opportunities"]),
        )
        return result

    def generate_weekly_digest(self, projects: List[Project], updates: List[ProjectUpdate]) -> str:
        if not self.enabled:
            return fallback_digest(projects, updates)

        project_lines = "\n".join(
            f"- {p.name} ({p.client_name}) - Status: {status_label(p.status)}" for p in projects
        )
        update_lines = "\n".join(
            f"- {u.project.name if u.project else u.project_id}: {u.content[:100]}..." for u in updates
        )
        prompt = f"""
Generate a weekly project digest based on the following data:

Active Projects ({len(projects)}):
{project_lines or '- none'}

Recent Updates ({len(updates)}):
{update_lines or '- none'}

Create a concise weekly digest that includes:
1. Overall project portfolio status
2. Key highlights and achievements
3. Areas requiring attention
4. Upcoming deadlines (if any)

Keep it professional and actionable, suitable for a team channel.
""".strip()

        try:
            digest = self._complete(DIGEST_SYSTEM_PROMPT, prompt, 800, 0.4)
        except Exception as e:
            logger.error("Weekly digest generation failed: %r", e)
            return fallback_digest(projects, updates)

        if not digest:
            return fallback_digest(projects, updates)
        logger.info("Weekly digest generated: projects=%d updates=%d", len(projects), len(updates))
        return digest

    def generate_project_detail_summary(self, project: Project) -> str:
        if not self.enabled:
            return fallback_summary(project)

        update_lines = "\n".join(
            f"- {u.created_at:%Y-%m-%d}: {u.content[:200]}" for u in project.updates[:5] if u.created_at
        )
        prompt = (
            f"Project: {project.name}\n"
            f"Client: {project.client_name}\n"
            f"Status: {status_label(project.status)}\n"
            f"Deadline: {project.deadline.isoformat() if project.deadline else 'none'}\n"
            f"Description: {project.description or 'No description provided'}\n\n"
            f"Latest updates:\n{update_lines or '- none yet'}\n\n"
            "Give a short summary of where this project stands and what needs attention next."
        )

        try:
            summary = self._complete(SUMMARY_SYSTEM_PROMPT, prompt, 200, 0.3)
        except Exception as e:
            logger.error("Project summary failed for project %s: %r", project.id, e)
            return fallback_summary(project)
        return summary or fallback_summary(project)
