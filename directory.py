import logging
from typing import Dict, List, Optional

from slack_sdk.errors import SlackApiError

logger = logging.getLogger(__name__)

CLIENT_CHANNEL_PREFIX = "client-"


def format_client_name(raw: str) -> str:
    """'acme-corp' -> 'Acme Corp'"""
    return " ".join(w[:1].upper() + w[1:] for w in raw.split("-") if w)


def client_from_channel_name(channel_name: str) -> Optional[str]:
    if not channel_name or not channel_name.startswith(CLIENT_CHANNEL_PREFIX):
        return None
    return format_client_name(channel_name[len(CLIENT_CHANNEL_PREFIX):]) or None


class SlackDirectory:
    """Read-only lookups against the workspace: client channels and people."""

    def __init__(self, client) -> None:
        self.client = client

    def _list_channels(self) -> List[dict]:
        resp = self.client.conversations_list(
            types="public_channel,private_channel",
            exclude_archived=True,
            limit=1000,
        )
        return resp.get("channels", []) or []

    def get_client_channels(self) -> List[Dict[str, str]]:
        try:
            chans = self._list_channels()
        except SlackApiError as e:
            logger.error("Slack API error fetching channels: %s", e.response.get("error"))
            return []

        out = []
        for c in chans:
            name = (c or {}).get("name") or ""
            client_name = client_from_channel_name(name)
            if not client_name:
                continue
            out.append({
                "name": name[len(CLIENT_CHANNEL_PREFIX):],
                "display_name": client_name,
                "channel_id": c.get("id"),
                "channel_name": name,
            })
        out.sort(key=lambda x: x["display_name"].lower())
        logger.info("Client channels fetched: %d", len(out))
        return out

    def get_workspace_users(self) -> List[Dict[str, object]]:
        try:
            resp = self.client.users_list(limit=1000)
        except SlackApiError as e:
            logger.error("Slack API error fetching users: %s", e.response.get("error"))
            return []

        users = []
        for m in resp.get("members", []) or []:
            if not m or m.get("deleted") or m.get("is_bot") or m.get("id") == "USLACKBOT":
                continue
            users.append({
                "id": m["id"],
                "name": m.get("real_name") or m.get("name"),
                "username": m.get("name"),
                "email": (m.get("profile") or {}).get("email"),
                "is_active": not m.get("is_restricted") and not m.get("is_ultra_restricted"),
            })
        users.sort(key=lambda u: (u["name"] or "").lower())
        return users

    def get_user_info(self, user_id: str) -> Optional[Dict[str, object]]:
        try:
            resp = self.client.users_info(user=user_id)
        except SlackApiError as e:
            logger.error("Slack API error fetching user %s: %s", user_id, e.response.get("error"))
            return None

        u = resp.get("user")
        if not u:
            return None
        return {
            "id": u["id"],
            "name": u.get("real_name") or u.get("name"),
            "username": u.get("name"),
            "email": (u.get("profile") or {}).get("email"),
            "is_active": not u.get("deleted") and not u.get("is_bot"),
        }

    def get_channel_name(self, channel_id: str) -> Optional[str]:
        try:
            info = self.client.conversations_info(channel=channel_id)
        except SlackApiError as e:
            logger.warning("Could not fetch channel info for %s: %s", channel_id, e.response.get("error"))
            return None
        return (info.get("channel") or {}).get("name")

    def search_channels(self, pattern: str) -> List[Dict[str, object]]:
        """Channels whose name contains `pattern`, case-insensitively."""
        try:
            chans = self._list_channels()
        except SlackApiError as e:
            logger.error("Slack API error searching channels: %s", e.response.get("error"))
            return []

        needle = pattern.lower()
        return [
            {
                "id": c.get("id"),
                "name": c.get("name"),
                "purpose": (c.get("purpose") or {}).get("value") or "",
                "member_count": c.get("num_members") or 0,
            }
            for c in chans
            if needle in (c.get("name") or "").lower()
        ]
