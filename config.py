import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from errors import ConfigError

REQUIRED_ENV_VARS = [
    "SLACK_BOT_TOKEN",
    "SLACK_SIGNING_SECRET",
    "SLACK_APP_TOKEN",
    "DATABASE_URL",
]

DEFAULT_OPENAI_MODEL = "gpt-4.1-mini"


@dataclass(frozen=True)
class Settings:
    slack_bot_token: str
    slack_signing_secret: str
    slack_app_token: str
    database_path: str
    openai_api_key: str = ""
    openai_model: str = DEFAULT_OPENAI_MODEL
    general_channel_id: str = ""
    digest_timezone: str = "America/New_York"
    port: int = 3000
    app_env: str = "development"
    log_level: str = "INFO"

    @property
    def ai_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


def database_path_from_url(url: str) -> str:
    # accepts "sqlite:///path/to.db" or a bare path
    url = (url or "").strip()
    if url.startswith("sqlite:///"):
        return url[len("sqlite:///"):] or ":memory:"
    return url


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    if env is None:
        load_dotenv()
        env = os.environ

    def get(name: str, default: str = "") -> str:
        return (env.get(name) or default).strip()

    missing = [name for name in REQUIRED_ENV_VARS if not get(name)]
    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    port_raw = get("PORT", "3000")
    try:
        port = int(port_raw)
    except ValueError:
        raise ConfigError(f"PORT must be an integer, got {port_raw!r}")

    return Settings(
        slack_bot_token=get("SLACK_BOT_TOKEN"),
        slack_signing_secret=get("SLACK_SIGNING_SECRET"),
        slack_app_token=get("SLACK_APP_TOKEN"),
        database_path=database_path_from_url(get("DATABASE_URL")),
        openai_api_key=get("OPENAI_API_KEY"),
        openai_model=get("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
        general_channel_id=get("GENERAL_CHANNEL_ID"),
        digest_timezone=get("DIGEST_TIMEZONE", "America/New_York"),
        port=port,
        app_env=get("APP_ENV", "development"),
        log_level=get("LOG_LEVEL", "INFO"),
    )
