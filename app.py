import logging
import signal
import sys
from typing import Optional

from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler

from analysis import Analyst
from commands import TrackerHandlers, register_handlers
from config import Settings, load_settings
from database import Database
from digest import WeeklyDigest
from directory import SlackDirectory
from errors import ConfigError
from log_setup import configure_logging
from projects import ProjectService
from server import create_server
from users import UserService

logger = logging.getLogger(__name__)


class ProjectTrackerBot:
    """Wires the services, the Bolt app, the digest scheduler and the HTTP server."""

    def __init__(
        self,
        settings: Settings,
        slack_app: Optional[App] = None,
        db: Optional[Database] = None,
        analyst: Optional[Analyst] = None,
    ) -> None:
        self.settings = settings
        self.db = db or Database(settings.database_path)
        self.analyst = analyst or Analyst(api_key=settings.openai_api_key, model=settings.openai_model)
        if not self.analyst.enabled:
            logger.warning("OPENAI_API_KEY not set; AI analysis will use fallbacks")

        self.users = UserService(self.db)
        self.projects = ProjectService(self.db, analyst=self.analyst)

        # -- Slack App --
        self.app = slack_app or App(
            token=settings.slack_bot_token,
            signing_secret=settings.slack_signing_secret,
        )
        self.directory = SlackDirectory(self.app.client)
        self.handlers = TrackerHandlers(self.projects, self.users, self.directory, analyst=self.analyst)
        register_handlers(self.app, self.handlers)

        self.digest = WeeklyDigest(
            self.app.client,
            self.projects,
            self.analyst,
            settings.general_channel_id,
            tz=settings.digest_timezone,
        )
        self.http = create_server(self)

        self.socket_handler: Optional[SocketModeHandler] = None
        self.is_running = False
        self._stopping = False

    def slack_status(self) -> dict:
        return {
            "is_running": self.is_running,
            "digest": self.digest.status(),
        }

    def trigger_digest(self) -> bool:
        return self.digest.generate_and_send()

    def start(self) -> None:
        logger.info("🚀 Starting Project Tracker Bot (%s)", self.settings.app_env)
        self.db.open()

        self.socket_handler = SocketModeHandler(self.app, self.settings.slack_app_token)
        self.socket_handler.connect()
        self.is_running = True
        logger.info("⚡️ Slack app connected over socket mode")

        if self.settings.general_channel_id:
            self.digest.schedule()
        else:
            logger.warning("GENERAL_CHANNEL_ID not set; weekly digest not scheduled")

        logger.info("🌐 HTTP server listening on port %d", self.settings.port)
        self.http.run(host="0.0.0.0", port=self.settings.port, use_reloader=False)

    def stop(self) -> None:
        logger.info("🛑 Stopping Project Tracker Bot")
        self.digest.stop()
        if self.socket_handler is not None:
            try:
                self.socket_handler.close()
            except Exception as e:
                logger.error("Error closing socket mode connection: %r", e)
            self.socket_handler = None
        self.is_running = False
        self.db.close()
        logger.info("✅ Project Tracker Bot stopped")

    def handle_signal(self, signum, frame) -> None:
        name = signal.Signals(signum).name
        if self._stopping:
            logger.warning("%s received again; forcing exit", name)
            sys.exit(1)
        self._stopping = True
        logger.info("%s received; shutting down", name)
        self.stop()
        sys.exit(0)

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self.handle_signal)
        signal.signal(signal.SIGTERM, self.handle_signal)


def main() -> int:
    try:
        settings = load_settings()
    except ConfigError as e:
        configure_logging()
        logger.error("%s", e)
        return 1

    configure_logging(settings.log_level)
    bot = ProjectTrackerBot(settings)
    bot.install_signal_handlers()
    try:
        bot.start()
    except Exception:
        logger.exception("Failed to start Project Tracker Bot")
        bot.stop()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
