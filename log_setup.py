import logging
import sys
from typing import Optional, TextIO

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"


def configure_logging(level: str = "INFO", stream: Optional[TextIO] = None) -> logging.Logger:
    """
    One stream handler on the root logger, so Slack Bolt, APScheduler and our
    own module loggers all share the same format.
    """
    resolved = logging.getLevelName((level or "INFO").upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    root = logging.getLogger()
    root.setLevel(resolved)
    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    # apscheduler logs every job run at INFO
    logging.getLogger("apscheduler").setLevel(max(resolved, logging.WARNING))
    return root
