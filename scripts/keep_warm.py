"""Ping the bot's /health endpoint every 10 minutes so free-tier hosts don't idle it."""
import logging
import os
import sys
import time

import requests
from dotenv import load_dotenv

from log_setup import configure_logging

logger = logging.getLogger("keep_warm")

PING_INTERVAL_SECONDS = 10 * 60


def ping(base_url: str) -> bool:
    try:
        r = requests.get(f"{base_url.rstrip('/')}/health", timeout=10)
        r.raise_for_status()
        status = r.json().get("status")
    except (requests.RequestException, ValueError) as e:
        logger.warning("Keep-warm ping failed: %r", e)
        return False
    logger.info("Keep-warm ping ok: %s", status)
    return True


def main() -> int:
    load_dotenv()
    configure_logging()
    base_url = os.getenv("APP_URL", "")
    if not base_url:
        logger.error("APP_URL missing")
        return 1

    while True:
        ping(base_url)
        time.sleep(PING_INTERVAL_SECONDS)


if __name__ == "__main__":
    sys.exit(main())
