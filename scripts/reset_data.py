"""Wipe every project, update and user from the tracker database."""
import logging
import sys

from config import load_settings
from database import Database
from errors import ConfigError
from log_setup import configure_logging

logger = logging.getLogger("reset_data")


def main() -> int:
    configure_logging()
    try:
        settings = load_settings()
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    print("⚠️  This will delete ALL projects, updates and users.")
    answer = input("Type 'yes' to continue: ").strip().lower()
    if answer != "yes":
        print("Aborted.")
        return 0

    with Database(settings.database_path) as db:
        counts = db.reset_all()

    print(
        f"✅ Deleted {counts['updates']} updates, "
        f"{counts['projects']} projects, {counts['users']} users."
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
