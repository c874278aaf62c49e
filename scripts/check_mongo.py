"""
Check the MongoDB connection configured in the environment and list the collections
LeoBot uses.
"""

import sys

from loguru import logger

from leobot.config import Settings
from leobot.database import close_client, get_database, ping


def main() -> int:
    settings = Settings.from_env()
    db = get_database(settings.mongodb_uri, settings.mongodb_db)
    try:
        if not ping(db):
            logger.error(f"Could not reach MongoDB at {settings.mongodb_uri}")
            return 1
        logger.success(f"Connected to MongoDB, database '{settings.mongodb_db}'")
        for name in sorted(db.list_collection_names()):
            logger.info(f"  {name}: {db[name].estimated_document_count()} documents")
    finally:
        close_client()
    return 0


if __name__ == "__main__":
    sys.exit(main())
