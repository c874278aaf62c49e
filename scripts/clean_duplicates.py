"""
Remove duplicated chat messages from MongoDB.
A message is a duplicate when an earlier message of the same conversation has the same
role and content and was created in the same second. Each cleaned conversation gets its
messageCount reset.
"""

from loguru import logger

from leobot.config import Settings
from leobot.conversations import ConversationStore
from leobot.database import CONVERSATIONS, close_client, get_database


def main():
    settings = Settings.from_env()
    db = get_database(settings.mongodb_uri, settings.mongodb_db)
    store = ConversationStore(db)

    conversations = list(db[CONVERSATIONS].find({}))
    total = len(conversations)
    logger.info(f"Checking {total} conversations in {settings.mongodb_db}...")

    total_removed = 0
    try:
        for i, conversation in enumerate(conversations):
            removed = store.remove_duplicates(conversation)
            label = f"[{i + 1}/{total}] {conversation['_id']}"
            if removed:
                logger.info(f"{label}: removed {removed} duplicates")
                total_removed += removed
            else:
                logger.debug(f"{label}: no duplicates")
    finally:
        close_client()

    logger.success(f"Done! Removed {total_removed} duplicated messages")


if __name__ == "__main__":
    main()
