"""
LeoBot - Book Discovery Chat Server
Serves the chat, book search, conversation and reading-list API.
"""

from loguru import logger

from leobot.app import create_app
from leobot.config import Settings

settings = Settings.from_env()
app = create_app(settings)


if __name__ == "__main__":
    logger.info(f"LeoBot API - listening on http://{settings.host}:{settings.port}")
    app.run(host=settings.host, debug=False, port=settings.port)
