"""
Taskbot — Entry Point.

Single entry point: `python main.py` starts the Telegram bot and its
recurring task dispatch job.
"""

import logging

from taskbot.config import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from taskbot.bot.telegram_bot import main

if __name__ == "__main__":
    main()
