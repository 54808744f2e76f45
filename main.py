"""
Task Tracker — Entry Point.

Single entry point: `python main.py` starts the Telegram bot.
"""

from task_tracker.bot.telegram_bot import main

if __name__ == "__main__":
    main()
