"""
Telegram bot front-end.
"""

from .pending import PendingInput, PendingInputs
from .telegram_bot_service import TelegramBotService, build_main_menu, error_message

__all__ = [
    "PendingInput",
    "PendingInputs",
    "TelegramBotService",
    "build_main_menu",
    "error_message",
]
