"""
Telegram front-end of the referral program.
Uses aiogram v3: a single router, reply-keyboard menu, HTML messages.
"""

import asyncio
from typing import Any, Optional, Union

from aiogram import Bot, Dispatcher, F, Router
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.exceptions import (
    TelegramAPIError,
    TelegramBadRequest,
    TelegramForbiddenError,
    TelegramNetworkError,
    TelegramRetryAfter
)
from aiogram.filters import CommandObject, CommandStart
from aiogram.types import ErrorEvent, KeyboardButton, Message, ReplyKeyboardMarkup
from aiogram.utils.text_decorations import html_decoration
import structlog

from refledger.core.exceptions import (
    AlreadyInvitedError,
    InvalidWalletError,
    ReferralLedgerError,
    ReferrerNotFoundError,
    SelfReferralError,
)
from refledger.models import Referrer
from refledger.services.referral_service import ReferralService, referral_link
from refledger.utils.validation import WalletValidator
from . import texts
from .pending import PendingInput, PendingInputs

logger = structlog.get_logger(__name__)

_ERROR_TEXTS = {
    AlreadyInvitedError: texts.ALREADY_INVITED,
    ReferrerNotFoundError: texts.INVALID_CODE,
    SelfReferralError: texts.SELF_REFERRAL,
    InvalidWalletError: texts.WALLET_INVALID,
}


def error_message(exc: BaseException) -> str:
    """User-facing text for a failed action."""
    for cls in type(exc).__mro__:
        if cls in _ERROR_TEXTS:
            return _ERROR_TEXTS[cls]
    return texts.GENERIC_ERROR


def build_main_menu(has_wallet: bool) -> ReplyKeyboardMarkup:
    wallet_button = texts.BUTTON_CHANGE_WALLET if has_wallet else texts.BUTTON_CONNECT_WALLET
    return ReplyKeyboardMarkup(
        keyboard=[
            [KeyboardButton(text=texts.BUTTON_INVITE)],
            [KeyboardButton(text=texts.BUTTON_MY_REFERRALS)],
            [KeyboardButton(text=wallet_button)],
        ],
        resize_keyboard=True,
    )


def display_username(username: Optional[str]) -> str:
    return f"@{username}" if username else ""


def format_stats(referrer: Referrer) -> str:
    return texts.STATS.format(
        count=referrer.ref_count,
        pending=referrer.pending_payout,
        paid=referrer.paid_out,
        wallet=html_decoration.quote(referrer.wallet) if referrer.wallet else texts.WALLET_NOT_LINKED,
    )


class TelegramBotService:
    """Service for Telegram Bot operations using aiogram v3."""

    def __init__(
        self,
        referral_service: ReferralService,
        token: Optional[str] = None,
        bot: Optional[Bot] = None,
        pending: Optional[PendingInputs] = None,
        bot_username: str = "",
    ):
        if bot is None:
            bot = Bot(
                token=token,
                default=DefaultBotProperties(
                    parse_mode=ParseMode.HTML,
                    link_preview_is_disabled=True
                )
            )
        self.bot = bot
        self.referrals = referral_service
        self.pending = pending if pending is not None else PendingInputs()
        self.bot_username = bot_username

        self.dispatcher = Dispatcher()
        self.router = Router(name="referrals")
        self.dispatcher.include_router(self.router)
        self._register_handlers()

    def _register_handlers(self) -> None:
        self.router.message.register(self.on_start, CommandStart())
        self.router.message.register(self.on_text, F.text)
        self.router.errors.register(self.on_error)

    async def run_polling(self) -> None:
        """Resolve the bot username and poll until interrupted."""
        if not self.bot_username:
            me = await self.bot.me()
            self.bot_username = me.username or ""
        logger.info("Telegram bot polling started", bot_username=self.bot_username)
        await self.dispatcher.start_polling(self.bot)

    async def stop(self) -> None:
        await self.dispatcher.stop_polling()

    async def close(self) -> None:
        await self.bot.session.close()
        logger.info("Telegram bot session closed")

    async def send_message(
        self,
        chat_id: Union[int, str],
        message: str,
        reply_markup: Optional[Any] = None,
    ) -> bool:
        """
        Send a message to a Telegram chat.

        Returns:
            bool: True if sent successfully
        """
        try:
            await self.bot.send_message(chat_id=chat_id, text=message, reply_markup=reply_markup)
            logger.debug("Message sent successfully", chat_id=chat_id, message_length=len(message))
            return True

        except TelegramForbiddenError as e:
            logger.warning("Bot was blocked by user or chat", chat_id=chat_id, error=str(e))
            return False

        except TelegramBadRequest as e:
            logger.error("Bad request to Telegram API", chat_id=chat_id, error=str(e))
            return False

        except TelegramRetryAfter as e:
            logger.warning(
                "Rate limit hit, should retry after",
                chat_id=chat_id,
                retry_after=e.retry_after,
                error=str(e)
            )
            await asyncio.sleep(min(e.retry_after, 60))
            return False

        except TelegramNetworkError as e:
            logger.error("Network error sending message", chat_id=chat_id, error=str(e))
            return False

        except TelegramAPIError as e:
            logger.error(
                "Telegram API error",
                chat_id=chat_id,
                error=str(e),
                error_code=getattr(e, 'error_code', None)
            )
            return False

    async def main_menu_for(self, user_id: int) -> ReplyKeyboardMarkup:
        referrer = await self.referrals.get_referrer_by_id(user_id)
        return build_main_menu(bool(referrer and referrer.wallet))

    async def _reply_error(self, message: Message, exc: BaseException) -> None:
        await message.answer(
            error_message(exc),
            reply_markup=await self.main_menu_for(message.from_user.id)
        )

    # Handlers

    async def on_start(self, message: Message, command: CommandObject) -> None:
        user = message.from_user
        self.pending.clear(user.id)
        code = (command.args or "").strip()

        try:
            if code:
                await self.handle_referral_link(message, code)
            else:
                await self.handle_plain_start(message)
        except ReferralLedgerError as e:
            logger.info("Start failed", user_id=user.id, code=code, error_code=e.code)
            await self._reply_error(message, e)

    async def handle_plain_start(self, message: Message) -> None:
        user = message.from_user
        if not user.username:
            await message.answer(texts.USERNAME_REQUIRED)
            return

        referrer = await self.referrals.register(user.id, display_username(user.username))
        await message.answer(texts.WELCOME, reply_markup=build_main_menu(bool(referrer.wallet)))

    async def handle_referral_link(self, message: Message, code: str) -> None:
        user = message.from_user
        referrer = await self.referrals.bind_referral(user.id, code)

        await message.answer(texts.WELCOME)
        await self.notify_new_referral(referrer, user.id, user.username)

        if user.username:
            try:
                await self.referrals.register(user.id, display_username(user.username))
            except ReferralLedgerError as e:
                # The binding is stored; a later /start creates the missing row
                logger.error(
                    "Failed to register invited user",
                    user_id=user.id,
                    error=str(e),
                    error_code=e.code
                )
        await message.answer(texts.MENU_PROMPT, reply_markup=await self.main_menu_for(user.id))

    async def notify_new_referral(
        self,
        referrer: Referrer,
        user_id: int,
        username: Optional[str],
    ) -> bool:
        referral = html_decoration.quote(display_username(username)) if username else f"ID: {user_id}"
        text = texts.NEW_REFERRAL.format(
            referral=referral,
            count=referrer.ref_count,
            link=referral_link(self.bot_username, referrer.code),
        )
        return await self.send_message(referrer.id, text)

    async def on_text(self, message: Message) -> None:
        user = message.from_user
        text = message.text.strip()

        try:
            if user.id in self.pending:
                with self.pending.consume(user.id) as pending:
                    if text not in texts.MENU_BUTTONS and not text.startswith("/"):
                        await self.handle_wallet_input(message, text, pending)
                        return
                    logger.debug("Wallet input cancelled", user_id=user.id)

            await self.route_text(message, text)
        except ReferralLedgerError as e:
            logger.error("Action failed", user_id=user.id, error=str(e), error_code=e.code)
            await self._reply_error(message, e)

    async def route_text(self, message: Message, text: str) -> None:
        user = message.from_user
        if text == texts.BUTTON_INVITE:
            await self.handle_invite(message)
        elif text == texts.BUTTON_MY_REFERRALS:
            await self.handle_my_referrals(message)
        elif text in (texts.BUTTON_CONNECT_WALLET, texts.BUTTON_CHANGE_WALLET):
            await self.handle_connect_wallet(message)
        elif WalletValidator.is_valid_wallet(text):
            referrer = await self.referrals.get_referrer_by_id(user.id)
            if referrer is None or not referrer.wallet:
                await message.answer(texts.WALLET_DETECTED)
        else:
            await message.answer(texts.MENU_PROMPT, reply_markup=await self.main_menu_for(user.id))

    async def handle_invite(self, message: Message) -> None:
        user = message.from_user
        if not user.username:
            await message.answer(texts.USERNAME_REQUIRED)
            return

        referrer = await self.referrals.register(user.id, display_username(user.username))
        await message.answer(
            texts.INVITE.format(link=referral_link(self.bot_username, referrer.code)),
            reply_markup=build_main_menu(bool(referrer.wallet))
        )

    async def handle_my_referrals(self, message: Message) -> None:
        referrer = await self.referrals.get_referrer_by_id(message.from_user.id)
        if referrer is None:
            await message.answer(texts.NOT_REGISTERED)
            return
        await message.answer(format_stats(referrer), reply_markup=build_main_menu(bool(referrer.wallet)))

    async def handle_connect_wallet(self, message: Message) -> None:
        user = message.from_user
        referrer = await self.referrals.get_referrer_by_id(user.id)
        if referrer is None:
            await message.answer(texts.NOT_REGISTERED)
            return

        self.pending.mark(user.id)
        await message.answer(texts.WALLET_PROMPT)

    async def handle_wallet_input(self, message: Message, text: str, pending: PendingInput) -> None:
        try:
            referrer = await self.referrals.link_wallet(message.from_user.id, text)
        except InvalidWalletError:
            pending.keep()
            await message.answer(texts.WALLET_INVALID)
            return

        await message.answer(
            texts.WALLET_SAVED.format(wallet=html_decoration.quote(referrer.wallet)),
            reply_markup=build_main_menu(True)
        )

    async def on_error(self, event: ErrorEvent) -> bool:
        logger.error(
            "Unhandled error in bot handler",
            error=str(event.exception),
            error_type=type(event.exception).__name__,
            exc_info=event.exception
        )
        message = event.update.message
        if message is not None:
            await self.send_message(message.chat.id, texts.GENERIC_ERROR)
        return True
