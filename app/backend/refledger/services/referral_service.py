"""
Referral business logic used by the bot.

Reads go through the index cache; writes go to the spreadsheet first and
are then reflected in the cache.
"""

from typing import Optional

import structlog

from refledger.cache.index_cache import IndexCache
from refledger.core.exceptions import (
    AlreadyInvitedError,
    ReferralLedgerError,
    ReferrerNotFoundError,
    SelfReferralError,
    StoreError,
)
from refledger.models import Invited, Referrer, normalize_code
from refledger.sheets.tables import InvitedTable
from refledger.utils.validation import WalletValidator
from .code_generator import CodeGenerator
from .locks import KeyedLocks
from .referrer_repository import ReferrerRepository

logger = structlog.get_logger(__name__)


def referral_link(bot_username: str, code: str) -> str:
    return f"https://t.me/{bot_username}?start={code}"


class ReferralService:
    """Service for managing referrers and referral bindings."""

    def __init__(
        self,
        cache: IndexCache,
        referrers: ReferrerRepository,
        invited: InvitedTable,
        code_generator: CodeGenerator,
    ):
        self.cache = cache
        self.referrers = referrers
        self.invited = invited
        self.code_generator = code_generator
        self._invited_locks = KeyedLocks()

    async def get_referrer_by_id(self, user_id: int) -> Optional[Referrer]:
        return await self.cache.lookup_by_id(user_id)

    async def get_referrer_by_code(self, code: str) -> Optional[Referrer]:
        return await self.cache.lookup_by_code(code)

    async def get_invited_by_user_id(self, user_id: int) -> Optional[Invited]:
        return await self.cache.lookup_invited(user_id)

    async def create_referrer(self, user_id: int, username: str) -> Referrer:
        """
        Create a referrer with a fresh code.

        Returns the existing referrer if one is already indexed.

        Raises:
            CodeGenerationExhaustedError: if no unique code could be found
            StoreError: if the row could not be written
        """
        existing = await self.cache.lookup_by_id(user_id)
        if existing is not None:
            return existing

        code = await self.code_generator.generate_unique_code()
        try:
            referrer = await self.referrers.create(
                Referrer(id=user_id, username=username, code=code)
            )
        finally:
            self.code_generator.release(code)

        if referrer.code == code:
            logger.info("Created referrer", user_id=user_id, username=username, code=code)
        return referrer

    async def update_referrer(self, referrer: Referrer) -> Referrer:
        """
        Save the profile fields of referrer (username, code, wallet).

        The counters and balances are taken from the live row, so a stale
        copy never rolls back an accrual or a payout correction.

        Raises:
            RowNotFoundError: if the referrer has no row
        """
        def apply_profile(current: Referrer) -> None:
            current.username = referrer.username
            current.code = referrer.code
            current.wallet = referrer.wallet

        return await self.referrers.mutate(referrer.id, apply_profile)

    async def create_invited(self, user_id: int, ref_code: str) -> Invited:
        """
        Bind a user to a referral code, once.

        Raises:
            AlreadyInvitedError: if the user is already bound
        """
        async with self._invited_locks.row(user_id):
            existing = await self.cache.lookup_invited(user_id)
            if existing is not None:
                raise AlreadyInvitedError(user_id, existing.ref_code)

            record = Invited(user_id=user_id, ref_code=ref_code.strip())
            await self.invited.append(record)
            await self.cache.upsert_invited(record)

        logger.info("Created referral binding", user_id=user_id, ref_code=record.ref_code)
        return record.copy()

    async def increment_ref_count(self, ref_code: str) -> Referrer:
        referrer = await self.cache.lookup_by_code(ref_code)
        if referrer is None:
            raise ReferrerNotFoundError(ref_code)

        def bump(current: Referrer) -> None:
            current.ref_count += 1

        updated = await self.referrers.mutate(referrer.id, bump)
        logger.info("Referral count incremented", code=updated.code, ref_count=updated.ref_count)
        return updated

    async def register(self, user_id: int, username: str) -> Referrer:
        """Get or create the referrer of a user, refreshing a changed username."""
        existing = await self.cache.lookup_by_id(user_id)
        if existing is None:
            return await self.create_referrer(user_id, username)
        return await self.update_username_if_changed(existing, username)

    async def update_username_if_changed(self, referrer: Referrer, username: str) -> Referrer:
        """A failed write is logged and the old record returned."""
        if not username or referrer.username.strip() == username:
            return referrer

        logger.info("Updating username", user_id=referrer.id, old=referrer.username, new=username)

        def rename(current: Referrer) -> None:
            current.username = username

        try:
            return await self.referrers.mutate(referrer.id, rename)
        except ReferralLedgerError as e:
            logger.warning(
                "Failed to update username",
                user_id=referrer.id,
                error=str(e),
                error_code=e.code
            )
            return referrer

    async def bind_referral(self, user_id: int, ref_code: str) -> Referrer:
        """
        Attach a new user to the owner of ref_code.

        Returns:
            The referrer with its updated count

        Raises:
            AlreadyInvitedError: user already bound
            ReferrerNotFoundError: unknown code
            SelfReferralError: user used their own code
        """
        existing = await self.cache.lookup_invited(user_id)
        if existing is not None:
            raise AlreadyInvitedError(user_id, existing.ref_code)

        referrer = await self.cache.lookup_by_code(ref_code)
        if referrer is None:
            raise ReferrerNotFoundError(normalize_code(ref_code))

        if referrer.id == user_id:
            raise SelfReferralError(user_id)

        await self.create_invited(user_id, ref_code)

        try:
            return await self.increment_ref_count(ref_code)
        except StoreError as e:
            # The binding is what matters; the count is cosmetic
            logger.error(
                "Failed to increment referral count",
                code=ref_code,
                referrer_id=referrer.id,
                error=str(e)
            )
            return referrer

    async def link_wallet(self, user_id: int, wallet: str) -> Referrer:
        """
        Raises:
            InvalidWalletError: wrong address format
            ReferrerNotFoundError: user has no referrer row
        """
        address = WalletValidator.validate_wallet(wallet)

        referrer = await self.cache.lookup_by_id(user_id)
        if referrer is None:
            raise ReferrerNotFoundError(user_id)

        def set_wallet(current: Referrer) -> None:
            current.wallet = address

        updated = await self.referrers.mutate(user_id, set_wallet)
        logger.info("Wallet linked", user_id=user_id, wallet=address)
        return updated
