"""
Referral code generation.
"""

import asyncio
import secrets
from typing import Set

import structlog

from refledger.core.exceptions import CodeGenerationExhaustedError
from refledger.sheets.tables import ReferrerTable

logger = structlog.get_logger(__name__)

CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
CODE_LENGTH = 6
MAX_ATTEMPTS = 100
RETRY_DELAY_SECONDS = 0.01


class CodeGenerator:
    """
    Issues 6-character codes that are not yet in the sheet.

    Uniqueness is checked against a live read of the code column, not the
    cache, so rows added by hand since the last reload are seen. Codes handed
    out but not yet written are held in a reservation set until release().
    """

    def __init__(
        self,
        referrers: ReferrerTable,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        length: int = CODE_LENGTH,
    ):
        self.referrers = referrers
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.length = length
        self._reserved: Set[str] = set()

    def _random_code(self) -> str:
        return "".join(secrets.choice(CODE_ALPHABET) for _ in range(self.length))

    async def generate_unique_code(self) -> str:
        """
        Raises:
            CodeGenerationExhaustedError: after max_attempts collisions
            StoreError: if the code column cannot be read
        """
        for attempt in range(1, self.max_attempts + 1):
            code = self._random_code()

            if code not in self._reserved:
                existing = await self.referrers.read_codes()
                # Re-check: another task may have reserved it during the read
                if code not in existing and code not in self._reserved:
                    self._reserved.add(code)
                    logger.debug("Referral code generated", code=code, attempt=attempt)
                    return code

            logger.debug("Referral code collision", code=code, attempt=attempt)
            await asyncio.sleep(self.retry_delay)

        logger.error("Referral code generation exhausted", attempts=self.max_attempts)
        raise CodeGenerationExhaustedError(self.max_attempts)

    def release(self, code: str) -> None:
        """Drop a reservation once the code is written (or abandoned)."""
        self._reserved.discard(code)

    @property
    def reserved(self) -> Set[str]:
        return set(self._reserved)
