from __future__ import annotations

import asyncio
from typing import Optional, Set

from sanic.log import logger

from alps.exceptions import (
    AccessTokenNotFound,
    DecryptionError,
    TokenConfigurationError,
)
from alps.metric import token_last_used_error_total
from alps.model import Build
from alps.stats.interfaces import AccessTokenRepository, Decryptor


def _normalize(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class TokenResolver:
    """Pick the GitHub token for a build.

    A build either references a saved token, stored encrypted and scoped to
    its tenant, or carries an inline token. Resolving a saved token records
    its last-used time in the background.
    """

    def __init__(
        self, token_store: AccessTokenRepository, cipher: Optional[Decryptor]
    ):
        self.token_store = token_store
        self.cipher = cipher
        self._pending: Set[asyncio.Task] = set()

    async def resolve(
        self,
        *,
        saved_token_id: Optional[str] = None,
        inline_token: Optional[str] = None,
        tenant_id: str,
    ) -> str:
        saved_token_id = _normalize(saved_token_id)
        inline_token = _normalize(inline_token)

        if saved_token_id is not None and inline_token is not None:
            raise TokenConfigurationError(
                "Cannot specify both a saved access token and a personal access token"
            )
        if saved_token_id is None and inline_token is None:
            raise TokenConfigurationError(
                "Either a saved access token or a personal access token is required"
            )

        if inline_token is not None:
            return inline_token

        row = self.token_store.find_by_id(saved_token_id, tenant_id)
        if row is None:
            raise AccessTokenNotFound(saved_token_id)

        if self.cipher is None:
            raise DecryptionError("No encryption key configured for saved tokens")
        token = self.cipher.decrypt(row.encrypted_token)
        self._record_last_used(saved_token_id, tenant_id)
        return token

    async def resolve_for_build(self, build: Build) -> str:
        return await self.resolve(
            saved_token_id=build.access_token_id,
            inline_token=build.personal_access_token,
            tenant_id=build.tenant_id,
        )

    def _record_last_used(self, token_id: str, tenant_id: str) -> None:
        task = asyncio.create_task(
            asyncio.to_thread(self.token_store.update_last_used, token_id, tenant_id)
        )
        self._pending.add(task)
        task.add_done_callback(self._last_used_done)

    def _last_used_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            token_last_used_error_total.inc()
            logger.warning(
                "Failed to update last used time for access token",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self) -> None:
        """Wait for outstanding last-used updates."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
