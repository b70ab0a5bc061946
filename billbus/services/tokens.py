from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from billbus.core.config import get_settings
from billbus.persistence.repos import tokens as tokens_repo


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenGuard:
    """Caller session tokens with a sliding idle window.

    Expired tokens are purged lazily by `check`; nothing sweeps them in the
    background and nothing else deletes them.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        idle_minutes: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.idle_minutes = idle_minutes if idle_minutes is not None else get_settings().token_idle_minutes

    async def issue(self, user_id: str) -> str:
        token_id = str(uuid4())
        async with self._session_factory() as session:
            await tokens_repo.create_token(session, token_id=token_id, user_id=user_id, now=_utc_now())
            await session.commit()
        logger.info("token_issued user_id=%s", user_id)
        return token_id

    async def check(self, token_id: str | None) -> bool:
        cutoff = _utc_now() - timedelta(minutes=self.idle_minutes)
        async with self._session_factory() as session:
            purged = await tokens_repo.purge_idle(session, cutoff=cutoff)
            exists = bool(token_id) and await tokens_repo.token_exists(session, token_id or "")
            await session.commit()
        if purged:
            logger.info("tokens_purged count=%s", purged)
        return exists

    async def refresh(self, token_id: str) -> None:
        async with self._session_factory() as session:
            await tokens_repo.touch_token(session, token_id, now=_utc_now())
            await session.commit()
