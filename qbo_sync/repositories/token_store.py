"""Token store — durable OAuth credentials per realm."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func, delete, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qbo_sync.database import upsert_insert, utcnow
from qbo_sync.models.token import Token

logger = logging.getLogger(__name__)


class TokenStore:
    """Reads and writes the tokens table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, realm_id: str) -> Optional[Token]:
        async with self._session_factory() as db:
            result = await db.execute(select(Token).where(Token.realm_id == realm_id))
            return result.scalar_one_or_none()

    async def save(
        self,
        realm_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        refresh_token_expires_at: Optional[datetime] = None,
    ) -> None:
        """Insert or overwrite the credential pair for a realm."""
        now = utcnow()
        async with self._session_factory() as db:
            stmt = upsert_insert(db, Token).values(
                realm_id=realm_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
                refresh_token_expires_at=refresh_token_expires_at,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["realm_id"],
                set_={
                    "access_token": stmt.excluded.access_token,
                    "refresh_token": stmt.excluded.refresh_token,
                    "expires_at": stmt.excluded.expires_at,
                    "refresh_token_expires_at": stmt.excluded.refresh_token_expires_at,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await db.execute(stmt)
            await db.commit()

        logger.info(f"Token saved for realm: {realm_id}")

    async def update(
        self,
        realm_id: str,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        refresh_token_expires_at: Optional[datetime] = None,
    ) -> bool:
        """Update the given fields. Returns False if the realm has no token row."""
        values = {"updated_at": utcnow()}
        if access_token is not None:
            values["access_token"] = access_token
        if refresh_token is not None:
            values["refresh_token"] = refresh_token
        if expires_at is not None:
            values["expires_at"] = expires_at
        if refresh_token_expires_at is not None:
            values["refresh_token_expires_at"] = refresh_token_expires_at

        async with self._session_factory() as db:
            result = await db.execute(
                update(Token).where(Token.realm_id == realm_id).values(**values)
            )
            await db.commit()

        logger.debug(f"Token updated for realm: {realm_id}")
        return result.rowcount > 0

    async def delete(self, realm_id: str) -> None:
        async with self._session_factory() as db:
            await db.execute(delete(Token).where(Token.realm_id == realm_id))
            await db.commit()
        logger.info(f"Token deleted for realm: {realm_id}")

    async def get_active_realm_id(self) -> Optional[str]:
        """Most recently updated realm (single-company setups)."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Token.realm_id).order_by(Token.updated_at.desc(), Token.id.desc()).limit(1)
            )
            return result.scalar_one_or_none()

    async def has_tokens(self) -> bool:
        async with self._session_factory() as db:
            count = (await db.execute(select(func.count(Token.id)))).scalar() or 0
            return count > 0
