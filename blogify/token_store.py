import logging
from datetime import datetime, timezone

from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from blogify.models.user import RefreshToken
from blogify.utils.security import decode_refresh_token, hash_token
from database import utcnow

logger = logging.getLogger(__name__)


class RefreshTokenStore:
    """
    Server-side registry of issued refresh tokens.

    A refresh token is honoured only while a row for it exists and has not
    expired, so deleting rows revokes tokens whose signature is still valid.
    Callers own the transaction; nothing here commits.
    """

    @staticmethod
    def _row_filter(user_id: int, token: str):
        payload = decode_refresh_token(token)
        return and_(
            RefreshToken.user_id == user_id,
            RefreshToken.token_id == payload["jti"],
            RefreshToken.token_hash == hash_token(token),
            RefreshToken.expires_at > utcnow(),
        )

    async def add(self, db: AsyncSession, user_id: int, token: str) -> RefreshToken:
        """
        Register a freshly minted refresh token.

        Args:
            db: Database session
            user_id: Owner of the token
            token: Encoded refresh JWT

        Returns:
            RefreshToken: The stored row
        """
        payload = decode_refresh_token(token)

        await db.execute(
            delete(RefreshToken).where(
                RefreshToken.user_id == user_id,
                RefreshToken.expires_at <= utcnow(),
            ).execution_options(synchronize_session=False)
        )

        row = RefreshToken(
            user_id=user_id,
            token_id=payload["jti"],
            token_hash=hash_token(token),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
        db.add(row)
        await db.flush()
        return row

    async def contains(self, db: AsyncSession, user_id: int, token: str) -> bool:
        row_id = await db.scalar(select(RefreshToken.id).where(self._row_filter(user_id, token)))
        return row_id is not None

    async def remove(self, db: AsyncSession, user_id: int, token: str):
        payload = decode_refresh_token(token)
        await db.execute(
            delete(RefreshToken).where(
                RefreshToken.user_id == user_id,
                RefreshToken.token_id == payload["jti"],
            ).execution_options(synchronize_session=False)
        )

    async def remove_all(self, db: AsyncSession, user_id: int):
        result = await db.execute(
            delete(RefreshToken)
            .where(RefreshToken.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Revoked {result.rowcount} refresh tokens for user {user_id}")

    async def consume(self, db: AsyncSession, user_id: int, token: str) -> bool:
        """
        Delete the matching unexpired row in a single statement.

        Returns:
            bool: True only for the caller whose delete removed the row
        """
        result = await db.execute(
            delete(RefreshToken)
            .where(self._row_filter(user_id, token))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


token_store = RefreshTokenStore()
