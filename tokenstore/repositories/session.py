"""Session to token binding index."""

from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenstore.core.errors import DatabaseError
from tokenstore.models.session import TokenSessionMapping
from tokenstore.models.token import AccessToken, TokenState
from tokenstore.repositories.base import BaseRepository


class TokenSessionRepository(BaseRepository[TokenSessionMapping]):
    """Mappings between sessions and the tokens issued under them."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize session mapping repository.

        Args:
            session: SQLAlchemy async session
        """
        super().__init__(session, TokenSessionMapping)

    async def add_mapping(self, session_id: str, token_id: str, tenant_id: int) -> bool:
        """Store a mapping unless it is already there.

        Returns:
            True if a new mapping was written
        """
        if await self.find((session_id, token_id)) is not None:
            return False

        await self.create(
            {"session_id": session_id, "token_id": token_id, "tenant_id": tenant_id}
        )
        return True

    async def active_token_ids(self, session_id: str) -> set[str]:
        """Ids of active tokens mapped to a session."""
        query = (
            select(TokenSessionMapping.token_id)
            .join(AccessToken, AccessToken.token_id == TokenSessionMapping.token_id)
            .where(
                TokenSessionMapping.session_id == session_id,
                AccessToken.token_state == TokenState.ACTIVE,
            )
        )
        try:
            result = await self._session.execute(query)
            return set(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseError(str(e), details=e) from e

    async def delete_for_tokens(self, token_ids: Sequence[str]) -> int:
        """Drop every mapping of the given tokens."""
        if not token_ids:
            return 0

        stmt = (
            delete(TokenSessionMapping)
            .where(TokenSessionMapping.token_id.in_(token_ids))
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self._session.execute(stmt)
            return result.rowcount or 0
        except SQLAlchemyError as e:
            raise DatabaseError(str(e), details=e) from e
