"""Access token queries."""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any, Final

from sqlalchemy import ColumnElement, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenstore.core.errors import DatabaseError, DuplicateError
from tokenstore.core.security import HashedToken, StoredToken, plain_lookup_digest
from tokenstore.models.token import ACTIVE_STATE_ID, MAX_LIST_SIZE, AccessToken, TokenState
from tokenstore.repositories.base import BaseRepository
from tokenstore.utils.identity import TokenKey

LIVE_STATES: Final[tuple[TokenState, ...]] = (
    TokenState.ACTIVE,
    TokenState.EXPIRED,
    TokenState.REVOKED,
)


def stored_token_clause(candidates: Iterable[StoredToken]) -> ColumnElement[bool]:
    """Match any stored form in ``candidates``."""
    candidates = list(candidates)
    digests = [c.digest for c in candidates if isinstance(c, HashedToken)]
    plains = [c.value for c in candidates if not isinstance(c, HashedToken)]

    clauses: list[ColumnElement[bool]] = []
    if digests:
        clauses.append(AccessToken.access_token_hash.in_(digests))
    if plains:
        clauses.append(
            AccessToken.access_token_plain_digest.in_([plain_lookup_digest(p) for p in plains])
        )
    assert clauses, "At least one token candidate is required"
    return or_(*clauses)


def not_expired_clause(now: datetime) -> ColumnElement[bool]:
    return or_(AccessToken.expires_at.is_(None), AccessToken.expires_at > now)


class AccessTokenRepository(BaseRepository[AccessToken]):
    """Queries over the access token table inside a caller-owned transaction."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize access token repository.

        Args:
            session: SQLAlchemy async session
        """
        super().__init__(session, AccessToken)

    def _newest_first(self, query: Any) -> Any:
        return query.order_by(AccessToken.issued_time.desc(), AccessToken.token_id.desc())

    def _key_query(
        self,
        consumer_key: str,
        username: str,
        user_store_domain: str,
        tenant_id: int,
        scope_hash: str,
        binding_ref: str | None,
    ) -> Any:
        query = self._build_query().where(
            AccessToken.consumer_key == consumer_key,
            AccessToken.authz_user == username,
            AccessToken.user_store_domain == user_store_domain,
            AccessToken.tenant_id == tenant_id,
            AccessToken.scope_hash == scope_hash,
        )
        if binding_ref is not None:
            query = query.where(AccessToken.token_binding_ref == binding_ref)
        return query

    async def get_latest(
        self,
        consumer_key: str,
        username: str,
        user_store_domain: str,
        tenant_id: int,
        scope_hash: str,
        *,
        binding_ref: str | None,
        states: Sequence[TokenState],
        limit: int,
    ) -> list[AccessToken]:
        """Newest tokens for a logical key, binding optional.

        Args:
            consumer_key: Client identifier
            username: Normalized username
            user_store_domain: Normalized user store domain
            tenant_id: Tenant identifier
            scope_hash: Digest of the canonical scope
            binding_ref: Required binding, or None to ignore binding
            states: Token states to include
            limit: Maximum number of rows

        Returns:
            Tokens ordered by issued time then token id, newest first
        """
        assert 0 < limit <= MAX_LIST_SIZE, f"Limit must be between 1 and {MAX_LIST_SIZE}"

        query = self._key_query(
            consumer_key, username, user_store_domain, tenant_id, scope_hash, binding_ref
        ).where(AccessToken.token_state.in_(states))
        return await self._all(self._newest_first(query).limit(limit))

    async def list_for_client_user(
        self,
        consumer_key: str,
        username: str,
        user_store_domain: str,
        tenant_id: int,
        states: Sequence[TokenState],
    ) -> list[AccessToken]:
        query = self._build_query().where(
            AccessToken.consumer_key == consumer_key,
            AccessToken.authz_user == username,
            AccessToken.user_store_domain == user_store_domain,
            AccessToken.tenant_id == tenant_id,
            AccessToken.token_state.in_(states),
        )
        return await self._all(self._newest_first(query))

    async def list_active_by_consumer_key(
        self,
        consumer_key: str,
        now: datetime,
    ) -> list[AccessToken]:
        query = self._build_query().where(
            AccessToken.consumer_key == consumer_key,
            AccessToken.token_state == TokenState.ACTIVE,
            not_expired_clause(now),
        )
        return await self._all(self._newest_first(query))

    async def list_active_by_user(
        self,
        username: str,
        user_store_domain: str,
        tenant_id: int,
    ) -> list[AccessToken]:
        query = self._build_query().where(
            AccessToken.authz_user == username,
            AccessToken.user_store_domain == user_store_domain,
            AccessToken.tenant_id == tenant_id,
            AccessToken.token_state == TokenState.ACTIVE,
        )
        return await self._all(self._newest_first(query))

    async def list_active_by_tenant(
        self,
        tenant_id: int,
        user_store_domain: str | None = None,
    ) -> list[AccessToken]:
        query = self._build_query().where(
            AccessToken.tenant_id == tenant_id,
            AccessToken.token_state == TokenState.ACTIVE,
        )
        if user_store_domain is not None:
            query = query.where(AccessToken.user_store_domain == user_store_domain)
        return await self._all(self._newest_first(query))

    async def list_active_by_binding_ref(
        self,
        binding_ref: str,
        *,
        username: str | None = None,
        user_store_domain: str | None = None,
        tenant_id: int | None = None,
    ) -> list[AccessToken]:
        query = self._build_query().where(
            AccessToken.token_binding_ref == binding_ref,
            AccessToken.token_state == TokenState.ACTIVE,
        )
        if username is not None:
            query = query.where(AccessToken.authz_user == username)
        if user_store_domain is not None:
            query = query.where(AccessToken.user_store_domain == user_store_domain)
        if tenant_id is not None:
            query = query.where(AccessToken.tenant_id == tenant_id)
        return await self._all(self._newest_first(query))

    async def find_by_stored_token(
        self,
        candidates: Iterable[StoredToken],
        states: Sequence[TokenState] = LIVE_STATES,
    ) -> list[AccessToken]:
        """Rows whose stored access token matches any candidate form."""
        query = self._build_query().where(
            stored_token_clause(candidates),
            AccessToken.token_state.in_(states),
        )
        return await self._all(self._newest_first(query))

    async def transition(
        self,
        token_id: str,
        *,
        from_states: Sequence[TokenState],
        to_state: TokenState,
        state_id: str,
        values: dict[str, Any] | None = None,
    ) -> bool:
        """Move one token between states if it is still in ``from_states``.

        The expected state is part of the UPDATE predicate, so a concurrent
        writer that got there first turns this into a no-op.

        Returns:
            True if the row was updated
        """
        assert to_state != TokenState.ACTIVE or state_id == ACTIVE_STATE_ID, (
            "Active tokens carry the active state id"
        )

        stmt = (
            update(AccessToken)
            .where(
                AccessToken.token_id == token_id,
                AccessToken.token_state.in_(from_states),
            )
            .values(token_state=to_state, token_state_id=state_id, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update(stmt) == 1

    async def expire_active_for_key(
        self,
        key: TokenKey,
        state_id: str,
        values: dict[str, Any] | None = None,
    ) -> int:
        """Expire the active token of a logical key, if any.

        The logical-key index admits a single active row, so one fresh state id
        is enough for all of them.
        """
        stmt = (
            update(AccessToken)
            .where(
                AccessToken.consumer_key == key.consumer_key,
                AccessToken.authz_user == key.username,
                AccessToken.user_store_domain == key.user_store_domain,
                AccessToken.tenant_id == key.tenant_id,
                AccessToken.scope_hash == key.scope_hash,
                AccessToken.token_binding_ref == key.binding_ref,
                AccessToken.token_state == TokenState.ACTIVE,
            )
            .values(token_state=TokenState.EXPIRED, token_state_id=state_id, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update(stmt)

    async def token_ids_with_state_id(self, state_id: str) -> list[str]:
        try:
            result = await self._session.execute(
                select(AccessToken.token_id).where(AccessToken.token_state_id == state_id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise DatabaseError(str(e), details=e) from e

    async def set_consented(self, token_id: str, is_consented: bool) -> bool:
        stmt = (
            update(AccessToken)
            .where(AccessToken.token_id == token_id)
            .values(is_consented_grant=is_consented)
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update(stmt) == 1

    async def rename_user_store(
        self,
        tenant_id: int,
        current_domain: str,
        new_domain: str,
    ) -> int:
        """Relabel every row of a tenant in one statement."""
        stmt = (
            update(AccessToken)
            .where(
                AccessToken.tenant_id == tenant_id,
                AccessToken.user_store_domain == current_domain,
            )
            .values(user_store_domain=new_domain)
            .execution_options(synchronize_session=False)
        )
        return await self._execute_update(stmt)

    async def _execute_update(self, stmt: Any) -> int:
        try:
            result = await self._session.execute(stmt)
            return result.rowcount or 0
        except IntegrityError as e:
            raise DuplicateError(str(e.orig), details=e) from e
        except SQLAlchemyError as e:
            raise DatabaseError(str(e), details=e) from e
