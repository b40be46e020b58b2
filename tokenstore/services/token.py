"""Access token persistence service.

``TokenStore`` is the contract the OAuth runtime talks to. Every public
coroutine opens one session (one pooled connection) and one transaction for
its lifetime; leaving the ``async with`` block on any path, cancellation
included, either commits the whole unit or rolls it back.

Failures surface as :class:`OAuthClientError` (bad input, unknown entity) or
:class:`OAuthServerError` (storage faults). Losing the compare-and-swap race in
:meth:`TokenStore.insert_conditional` is not a failure and returns ``False``.
"""

import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Final
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tokenstore.core.config import settings
from tokenstore.core.errors import (
    DuplicateError,
    NotFoundError,
    OAuthClientError,
    OAuthError,
    OAuthServerError,
    RepositoryError,
    TokenErrorMessage,
)
from tokenstore.core.security import (
    HashedToken,
    PlainToken,
    StoredToken,
    TokenHasher,
    mask_token,
    plain_lookup_digest,
)
from tokenstore.models.token import ACTIVE_STATE_ID, AccessToken, TokenState
from tokenstore.repositories.session import TokenSessionRepository
from tokenstore.repositories.token import LIVE_STATES, AccessTokenRepository
from tokenstore.schemas.token import (
    AccessTokenRecord,
    AuthenticatedUser,
    LookupOptions,
    RevocationMode,
    RevocationResult,
    StoreCapability,
)
from tokenstore.utils.identity import (
    NO_BINDING,
    CaseSensitivityResolver,
    TokenKey,
    canonical_scope,
    default_case_sensitivity,
    normalize_binding_ref,
    normalize_user_store_domain,
    normalize_username,
    scope_hash,
)

logger = logging.getLogger(__name__)

OPENID_SCOPE: Final[str] = "openid"
MAX_INSERT_ATTEMPTS: Final[int] = 2
MAX_LATEST_TOKENS: Final[int] = 1000

ALL_CAPABILITIES: Final[frozenset[StoreCapability]] = frozenset(StoreCapability)

LEGAL_TRANSITIONS: Final[dict[TokenState, frozenset[TokenState]]] = {
    TokenState.ACTIVE: frozenset(
        {TokenState.EXPIRED, TokenState.REVOKED, TokenState.INACTIVE}
    ),
    TokenState.EXPIRED: frozenset({TokenState.INACTIVE}),
    TokenState.REVOKED: frozenset(),
    TokenState.INACTIVE: frozenset(),
}

DEFAULT_OPTIONS: Final[LookupOptions] = LookupOptions()


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_state_id() -> str:
    return uuid4().hex


class TokenStore:
    """SQL-backed access token store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        hasher: TokenHasher,
        *,
        capabilities: Iterable[StoreCapability] = ALL_CAPABILITIES,
        is_case_sensitive: CaseSensitivityResolver = default_case_sensitivity,
        revoke_individually: bool | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            session_factory: Factory of sessions bound to the token database
            hasher: Hashing policy applied to token values at rest
            capabilities: Optional operations this deployment provides
            is_case_sensitive: Username case sensitivity per (tenant, domain)
            revoke_individually: Default revocation mode; None reads settings
        """
        self._session_factory = session_factory
        self._hasher = hasher
        self._capabilities = frozenset(capabilities)
        self._is_case_sensitive = is_case_sensitive
        if revoke_individually is None:
            revoke_individually = settings.REVOKE_TOKENS_INDIVIDUALLY
        self._default_revocation_mode = (
            RevocationMode.INDIVIDUAL if revoke_individually else RevocationMode.BATCH
        )

    @property
    def capabilities(self) -> frozenset[StoreCapability]:
        return self._capabilities

    @property
    def hasher(self) -> TokenHasher:
        return self._hasher

    def supports(self, capability: StoreCapability) -> bool:
        return capability in self._capabilities

    def _require(self, capability: StoreCapability) -> None:
        if capability not in self._capabilities:
            raise OAuthServerError.from_message(
                TokenErrorMessage.UNSUPPORTED_OPERATION, capability.value
            )

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """One session, one transaction; storage faults become server errors."""
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except OAuthError:
            raise
        except NotFoundError as e:
            raise OAuthClientError.from_message(
                TokenErrorMessage.TOKEN_NOT_FOUND, str(e.details), cause=e
            ) from e
        except DuplicateError as e:
            logger.warning("Constraint violation during %s: %s", operation, e.message)
            raise OAuthClientError.from_message(
                TokenErrorMessage.DUPLICATE_TOKEN, operation, cause=e
            ) from e
        except (RepositoryError, SQLAlchemyError) as e:
            logger.error("Token store failure during %s: %s", operation, str(e))
            raise OAuthServerError.from_message(
                TokenErrorMessage.DATABASE_ERROR, operation, cause=e
            ) from e

    # Keying

    def _domain(self, user: AuthenticatedUser, user_store_domain: str | None) -> str:
        return normalize_user_store_domain(
            user_store_domain or user.user_store_domain,
            is_federated=user.is_federated,
        )

    def _username(self, user: AuthenticatedUser, domain: str) -> str:
        return normalize_username(
            user.username, user.tenant_id, domain, self._is_case_sensitive
        )

    def _key(
        self,
        consumer_key: str,
        user: AuthenticatedUser,
        user_store_domain: str | None,
        scope: str | Iterable[str] | None,
        binding_ref: str | None,
    ) -> TokenKey:
        domain = self._domain(user, user_store_domain)
        return TokenKey(
            consumer_key=consumer_key,
            username=self._username(user, domain),
            user_store_domain=domain,
            tenant_id=user.tenant_id,
            scope_hash=scope_hash(scope),
            binding_ref=normalize_binding_ref(binding_ref),
        )

    # Mapping between records and rows

    def _row_data(
        self,
        access_token: str,
        consumer_key: str,
        record: AccessTokenRecord,
        user_store_domain: str | None,
    ) -> tuple[dict[str, Any], TokenKey]:
        if consumer_key != record.consumer_key:
            raise OAuthClientError.from_message(
                TokenErrorMessage.INVALID_TOKEN_RECORD,
                f"consumer key mismatch for token id {record.token_id}",
            )
        if not access_token:
            raise OAuthClientError.from_message(
                TokenErrorMessage.INVALID_TOKEN_RECORD,
                f"empty access token for token id {record.token_id}",
            )

        key = self._key(
            consumer_key,
            record.authenticated_user,
            user_store_domain,
            record.scopes,
            record.token_binding_reference,
        )
        stored_access = self._hasher.to_stored(access_token)
        stored_refresh = (
            self._hasher.to_stored(record.refresh_token) if record.refresh_token else None
        )

        data: dict[str, Any] = {
            "token_id": record.token_id,
            "access_token": _plain(stored_access),
            "access_token_plain_digest": _plain_lookup(stored_access),
            "access_token_hash": _digest(stored_access),
            "refresh_token": _plain(stored_refresh),
            "refresh_token_hash": _digest(stored_refresh),
            "refresh_token_id": record.refresh_token_id,
            "consumer_key": key.consumer_key,
            "authz_user": key.username,
            "user_store_domain": key.user_store_domain,
            "tenant_id": key.tenant_id,
            "is_federated": record.authenticated_user.is_federated,
            "scope": canonical_scope(record.scopes),
            "scope_hash": key.scope_hash,
            "grant_type": record.grant_type,
            "token_state": TokenState.ACTIVE,
            "token_state_id": ACTIVE_STATE_ID,
            "issued_time": record.issued_time,
            "refresh_token_issued_time": record.refresh_token_issued_time,
            "validity_period_ms": record.validity_period_ms,
            "refresh_token_validity_period_ms": record.refresh_token_validity_period_ms,
            "expires_at": record.expires_at,
            "token_binding_ref": key.binding_ref,
            "is_consented_grant": record.is_consented_grant,
        }
        return data, key

    @staticmethod
    def _to_record(row: AccessToken) -> AccessTokenRecord:
        return AccessTokenRecord(
            token_id=row.token_id,
            access_token=row.access_token_hash or row.access_token or "",
            refresh_token=row.refresh_token_hash or row.refresh_token,
            refresh_token_id=row.refresh_token_id,
            consumer_key=row.consumer_key,
            authenticated_user=AuthenticatedUser(
                username=row.authz_user,
                user_store_domain=row.user_store_domain,
                tenant_id=row.tenant_id,
                is_federated=row.is_federated,
            ),
            scopes=row.scope,
            grant_type=row.grant_type,
            token_state=row.token_state,
            token_state_id=row.token_state_id,
            issued_time=row.issued_time,
            refresh_token_issued_time=row.refresh_token_issued_time,
            validity_period_ms=row.validity_period_ms,
            refresh_token_validity_period_ms=row.refresh_token_validity_period_ms,
            token_binding_reference=row.token_binding_ref,
            is_consented_grant=row.is_consented_grant,
        )

    @staticmethod
    def _stored_access_token(row: AccessToken) -> str:
        return row.access_token_hash or row.access_token or ""

    # Writes

    async def _retire(
        self,
        session: AsyncSession,
        token_ids: Sequence[str],
    ) -> None:
        """Drop binding index entries of tokens that left ACTIVE."""
        if token_ids and self.supports(StoreCapability.BINDING_INDEX):
            await TokenSessionRepository(session).delete_for_tokens(token_ids)

    async def _insert_row(
        self,
        session: AsyncSession,
        data: dict[str, Any],
        key: TokenKey,
    ) -> None:
        """Insert an ACTIVE row, superseding the key's current active row."""
        tokens = AccessTokenRepository(session)

        state_id = _new_state_id()
        superseded = await tokens.expire_active_for_key(
            key, state_id, {"state_changed_by_grant": data.get("grant_type")}
        )
        if superseded:
            superseded_ids = await tokens.token_ids_with_state_id(state_id)
            logger.warning(
                "Superseded active token(s) %s of client %s while inserting %s",
                superseded_ids,
                key.consumer_key,
                data["token_id"],
            )
            await self._retire(session, superseded_ids)

        await tokens.create(data)

        if key.binding_ref != NO_BINDING and self.supports(StoreCapability.BINDING_INDEX):
            await TokenSessionRepository(session).add_mapping(
                key.binding_ref, data["token_id"], key.tenant_id
            )

    async def insert(
        self,
        access_token: str,
        consumer_key: str,
        record: AccessTokenRecord,
        user_store_domain: str | None = None,
    ) -> None:
        """Persist a new ACTIVE token.

        Any token already active for the same logical key is moved to EXPIRED in
        the same transaction. A concurrent insert for the same key can still
        collide on the logical-key index; that case is retried once.

        Raises:
            OAuthClientError: DUPLICATE_TOKEN if the token id or value exists
            OAuthServerError: On storage failure
        """
        data, key = self._row_data(access_token, consumer_key, record, user_store_domain)

        for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
            try:
                async with self._transaction("insert") as session:
                    await self._insert_row(session, data, key)
                break
            except OAuthClientError as e:
                if e.code != TokenErrorMessage.DUPLICATE_TOKEN.code or attempt == MAX_INSERT_ATTEMPTS:
                    raise
                logger.info(
                    "Retrying insert of token %s for client %s after constraint violation",
                    record.token_id,
                    consumer_key,
                )

        logger.debug(
            "Stored token %s (%s) for client %s",
            record.token_id,
            mask_token(access_token),
            consumer_key,
        )

    async def insert_conditional(
        self,
        access_token: str,
        consumer_key: str,
        new_record: AccessTokenRecord,
        existing_record: AccessTokenRecord,
        user_store_domain: str | None = None,
    ) -> bool:
        """Replace ``existing_record`` with ``new_record`` if it is still active.

        The existing row is expired with a predicate on its current state, so of
        two concurrent refreshes exactly one wins.

        Returns:
            True if the swap happened, False if another writer got there first
        """
        data, key = self._row_data(access_token, consumer_key, new_record, user_store_domain)

        async with self._transaction("insert_conditional") as session:
            swapped = await AccessTokenRepository(session).transition(
                existing_record.token_id,
                from_states=(TokenState.ACTIVE,),
                to_state=TokenState.EXPIRED,
                state_id=_new_state_id(),
                values={"state_changed_by_grant": new_record.grant_type},
            )
            if not swapped:
                logger.info(
                    "Token %s is no longer active; not replacing it with %s",
                    existing_record.token_id,
                    new_record.token_id,
                )
                return False

            await self._retire(session, [existing_record.token_id])
            await self._insert_row(session, data, key)

        return True

    async def rotate(
        self,
        old_token_id: str,
        new_state_for_old: TokenState,
        consumer_key: str,
        new_state_id: str | None,
        new_record: AccessTokenRecord,
        user_store_domain: str | None = None,
        grant_type: str | None = None,
    ) -> None:
        """Move the old token out of ACTIVE and insert its replacement atomically.

        Raises:
            OAuthClientError: TOKEN_NOT_FOUND or INVALID_STATE_TRANSITION
            OAuthServerError: On storage failure or concurrent modification
        """
        data, key = self._row_data(
            new_record.access_token, consumer_key, new_record, user_store_domain
        )
        state_id = new_state_id or _new_state_id()

        async with self._transaction("rotate") as session:
            tokens = AccessTokenRepository(session)
            old = await tokens.find(old_token_id, for_update=True)
            if old is None:
                raise OAuthClientError.from_message(
                    TokenErrorMessage.TOKEN_NOT_FOUND, old_token_id
                )
            current_state = old.token_state
            _check_transition(old_token_id, current_state, new_state_for_old)

            moved = await tokens.transition(
                old_token_id,
                from_states=(current_state,),
                to_state=new_state_for_old,
                state_id=state_id,
                values={"state_changed_by_grant": grant_type},
            )
            if not moved:
                raise OAuthServerError.from_message(
                    TokenErrorMessage.CONCURRENT_MODIFICATION, old_token_id
                )

            await self._retire(session, [old_token_id])
            await self._insert_row(session, data, key)

        logger.debug(
            "Rotated token %s (%s) to %s",
            old_token_id,
            new_state_for_old,
            new_record.token_id,
        )

    async def update_state(
        self,
        token_id: str,
        new_state: TokenState,
        grant_type: str | None = None,
    ) -> None:
        """Write a new state; only forward lifecycle transitions are legal.

        Writing the state a token already has is a no-op.

        Raises:
            OAuthClientError: TOKEN_NOT_FOUND or INVALID_STATE_TRANSITION
        """
        async with self._transaction("update_state") as session:
            tokens = AccessTokenRepository(session)
            row = await tokens.find(token_id, for_update=True)
            if row is None:
                raise OAuthClientError.from_message(TokenErrorMessage.TOKEN_NOT_FOUND, token_id)

            current_state = row.token_state
            if current_state == new_state:
                return
            _check_transition(token_id, current_state, new_state)

            moved = await tokens.transition(
                token_id,
                from_states=(current_state,),
                to_state=new_state,
                state_id=_new_state_id(),
                values={"state_changed_by_grant": grant_type},
            )
            if not moved:
                raise OAuthServerError.from_message(
                    TokenErrorMessage.CONCURRENT_MODIFICATION, token_id
                )
            await self._retire(session, [token_id])

        logger.debug("Token %s moved from %s to %s", token_id, current_state, new_state)

    async def update_consent_flag(self, token_id: str, is_consented: bool) -> None:
        """Record whether the token was issued for a consented grant."""
        self._require(StoreCapability.CONSENT_FLAG)

        async with self._transaction("update_consent_flag") as session:
            updated = await AccessTokenRepository(session).set_consented(token_id, is_consented)
            if not updated:
                raise OAuthClientError.from_message(TokenErrorMessage.TOKEN_NOT_FOUND, token_id)

    # Revocation

    async def revoke(
        self,
        tokens: Sequence[str],
        mode: RevocationMode | None = None,
        options: LookupOptions = DEFAULT_OPTIONS,
    ) -> RevocationResult:
        """Revoke access tokens given by value.

        ``options.is_hashed`` tells whether the values are already digests, as
        they are when read back from the store.

        BATCH runs one transaction and raises on failure, leaving every token
        untouched. INDIVIDUAL runs one transaction per token and reports
        failures in the result instead of raising.
        """
        mode = mode or self._default_revocation_mode
        if not tokens:
            return RevocationResult()

        candidates = {
            token: self._hasher.lookup_candidates(token, is_hashed=options.is_hashed)
            for token in dict.fromkeys(tokens)
        }

        if mode == RevocationMode.BATCH:
            result = RevocationResult()
            async with self._transaction("revoke_batch") as session:
                for token, forms in candidates.items():
                    if await self._revoke_value(session, forms, options.grant_type):
                        result.revoked.append(token)
                    else:
                        result.unchanged.append(token)
            logger.info(
                "Revoked %d of %d token(s) in batch",
                len(result.revoked),
                len(candidates),
            )
            return result

        result = RevocationResult()
        for token, forms in candidates.items():
            try:
                async with self._transaction("revoke_individual") as session:
                    revoked = await self._revoke_value(session, forms, options.grant_type)
            except OAuthError as e:
                logger.error("Failed to revoke token %s: %s", mask_token(token), e.message)
                result.failed.append(token)
                continue

            if revoked:
                result.revoked.append(token)
            else:
                logger.debug("No active token matches %s", mask_token(token))
                result.unchanged.append(token)

        logger.info(
            "Revoked %d of %d token(s) individually, %d failed",
            len(result.revoked),
            len(candidates),
            len(result.failed),
        )
        return result

    async def _revoke_value(
        self,
        session: AsyncSession,
        forms: list[StoredToken],
        grant_type: str | None,
        revoked_by: str | None = None,
    ) -> bool:
        tokens = AccessTokenRepository(session)
        rows = await tokens.find_by_stored_token(forms, states=(TokenState.ACTIVE,))

        revoked_ids = []
        for row in rows:
            if await tokens.transition(
                row.token_id,
                from_states=(TokenState.ACTIVE,),
                to_state=TokenState.REVOKED,
                state_id=_new_state_id(),
                values={
                    "revoked_at": _utcnow(),
                    "revoked_by": revoked_by,
                    "state_changed_by_grant": grant_type,
                },
            ):
                revoked_ids.append(row.token_id)

        await self._retire(session, revoked_ids)
        return bool(revoked_ids)

    async def revoke_by_id(self, token_id: str, acting_user_id: str | None) -> None:
        """Revoke one token by id, recording who revoked it.

        Revoking a token that is no longer active is a no-op.

        Raises:
            OAuthClientError: TOKEN_NOT_FOUND if the id is unknown
        """
        async with self._transaction("revoke_by_id") as session:
            tokens = AccessTokenRepository(session)
            await tokens.get_by_id(token_id)

            revoked = await tokens.transition(
                token_id,
                from_states=(TokenState.ACTIVE,),
                to_state=TokenState.REVOKED,
                state_id=_new_state_id(),
                values={"revoked_at": _utcnow(), "revoked_by": acting_user_id},
            )
            if revoked:
                await self._retire(session, [token_id])

        if revoked:
            logger.info("Token %s revoked by %s", token_id, acting_user_id or "system")
        else:
            logger.debug("Token %s was not active; nothing to revoke", token_id)

    # Reads

    async def get_latest_many(
        self,
        consumer_key: str,
        user: AuthenticatedUser,
        user_store_domain: str | None,
        scope: str | Iterable[str] | None,
        options: LookupOptions = DEFAULT_OPTIONS,
    ) -> list[AccessTokenRecord]:
        """Newest tokens of a logical key, up to ``options.limit``.

        Without ``include_expired`` only ACTIVE rows are considered; callers check
        time-based expiry on the returned record.
        """
        key = self._key(consumer_key, user, user_store_domain, scope, options.binding_ref)
        states = (
            (TokenState.ACTIVE, TokenState.EXPIRED)
            if options.include_expired
            else (TokenState.ACTIVE,)
        )

        async with self._transaction("get_latest") as session:
            rows = await AccessTokenRepository(session).get_latest(
                key.consumer_key,
                key.username,
                key.user_store_domain,
                key.tenant_id,
                key.scope_hash,
                binding_ref=key.binding_ref if options.binding_ref is not None else None,
                states=states,
                limit=options.limit or MAX_LATEST_TOKENS,
            )
            return [self._to_record(row) for row in rows]

    async def get_latest(
        self,
        consumer_key: str,
        user: AuthenticatedUser,
        user_store_domain: str | None,
        scope: str | Iterable[str] | None,
        options: LookupOptions = DEFAULT_OPTIONS,
    ) -> AccessTokenRecord | None:
        """Most recently issued token of a logical key, or None."""
        records = await self.get_latest_many(
            consumer_key,
            user,
            user_store_domain,
            scope,
            options.model_copy(update={"limit": 1}),
        )
        return records[0] if records else None

    async def get_tokens(
        self,
        consumer_key: str,
        user: AuthenticatedUser,
        user_store_domain: str | None = None,
        include_expired: bool = False,
    ) -> list[AccessTokenRecord]:
        """Every token a client holds for a user, across scopes and bindings."""
        domain = self._domain(user, user_store_domain)
        states = (
            (TokenState.ACTIVE, TokenState.EXPIRED)
            if include_expired
            else (TokenState.ACTIVE,)
        )
        async with self._transaction("get_tokens") as session:
            rows = await AccessTokenRepository(session).list_for_client_user(
                consumer_key,
                self._username(user, domain),
                domain,
                user.tenant_id,
                states,
            )
            return [self._to_record(row) for row in rows]

    async def get_active_by_consumer_key(self, consumer_key: str) -> list[AccessTokenRecord]:
        """ACTIVE, unexpired tokens of a client."""
        async with self._transaction("get_active_by_consumer_key") as session:
            rows = await AccessTokenRepository(session).list_active_by_consumer_key(
                consumer_key, _utcnow()
            )
            return [self._to_record(row) for row in rows]

    async def get_active_tokens_by_consumer_key(self, consumer_key: str) -> list[str]:
        """Stored access token values of a client's ACTIVE, unexpired tokens."""
        return [r.access_token for r in await self.get_active_by_consumer_key(consumer_key)]

    async def get_by_user(self, user: AuthenticatedUser) -> list[str]:
        """Stored access token values of a user's ACTIVE tokens across clients."""
        domain = self._domain(user, None)
        async with self._transaction("get_by_user") as session:
            rows = await AccessTokenRepository(session).list_active_by_user(
                self._username(user, domain), domain, user.tenant_id
            )
            return [self._stored_access_token(row) for row in rows]

    async def get_by_tenant(self, tenant_id: int) -> list[AccessTokenRecord]:
        async with self._transaction("get_by_tenant") as session:
            rows = await AccessTokenRepository(session).list_active_by_tenant(tenant_id)
            return [self._to_record(row) for row in rows]

    async def get_by_user_store(
        self,
        tenant_id: int,
        user_store_domain: str,
    ) -> list[AccessTokenRecord]:
        async with self._transaction("get_by_user_store") as session:
            rows = await AccessTokenRepository(session).list_active_by_tenant(
                tenant_id, normalize_user_store_domain(user_store_domain)
            )
            return [self._to_record(row) for row in rows]

    async def get_by_token_id(self, token_id: str) -> AccessTokenRecord | None:
        async with self._transaction("get_by_token_id") as session:
            row = await AccessTokenRepository(session).find(token_id)
            return self._to_record(row) if row is not None else None

    async def get_access_token_by_token_id(self, token_id: str) -> str | None:
        """Stored access token value (digest if hashing is enabled) for an id."""
        record = await self.get_by_token_id(token_id)
        return record.access_token if record is not None else None

    async def get_by_access_token(
        self,
        token: str,
        include_expired: bool = False,
        options: LookupOptions = DEFAULT_OPTIONS,
    ) -> AccessTokenRecord | None:
        """Token record for a caller-supplied access token value."""
        states = LIVE_STATES if include_expired else (TokenState.ACTIVE,)
        forms = self._hasher.lookup_candidates(token, is_hashed=options.is_hashed or None)

        async with self._transaction("get_by_access_token") as session:
            rows = await AccessTokenRepository(session).find_by_stored_token(forms, states)
            return self._to_record(rows[0]) if rows else None

    async def get_token_id_by_access_token(self, token: str) -> str | None:
        """Token id for an access token given as plaintext or as a digest."""
        forms = self._hasher.lookup_candidates(token, is_hashed=None)

        async with self._transaction("get_token_id_by_access_token") as session:
            rows = await AccessTokenRepository(session).find_by_stored_token(forms)
            return rows[0].token_id if rows else None

    # OpenID scope views

    async def get_by_user_for_openid_scope(
        self,
        user: AuthenticatedUser,
    ) -> list[AccessTokenRecord]:
        """ACTIVE tokens of a user that carry the openid scope."""
        self._require(StoreCapability.OPENID_SCOPE_VIEWS)

        domain = self._domain(user, None)
        async with self._transaction("get_by_user_for_openid_scope") as session:
            rows = await AccessTokenRepository(session).list_active_by_user(
                self._username(user, domain), domain, user.tenant_id
            )
            return [self._to_record(row) for row in rows if _has_openid(row)]

    async def get_active_by_consumer_key_for_openid_scope(
        self,
        consumer_key: str,
    ) -> list[AccessTokenRecord]:
        """ACTIVE, unexpired tokens of a client that carry the openid scope."""
        self._require(StoreCapability.OPENID_SCOPE_VIEWS)

        async with self._transaction("get_active_by_consumer_key_for_openid_scope") as session:
            rows = await AccessTokenRepository(session).list_active_by_consumer_key(
                consumer_key, _utcnow()
            )
            return [self._to_record(row) for row in rows if _has_openid(row)]

    # Binding index

    async def store_session_mapping(
        self,
        session_id: str,
        token_id: str,
        tenant_id: int,
    ) -> None:
        """Map a session to a token; storing an existing mapping is a no-op.

        Tokens that are no longer active are not indexed.

        Raises:
            OAuthClientError: TOKEN_NOT_FOUND if the token id is unknown
        """
        self._require(StoreCapability.BINDING_INDEX)

        try:
            async with self._transaction("store_session_mapping") as session:
                row = await AccessTokenRepository(session).find(token_id)
                if row is None:
                    raise OAuthClientError.from_message(
                        TokenErrorMessage.TOKEN_NOT_FOUND, token_id
                    )
                if row.token_state != TokenState.ACTIVE:
                    logger.debug("Not indexing session %s for inactive token %s", session_id, token_id)
                    return
                await TokenSessionRepository(session).add_mapping(session_id, token_id, tenant_id)
        except OAuthClientError as e:
            if e.code != TokenErrorMessage.DUPLICATE_TOKEN.code:
                raise
            logger.debug("Session mapping %s -> %s written concurrently", session_id, token_id)

    async def get_token_ids_by_session(self, session_id: str) -> set[str]:
        """Ids of ACTIVE tokens bound to a session; empty when unknown."""
        self._require(StoreCapability.BINDING_INDEX)

        async with self._transaction("get_token_ids_by_session") as session:
            return await TokenSessionRepository(session).active_token_ids(session_id)

    async def get_by_binding_ref(
        self,
        binding_ref: str,
        user: AuthenticatedUser | None = None,
    ) -> list[AccessTokenRecord]:
        """ACTIVE tokens sharing a binding reference, optionally of one user."""
        self._require(StoreCapability.BINDING_INDEX)

        filters: dict[str, Any] = {}
        if user is not None:
            domain = self._domain(user, None)
            filters = {
                "username": self._username(user, domain),
                "user_store_domain": domain,
                "tenant_id": user.tenant_id,
            }

        async with self._transaction("get_by_binding_ref") as session:
            rows = await AccessTokenRepository(session).list_active_by_binding_ref(
                normalize_binding_ref(binding_ref), **filters
            )
            return [self._to_record(row) for row in rows]

    # User store migration

    async def update_user_store_domain(
        self,
        tenant_id: int,
        current_domain: str,
        new_domain: str,
    ) -> int:
        """Relabel a tenant's tokens from one user store domain to another.

        A single UPDATE statement, so readers see either every row moved or
        none of them.

        Returns:
            Number of rows relabelled
        """
        current = normalize_user_store_domain(current_domain)
        new = normalize_user_store_domain(new_domain)
        if current == new:
            return 0

        async with self._transaction("update_user_store_domain") as session:
            moved = await AccessTokenRepository(session).rename_user_store(
                tenant_id, current, new
            )

        logger.info(
            "Moved %d token(s) of tenant %d from user store %s to %s",
            moved,
            tenant_id,
            current,
            new,
        )
        return moved


def _check_transition(token_id: str, current: TokenState, new: TokenState) -> None:
    if new not in LEGAL_TRANSITIONS[current]:
        raise OAuthClientError.from_message(
            TokenErrorMessage.INVALID_STATE_TRANSITION,
            f"{current} -> {new} for token id {token_id}",
        )


def _has_openid(row: AccessToken) -> bool:
    return OPENID_SCOPE in row.scope.split()


def _plain(token: StoredToken | None) -> str | None:
    return token.value if isinstance(token, PlainToken) else None


def _digest(token: StoredToken | None) -> str | None:
    return token.digest if isinstance(token, HashedToken) else None


def _plain_lookup(token: StoredToken | None) -> str | None:
    return plain_lookup_digest(token.value) if isinstance(token, PlainToken) else None
