"""Access token value objects."""

from datetime import UTC, datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tokenstore.models.token import ACTIVE_STATE_ID, MAX_LIST_SIZE, TokenState
from tokenstore.utils.identity import NO_BINDING, canonical_scope, normalize_binding_ref


class StoreCapability(StrEnum):
    """Optional parts of the token store contract."""

    BINDING_INDEX = "binding_index"
    OPENID_SCOPE_VIEWS = "openid_scope_views"
    CONSENT_FLAG = "consent_flag"


class RevocationMode(StrEnum):
    """How a list of tokens is revoked.

    BATCH: one transaction, all or nothing.
    INDIVIDUAL: one transaction per token, partial success reported.
    """

    BATCH = "batch"
    INDIVIDUAL = "individual"


class AuthenticatedUser(BaseModel):
    """Owner of a token as seen by the store."""

    model_config = ConfigDict(frozen=True)

    username: str = Field(min_length=1, max_length=255, description="Username without domain")
    user_store_domain: str | None = Field(
        default=None,
        max_length=64,
        description="User store that authenticated the user",
    )
    tenant_id: int = Field(description="Numeric tenant identifier")
    is_federated: bool = Field(default=False, description="Authenticated by a federated IdP")


class AccessTokenRecord(BaseModel):
    """A stored access token.

    On reads ``access_token`` and ``refresh_token`` hold whatever the store
    persisted: the plaintext, or its digest when hashing is enabled.
    """

    token_id: str = Field(min_length=1, max_length=64)
    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    refresh_token_id: str | None = Field(default=None, max_length=64)
    consumer_key: str = Field(min_length=1, max_length=255)
    authenticated_user: AuthenticatedUser
    scopes: frozenset[str] = Field(default_factory=frozenset)
    grant_type: str | None = Field(default=None, max_length=64)
    token_state: TokenState = TokenState.ACTIVE
    token_state_id: str = ACTIVE_STATE_ID
    issued_time: datetime
    refresh_token_issued_time: datetime | None = None
    validity_period_ms: int = Field(description="Negative means the token never expires")
    refresh_token_validity_period_ms: int = 0
    token_binding_reference: str = NO_BINDING
    is_consented_grant: bool = False

    @field_validator("scopes", mode="before")
    @classmethod
    def split_scopes(cls, v: object) -> object:
        if v is None:
            return frozenset()
        if isinstance(v, str):
            return frozenset(v.split())
        return v

    @field_validator("token_binding_reference", mode="before")
    @classmethod
    def default_binding(cls, v: str | None) -> str:
        return normalize_binding_ref(v)

    @field_validator("issued_time", "refresh_token_issued_time")
    @classmethod
    def validate_timestamps(cls, v: datetime | None) -> datetime | None:
        """Ensure timestamps are UTC."""
        if v is None:
            return v
        assert v.tzinfo is not None, "Timestamp must be timezone-aware"
        return v.astimezone(UTC)

    @property
    def scope(self) -> str:
        return canonical_scope(self.scopes)

    @property
    def expires_at(self) -> datetime | None:
        if self.validity_period_ms < 0:
            return None
        return self.issued_time + timedelta(milliseconds=self.validity_period_ms)

    def is_expired(self, now: datetime | None = None) -> bool:
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return expires_at <= (now or datetime.now(UTC))


class LookupOptions(BaseModel):
    """Optional knobs shared by the store's lookups and writes."""

    model_config = ConfigDict(frozen=True)

    binding_ref: str | None = Field(
        default=None,
        description="Required binding; None ignores binding altogether",
    )
    include_expired: bool = False
    limit: int | None = Field(default=None, gt=0, le=MAX_LIST_SIZE)
    grant_type: str | None = None
    is_hashed: bool = Field(
        default=False,
        description="Caller-supplied token values are already digests",
    )


class RevocationResult(BaseModel):
    """Outcome of revoking a list of token values."""

    revoked: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(
        default_factory=list,
        description="Values matching no active token: unknown or already inactive",
    )
    failed: list[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failed


__all__ = [
    "AccessTokenRecord",
    "AuthenticatedUser",
    "LookupOptions",
    "RevocationMode",
    "RevocationResult",
    "StoreCapability",
]
