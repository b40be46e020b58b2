"""Access token table."""

from datetime import datetime
from enum import StrEnum
from typing import Final

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Index, Integer, String, Text, text
from sqlalchemy import Enum as SQLAEnum
from sqlalchemy.orm import Mapped, mapped_column

from tokenstore.core.security import HASH_COLUMN_LENGTH
from tokenstore.models.base import Base, UTCDateTime

MAX_TOKEN_ID_LENGTH: Final[int] = 64
MAX_CONSUMER_KEY_LENGTH: Final[int] = 255
MAX_USERNAME_LENGTH: Final[int] = 255
MAX_DOMAIN_LENGTH: Final[int] = 64
MAX_GRANT_TYPE_LENGTH: Final[int] = 64
MAX_BINDING_REF_LENGTH: Final[int] = 255
PLAIN_DIGEST_LENGTH: Final[int] = 64

ACTIVE_STATE_ID: Final[str] = "NONE"
MAX_LIST_SIZE: Final[int] = 10_000


class TokenState(StrEnum):
    """Lifecycle states of a stored access token."""

    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    INACTIVE = "INACTIVE"


class AccessToken(Base):
    """Persisted access token.

    Exactly one of ``access_token``/``access_token_hash`` is set, depending on
    the hashing policy in force when the row was written. Active rows carry the
    state id ``NONE``; every transition out of ``ACTIVE`` assigns a fresh one so
    that the logical-key unique index admits one active row and any number of
    historical rows.
    """

    __tablename__ = "oauth_access_tokens"

    token_id: Mapped[str] = mapped_column(
        String(MAX_TOKEN_ID_LENGTH),
        primary_key=True,
        comment="Stable token identifier",
    )
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    access_token_plain_digest: Mapped[str | None] = mapped_column(
        String(PLAIN_DIGEST_LENGTH),
        nullable=True,
        comment="SHA-256 of access_token; indexed in its place",
    )
    access_token_hash: Mapped[str | None] = mapped_column(
        String(HASH_COLUMN_LENGTH),
        nullable=True,
    )
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    refresh_token_hash: Mapped[str | None] = mapped_column(
        String(HASH_COLUMN_LENGTH),
        nullable=True,
    )
    refresh_token_id: Mapped[str | None] = mapped_column(
        String(MAX_TOKEN_ID_LENGTH),
        nullable=True,
    )

    consumer_key: Mapped[str] = mapped_column(
        String(MAX_CONSUMER_KEY_LENGTH),
        nullable=False,
        index=True,
    )
    authz_user: Mapped[str] = mapped_column(
        String(MAX_USERNAME_LENGTH),
        nullable=False,
        comment="Normalized username",
    )
    user_store_domain: Mapped[str] = mapped_column(
        String(MAX_DOMAIN_LENGTH),
        nullable=False,
    )
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    is_federated: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )

    scope: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="",
        comment="Canonical space separated scope",
    )
    scope_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    grant_type: Mapped[str | None] = mapped_column(
        String(MAX_GRANT_TYPE_LENGTH),
        nullable=True,
    )

    token_state: Mapped[TokenState] = mapped_column(
        SQLAEnum(TokenState, values_callable=lambda obj: [e.value for e in obj],
                 create_constraint=True, native_enum=False, length=20,
                 name="token_state"),
        nullable=False,
        default=TokenState.ACTIVE,
    )
    token_state_id: Mapped[str] = mapped_column(
        String(MAX_TOKEN_ID_LENGTH),
        nullable=False,
        default=ACTIVE_STATE_ID,
    )

    issued_time: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    refresh_token_issued_time: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )
    validity_period_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    refresh_token_validity_period_ms: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
    expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="issued_time + validity; NULL never expires",
    )

    token_binding_ref: Mapped[str] = mapped_column(
        String(MAX_BINDING_REF_LENGTH),
        nullable=False,
        default="NONE",
        index=True,
    )
    is_consented_grant: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )

    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(
        String(MAX_USERNAME_LENGTH),
        nullable=True,
        comment="Acting user of an explicit revocation",
    )
    state_changed_by_grant: Mapped[str | None] = mapped_column(
        String(MAX_GRANT_TYPE_LENGTH),
        nullable=True,
    )

    __table_args__ = (
        Index(
            "uq_oauth_access_tokens_app_key",
            "consumer_key",
            "authz_user",
            "user_store_domain",
            "tenant_id",
            "scope_hash",
            "token_binding_ref",
            "token_state",
            "token_state_id",
            unique=True,
        ),
        Index(
            "uq_oauth_access_tokens_hash",
            "access_token_hash",
            unique=True,
            postgresql_where=text("token_state <> 'INACTIVE'"),
            sqlite_where=text("token_state <> 'INACTIVE'"),
        ),
        Index(
            "uq_oauth_access_tokens_plain",
            "access_token_plain_digest",
            unique=True,
            postgresql_where=text("token_state <> 'INACTIVE'"),
            sqlite_where=text("token_state <> 'INACTIVE'"),
        ),
        Index("ix_oauth_access_tokens_user_store", "tenant_id", "user_store_domain"),
        Index("ix_oauth_access_tokens_user", "authz_user", "tenant_id", "token_state"),
        CheckConstraint(
            "(access_token IS NULL) <> (access_token_hash IS NULL)",
            name="ck_oauth_access_tokens_single_form",
        ),
        CheckConstraint(
            "(access_token IS NULL) = (access_token_plain_digest IS NULL)",
            name="ck_oauth_access_tokens_plain_digest",
        ),
    )

    def __repr__(self) -> str:
        """String representation of AccessToken model."""
        return f"<AccessToken {self.token_id} {self.token_state}>"
