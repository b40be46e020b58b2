"""Admin API payloads."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from tokenstore.core.security import mask_token
from tokenstore.models.token import TokenState
from tokenstore.schemas.token import AccessTokenRecord


class TokenSummary(BaseModel):
    """Token as shown to operators; the token value itself is masked."""

    token_id: str
    masked_token: str
    consumer_key: str
    username: str
    user_store_domain: str | None
    tenant_id: int
    scopes: list[str]
    grant_type: str | None
    token_state: TokenState
    issued_time: datetime
    expires_at: datetime | None
    token_binding_reference: str

    @classmethod
    def from_record(cls, record: AccessTokenRecord) -> "TokenSummary":
        user = record.authenticated_user
        return cls(
            token_id=record.token_id,
            masked_token=mask_token(record.access_token),
            consumer_key=record.consumer_key,
            username=user.username,
            user_store_domain=user.user_store_domain,
            tenant_id=user.tenant_id,
            scopes=sorted(record.scopes),
            grant_type=record.grant_type,
            token_state=record.token_state,
            issued_time=record.issued_time,
            expires_at=record.expires_at,
            token_binding_reference=record.token_binding_reference,
        )


class UserStoreRename(BaseModel):
    new_domain: str = Field(min_length=1, max_length=64, examples=["SECONDARY"])

    @field_validator("new_domain")
    @classmethod
    def validate_domain(cls, v: str) -> str:
        v = v.strip()
        assert v, "Domain cannot be blank"
        return v


class UserStoreRenameResponse(BaseModel):
    tenant_id: int
    old_domain: str
    new_domain: str
    moved: int = Field(description="Number of token rows relabelled")


class SessionTokens(BaseModel):
    session_id: str
    token_ids: list[str]
