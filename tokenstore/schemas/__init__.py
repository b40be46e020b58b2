"""Pydantic schemas for token records and the admin API."""

from tokenstore.schemas.admin import (
    SessionTokens,
    TokenSummary,
    UserStoreRename,
    UserStoreRenameResponse,
)
from tokenstore.schemas.token import (
    AccessTokenRecord,
    AuthenticatedUser,
    LookupOptions,
    RevocationMode,
    RevocationResult,
    StoreCapability,
)

__all__ = [
    "AccessTokenRecord",
    "AuthenticatedUser",
    "LookupOptions",
    "RevocationMode",
    "RevocationResult",
    "SessionTokens",
    "StoreCapability",
    "TokenSummary",
    "UserStoreRename",
    "UserStoreRenameResponse",
]
