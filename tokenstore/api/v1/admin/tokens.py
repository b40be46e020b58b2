"""Admin endpoints over stored access tokens."""

import logging

from fastapi import APIRouter, HTTPException, Query, status

from tokenstore.api.v1.dependencies import Admin, Store
from tokenstore.schemas.admin import (
    SessionTokens,
    TokenSummary,
    UserStoreRename,
    UserStoreRenameResponse,
)
from tokenstore.utils.identity import normalize_user_store_domain

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tokens", tags=["admin"])


@router.get("/tenants/{tenant_id}", response_model=list[TokenSummary])
async def list_tenant_tokens(
    tenant_id: int,
    store: Store,
    _: Admin,
    user_store_domain: str | None = Query(default=None, max_length=64),
) -> list[TokenSummary]:
    """List active tokens of a tenant.

    Args:
        tenant_id: Tenant to list
        store: Token store
        _: Acting admin
        user_store_domain: Restrict to one user store

    Returns:
        Active tokens, newest first
    """
    if user_store_domain:
        records = await store.get_by_user_store(tenant_id, user_store_domain)
    else:
        records = await store.get_by_tenant(tenant_id)
    return [TokenSummary.from_record(r) for r in records]


@router.get("/sessions/{session_id}", response_model=SessionTokens)
async def get_session_tokens(session_id: str, store: Store, _: Admin) -> SessionTokens:
    """Ids of the active tokens bound to a session."""
    token_ids = await store.get_token_ids_by_session(session_id)
    return SessionTokens(session_id=session_id, token_ids=sorted(token_ids))


@router.get("/{token_id}", response_model=TokenSummary)
async def get_token(token_id: str, store: Store, _: Admin) -> TokenSummary:
    """Get one token by id.

    Raises:
        HTTPException: If the token does not exist
    """
    record = await store.get_by_token_id(token_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Token not found",
        )
    return TokenSummary.from_record(record)


@router.post("/{token_id}/revoke", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_token(token_id: str, store: Store, admin: Admin) -> None:
    """Revoke a token; revoking an inactive token succeeds without change."""
    await store.revoke_by_id(token_id, admin)
    logger.info("Admin %s requested revocation of token %s", admin, token_id)


@router.put(
    "/tenants/{tenant_id}/user-stores/{old_domain}",
    response_model=UserStoreRenameResponse,
)
async def rename_user_store(
    tenant_id: int,
    old_domain: str,
    body: UserStoreRename,
    store: Store,
    _: Admin,
) -> UserStoreRenameResponse:
    """Move every token of a tenant from one user store domain to another."""
    moved = await store.update_user_store_domain(tenant_id, old_domain, body.new_domain)
    return UserStoreRenameResponse(
        tenant_id=tenant_id,
        old_domain=normalize_user_store_domain(old_domain),
        new_domain=normalize_user_store_domain(body.new_domain),
        moved=moved,
    )
