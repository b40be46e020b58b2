"""Canonical lookup keys for stored tokens."""

import hashlib
from collections.abc import Callable, Iterable
from typing import Final, NamedTuple

from tokenstore.core.config import settings

NO_BINDING: Final[str] = "NONE"
PRIMARY_USER_STORE: Final[str] = "PRIMARY"
FEDERATED_USER_STORE: Final[str] = "FEDERATED"
SCOPE_SEPARATOR: Final[str] = " "

CaseSensitivityResolver = Callable[[int, str], bool]


class TokenKey(NamedTuple):
    """Logical key under which at most one token is active."""

    consumer_key: str
    username: str
    user_store_domain: str
    tenant_id: int
    scope_hash: str
    binding_ref: str


def canonical_scope(scopes: str | Iterable[str] | None) -> str:
    """Sorted, de-duplicated, single-space joined scope string."""
    if scopes is None:
        return ""
    if isinstance(scopes, str):
        scopes = scopes.split()
    return SCOPE_SEPARATOR.join(sorted({s.strip() for s in scopes if s and s.strip()}))


def scope_hash(scopes: str | Iterable[str] | None) -> str:
    """Fixed-width digest of the canonical scope, used in indexes."""
    return hashlib.sha256(canonical_scope(scopes).encode("utf-8")).hexdigest()


def normalize_binding_ref(binding_ref: str | None) -> str:
    if binding_ref is None or not binding_ref.strip():
        return NO_BINDING
    return binding_ref


def normalize_user_store_domain(domain: str | None, *, is_federated: bool = False) -> str:
    if domain is None or not domain.strip():
        return FEDERATED_USER_STORE if is_federated else PRIMARY_USER_STORE
    return domain.strip().upper()


def default_case_sensitivity(tenant_id: int, user_store_domain: str) -> bool:
    """Username case sensitivity from configuration."""
    if tenant_id in settings.CASE_INSENSITIVE_TENANTS:
        return False
    return settings.USERNAME_CASE_SENSITIVE


def normalize_username(
    username: str,
    tenant_id: int,
    user_store_domain: str,
    is_case_sensitive: CaseSensitivityResolver = default_case_sensitivity,
) -> str:
    username = username.strip()
    if is_case_sensitive(tenant_id, user_store_domain):
        return username
    return username.lower()
