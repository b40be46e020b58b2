"""Test cases for lookup key normalization."""

from tokenstore.utils.identity import (
    canonical_scope,
    normalize_binding_ref,
    normalize_user_store_domain,
    normalize_username,
    scope_hash,
)


def test_canonical_scope() -> None:
    """Test scopes are sorted, de-duplicated and single spaced."""
    assert canonical_scope("write  read read") == "read write"
    assert canonical_scope(["openid", "email"]) == "email openid"
    assert canonical_scope(None) == ""
    assert canonical_scope([]) == ""


def test_scope_hash_is_order_insensitive() -> None:
    assert scope_hash("a b") == scope_hash(["b", "a"])
    assert scope_hash("a") != scope_hash("a b")
    assert len(scope_hash("")) == 64


def test_normalize_binding_ref() -> None:
    assert normalize_binding_ref(None) == "NONE"
    assert normalize_binding_ref(" ") == "NONE"
    assert normalize_binding_ref("sess-1") == "sess-1"


def test_normalize_user_store_domain() -> None:
    assert normalize_user_store_domain("secondary") == "SECONDARY"
    assert normalize_user_store_domain(None) == "PRIMARY"
    assert normalize_user_store_domain("", is_federated=True) == "FEDERATED"


def test_normalize_username() -> None:
    """Test case folding follows the resolver."""
    assert normalize_username(" Alice ", 1, "PRIMARY", lambda t, d: True) == "Alice"
    assert normalize_username("Alice", 1, "PRIMARY", lambda t, d: False) == "alice"
