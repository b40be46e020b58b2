"""Test cases for token hashing and masking."""

import hashlib

import pytest

from tokenstore.core.security import (
    HashedToken,
    PlainToken,
    TokenHasher,
    mask_token,
    plain_lookup_digest,
)


def test_disabled_hasher_keeps_plaintext() -> None:
    hasher = TokenHasher(enabled=False)

    assert hasher.to_stored("abc") == PlainToken(value="abc")
    assert hasher.lookup_candidates("abc", is_hashed=None) == [PlainToken(value="abc")]


def test_enabled_hasher_stores_digest() -> None:
    """Test digests match the configured algorithm."""
    hasher = TokenHasher(enabled=True, algorithm="SHA-512")

    stored = hasher.to_stored("abc")

    assert isinstance(stored, HashedToken)
    assert stored.digest == hashlib.sha512(b"abc").hexdigest()
    assert stored.algorithm == "sha512"
    assert hasher.to_stored(stored.digest, is_hashed=True) == stored


def test_lookup_candidates_for_unknown_form() -> None:
    """Test a digest-looking value is tried as both forms."""
    hasher = TokenHasher(enabled=True)
    digest = hasher.hash("abc")

    candidates = hasher.lookup_candidates(digest, is_hashed=None)

    assert HashedToken(digest=digest, algorithm="sha256") in candidates
    assert HashedToken(digest=hasher.hash(digest), algorithm="sha256") in candidates
    assert len(hasher.lookup_candidates("abc", is_hashed=None)) == 2
    assert hasher.lookup_candidates(digest, is_hashed=True) == [
        HashedToken(digest=digest, algorithm="sha256")
    ]


def test_looks_hashed() -> None:
    hasher = TokenHasher(enabled=True)

    assert hasher.looks_hashed(hasher.hash("x"))
    assert not hasher.looks_hashed("x" * 64)
    assert not hasher.looks_hashed(hasher.hash("x")[:-1])


def test_unsupported_algorithm() -> None:
    with pytest.raises(ValueError):
        TokenHasher(enabled=True, algorithm="md5")


@pytest.mark.parametrize(
    ("token", "masked"),
    [
        (None, ""),
        ("", ""),
        ("abc", "***"),
        ("abcdefgh", "****efgh"),
    ],
)
def test_mask_token(token: str | None, masked: str) -> None:
    assert mask_token(token) == masked


def test_plain_lookup_digest_is_fixed_width() -> None:
    """Test plaintext of any length indexes as one sha256 digest."""
    short = plain_lookup_digest("abc")
    long = plain_lookup_digest("x" * 10_000)

    assert short == hashlib.sha256(b"abc").hexdigest()
    assert len(short) == len(long) == 64
