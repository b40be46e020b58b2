"""One-way hashing and masking of token values."""

import hashlib
import re
from typing import Final, Literal

from pydantic import BaseModel, ConfigDict

ENCODING: Final[str] = "utf-8"
MASK_CHAR: Final[str] = "*"
VISIBLE_CHARS: Final[int] = 4
SUPPORTED_ALGORITHMS: Final[frozenset[str]] = frozenset({"sha256", "sha384", "sha512"})
HASH_COLUMN_LENGTH: Final[int] = 128

_HEX_PATTERN = re.compile(r"^[0-9a-f]+$")


class PlainToken(BaseModel):
    """Token value kept as issued."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["plain"] = "plain"
    value: str


class HashedToken(BaseModel):
    """Token value kept as a one-way digest."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["hashed"] = "hashed"
    digest: str
    algorithm: str


StoredToken = PlainToken | HashedToken


class TokenHasher:
    """Process-wide token hashing policy.

    When disabled every value is stored as issued. When enabled values are
    stored as lowercase hex digests of the configured algorithm.
    """

    def __init__(self, enabled: bool, algorithm: str = "sha256") -> None:
        algorithm = algorithm.lower().replace("-", "")
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported token hash algorithm: {algorithm}")

        self.enabled = enabled
        self.algorithm = algorithm
        self.digest_length = hashlib.new(algorithm).digest_size * 2

    def hash(self, token: str) -> str:
        """Hex digest of a plaintext token."""
        return hashlib.new(self.algorithm, token.encode(ENCODING)).hexdigest()

    def looks_hashed(self, value: str) -> bool:
        """Whether ``value`` has the length and alphabet of a digest."""
        return len(value) == self.digest_length and bool(_HEX_PATTERN.match(value))

    def to_stored(self, token: str, *, is_hashed: bool = False) -> StoredToken:
        """Storage form of a caller-supplied value."""
        if not self.enabled:
            return PlainToken(value=token)
        if is_hashed:
            return HashedToken(digest=token, algorithm=self.algorithm)
        return HashedToken(digest=self.hash(token), algorithm=self.algorithm)

    def lookup_candidates(self, token: str, *, is_hashed: bool | None = None) -> list[StoredToken]:
        """Stored forms that ``token`` may correspond to.

        ``is_hashed`` of ``None`` means the caller does not know: a value
        that looks like a digest is tried both as a digest and as plaintext.
        """
        if not self.enabled:
            return [PlainToken(value=token)]
        if is_hashed:
            return [HashedToken(digest=token, algorithm=self.algorithm)]

        candidates: list[StoredToken] = [
            HashedToken(digest=self.hash(token), algorithm=self.algorithm),
            PlainToken(value=token),
        ]
        if is_hashed is None and self.looks_hashed(token):
            candidates.append(HashedToken(digest=token, algorithm=self.algorithm))
        return candidates


def plain_lookup_digest(token: str) -> str:
    """Fixed-width SHA-256 digest indexing a token kept in plaintext."""
    return hashlib.sha256(token.encode(ENCODING)).hexdigest()


def mask_token(token: str | None) -> str:
    """Mask a token for logs, keeping the last few characters."""
    if not token:
        return ""
    if len(token) <= VISIBLE_CHARS:
        return MASK_CHAR * len(token)
    return MASK_CHAR * (len(token) - VISIBLE_CHARS) + token[-VISIBLE_CHARS:]

