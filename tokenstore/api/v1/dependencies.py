"""FastAPI dependencies for the admin API."""

import logging
import secrets
from typing import Annotated, Final

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tokenstore.core.config import settings
from tokenstore.core.security import TokenHasher
from tokenstore.db.postgres import AsyncSessionLocal
from tokenstore.services.token import TokenStore

logger = logging.getLogger(__name__)

MAX_TOKEN_LENGTH: Final[int] = 1024
AUTH_SCHEME: Final[str] = "Bearer"

bearer_scheme = HTTPBearer(
    auto_error=False,
    description="Static admin bearer token following RFC 6750",
    scheme_name=AUTH_SCHEME,
)

_token_store: TokenStore | None = None


def get_token_store() -> TokenStore:
    """Process-wide token store bound to the application database."""
    global _token_store
    if _token_store is None:
        _token_store = TokenStore(
            AsyncSessionLocal,
            TokenHasher(settings.TOKEN_HASHING_ENABLED, settings.TOKEN_HASH_ALGORITHM),
        )
    return _token_store


async def require_admin(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> str:
    """Check the admin bearer token.

    Returns:
        Identifier recorded as the acting user of admin operations

    Raises:
        HTTPException: If the admin API is disabled or the token is wrong
    """
    expected = settings.ADMIN_API_TOKEN
    if expected is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API is disabled",
        )

    if credentials is None or len(credentials.credentials) > MAX_TOKEN_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or malformed bearer token",
            headers={"WWW-Authenticate": AUTH_SCHEME},
        )

    if not secrets.compare_digest(
        credentials.credentials.encode(),
        expected.get_secret_value().encode(),
    ):
        logger.warning("Rejected admin API call with an invalid bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token",
            headers={"WWW-Authenticate": AUTH_SCHEME},
        )

    return "admin"


Store = Annotated[TokenStore, Depends(get_token_store)]
Admin = Annotated[str, Depends(require_admin)]
