"""Repository package for database operations."""

from tokenstore.repositories.base import BaseRepository
from tokenstore.repositories.session import TokenSessionRepository
from tokenstore.repositories.token import AccessTokenRepository

__all__ = ["AccessTokenRepository", "BaseRepository", "TokenSessionRepository"]
