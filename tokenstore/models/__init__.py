"""Models package for database models."""

from tokenstore.models.base import Base
from tokenstore.models.session import TokenSessionMapping
from tokenstore.models.token import ACTIVE_STATE_ID, AccessToken, TokenState

__all__ = ["ACTIVE_STATE_ID", "AccessToken", "Base", "TokenSessionMapping", "TokenState"]
