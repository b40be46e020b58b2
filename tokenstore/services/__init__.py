"""Service layer."""

from tokenstore.services.token import TokenStore

__all__ = ["TokenStore"]
