"""Session to token mapping table."""

from typing import Final

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tokenstore.models.base import Base
from tokenstore.models.token import MAX_TOKEN_ID_LENGTH

MAX_SESSION_ID_LENGTH: Final[int] = 255


class TokenSessionMapping(Base):
    """Join row between a session (or other binding reference) and a token."""

    __tablename__ = "oauth_token_session_mappings"

    session_id: Mapped[str] = mapped_column(
        String(MAX_SESSION_ID_LENGTH),
        primary_key=True,
        comment="Session identifier or token binding reference",
    )
    token_id: Mapped[str] = mapped_column(
        ForeignKey("oauth_access_tokens.token_id", ondelete="CASCADE"),
        primary_key=True,
    )
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_oauth_token_session_mappings_token", "token_id"),
    )

    def __repr__(self) -> str:
        """String representation of TokenSessionMapping model."""
        return f"<TokenSessionMapping {self.session_id} -> {self.token_id}>"
