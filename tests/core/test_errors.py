"""Test cases for error catalogue formatting."""

from tokenstore.core.errors import OAuthClientError, OAuthServerError, TokenErrorMessage


def test_message_substitution() -> None:
    assert TokenErrorMessage.TOKEN_NOT_FOUND.format("T1") == "Access token not found for id: T1"
    assert TokenErrorMessage.TOKEN_NOT_FOUND.format() == "Access token not found for id"
    assert TokenErrorMessage.TOKEN_NOT_FOUND.format("  ") == "Access token not found for id"


def test_errors_from_catalogue() -> None:
    """Test codes, statuses and causes carried by errors."""
    cause = RuntimeError("connection reset")
    error = OAuthServerError.from_message(TokenErrorMessage.DATABASE_ERROR, "insert", cause=cause)

    assert error.code == "TKN-65001"
    assert error.status_code == 503
    assert error.__cause__ is cause
    assert str(error) == "Error while accessing the token store: insert"

    client_error = OAuthClientError("CUSTOM", "bad input")
    assert client_error.status_code == 400
    assert client_error.__cause__ is None
