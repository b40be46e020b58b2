"""Dynamic client registration input checks and error builders.

The predicates never raise: they answer with a boolean and explain a
rejection at debug level only.
"""

import logging
import re
from functools import lru_cache
from typing import Final
from urllib.parse import urlsplit

from tokenstore.core.config import DEFAULT_SP_NAME_REGEX, settings
from tokenstore.core.errors import ErrorMessage, OAuthClientError, OAuthServerError

logger = logging.getLogger(__name__)

FRAGMENT_SEPARATOR: Final[str] = "#"

_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*$")
# RFC 3986 unreserved, reserved and percent signs, plus non-ASCII
# characters other than controls and spaces.
_URI_CHARS_PATTERN = re.compile(
    r"^(?:[A-Za-z0-9\-._~:/?#\[\]@!$&'()*+,;=%]|[^\x00-\x9f\s])*\Z"
)
_PERCENT_PATTERN = re.compile(r"%(?![0-9A-Fa-f]{2})")


class DCRMErrorMessage(ErrorMessage):
    """Errors raised while registering or managing OAuth applications."""

    BAD_REQUEST_INVALID_REDIRECT_URI = ("DCR-60001", "Invalid redirect URI: {}", 400)
    BAD_REQUEST_INVALID_BACKCHANNEL_LOGOUT_URI = (
        "DCR-60002",
        "Invalid back-channel logout URI: {}",
        400,
    )
    BAD_REQUEST_INVALID_SP_NAME = (
        "DCR-60003",
        "Client Name is not adhering to the regex: {}",
        400,
    )
    BAD_REQUEST_INVALID_INPUT = ("DCR-60004", "Invalid input: {}", 400)
    CONFLICT_EXISTING_APPLICATION = (
        "DCR-60005",
        "Application with the name {} already exists",
        409,
    )
    NOT_FOUND_APPLICATION_WITH_ID = ("DCR-60006", "Application not available for given client key: {}", 404)
    FORBIDDEN_UNAUTHORIZED_USER = ("DCR-60007", "User does not have access to the application {}", 403)
    FAILED_TO_REGISTER_SP = ("DCR-65001", "Error occurred while creating service provider {}", 500)
    FAILED_TO_GET_SP = ("DCR-65002", "Error occurred while retrieving service provider {}", 500)
    FAILED_TO_UPDATE_SP = ("DCR-65003", "Error occurred while updating service provider {}", 500)
    FAILED_TO_DELETE_SP = ("DCR-65004", "Error occurred while deleting service provider {}", 500)


def _parses_as_uri(uri: str) -> bool:
    """Whether ``uri`` is a syntactically valid RFC 3986 reference."""
    if not _URI_CHARS_PATTERN.match(uri) or _PERCENT_PATTERN.search(uri):
        return False

    # A colon before any of "/?#" delimits a scheme.
    head = re.split(r"[/?#]", uri, maxsplit=1)[0]
    if ":" in head:
        scheme = head.split(":", 1)[0]
        if not _SCHEME_PATTERN.match(scheme):
            return False

    try:
        parts = urlsplit(uri)
        # Raises ValueError on a malformed port.
        parts.port
    except ValueError:
        return False
    return True


def is_redirect_uri_valid(redirect_uri: str | None) -> bool:
    """Check that a redirect URI is present and syntactically valid.

    Args:
        redirect_uri: Redirect URI supplied at registration

    Returns:
        True if the URI is non-blank and parses
    """
    logger.debug("Validating uri: %s", redirect_uri)

    if redirect_uri is None or not redirect_uri.strip():
        logger.debug("The redirection URI is either null or blank.")
        return False

    if not _parses_as_uri(redirect_uri):
        logger.debug("The redirection URI: %s, is not a valid URI.", redirect_uri)
        return False
    return True


def is_backchannel_logout_uri_valid(logout_uri: str | None) -> bool:
    """Check a back-channel logout URI.

    A blank value is accepted since the URI is optional. Otherwise it must
    parse, be absolute and carry no fragment.
    """
    if logout_uri is None or not logout_uri.strip():
        return True

    logger.debug("Validating back-channel logout uri: %s", logout_uri)

    if FRAGMENT_SEPARATOR in logout_uri:
        logger.debug("The back-channel logout URI: %s, contains a fragment component.", logout_uri)
        return False

    if not _parses_as_uri(logout_uri):
        logger.debug("The back-channel logout URI: %s, is not a valid URI.", logout_uri)
        return False

    if not urlsplit(logout_uri).scheme:
        logger.debug("The back-channel logout URI: %s, is not an absolute URI.", logout_uri)
        return False
    return True


def get_sp_validator_regex() -> str:
    """Application name regex from configuration, or the default."""
    regex = settings.SP_NAME_REGEX
    if not regex or not regex.strip():
        return DEFAULT_SP_NAME_REGEX
    return regex


@lru_cache(maxsize=32)
def _compile(regex: str) -> re.Pattern[str]:
    return re.compile(regex)


def is_application_name_valid(name: str | None, regex: str | None = None) -> bool:
    """Check an application name against the whole of ``regex``.

    Args:
        name: Application (service provider) name
        regex: Pattern to use instead of the configured one

    Returns:
        True if the entire name matches
    """
    if name is None:
        logger.debug("The application name is null.")
        return False

    pattern = regex if regex is not None else get_sp_validator_regex()
    try:
        matched = _compile(pattern).fullmatch(name) is not None
    except re.error as e:
        logger.debug("Application name regex %s does not compile: %s", pattern, e)
        return False

    if not matched:
        logger.debug("Application name %s does not match %s", name, pattern)
    return matched


def is_application_role_permission_required() -> bool:
    """Whether viewing an application requires its application role."""
    return settings.DCRM_APPLICATION_ROLE_PERMISSION_REQUIRED_TO_VIEW


def generate_client_error(
    error: ErrorMessage,
    data: str | None = None,
    cause: BaseException | None = None,
) -> OAuthClientError:
    """Client error for ``error`` with ``data`` substituted into its message."""
    return OAuthClientError.from_message(error, data, cause=cause)


def generate_server_error(
    error: ErrorMessage,
    data: str | None = None,
    cause: BaseException | None = None,
) -> OAuthServerError:
    """Server error for ``error`` with ``data`` substituted into its message."""
    return OAuthServerError.from_message(error, data, cause=cause)
