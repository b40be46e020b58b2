"""Error categories and RFC 7807 problem details for the token store."""

from enum import Enum
from http import HTTPStatus
from typing import Any, Final, Self

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

DEFAULT_ERROR_TYPE: Final[str] = "about:blank"
VALIDATION_ERROR_TYPE: Final[str] = "urn:ietf:params:rfc:7807:validation"
AUTH_ERROR_TYPE: Final[str] = "urn:ietf:params:rfc:7807:auth"
RESOURCE_ERROR_TYPE: Final[str] = "urn:ietf:params:rfc:7231:status:404"
CONFLICT_ERROR_TYPE: Final[str] = "urn:ietf:params:rfc:7231:status:409"
SERVER_ERROR_TYPE: Final[str] = "urn:ietf:params:rfc:7231:status:500"

MAX_INSTANCE_LENGTH: Final[int] = 255

ERROR_CODES: Final[dict[int, str]] = {
    status.HTTP_401_UNAUTHORIZED: "AUTH001",
    status.HTTP_403_FORBIDDEN: "AUTH002",
    status.HTTP_404_NOT_FOUND: "RESOURCE001",
    status.HTTP_409_CONFLICT: "RESOURCE002",
    status.HTTP_400_BAD_REQUEST: "VALIDATION001",
    status.HTTP_422_UNPROCESSABLE_ENTITY: "VALIDATION002",
    status.HTTP_500_INTERNAL_SERVER_ERROR: "SERVER001",
    status.HTTP_501_NOT_IMPLEMENTED: "SERVER003",
    status.HTTP_503_SERVICE_UNAVAILABLE: "SERVER002",
}

ERROR_TYPES: Final[dict[int, str]] = {
    status.HTTP_400_BAD_REQUEST: VALIDATION_ERROR_TYPE,
    status.HTTP_401_UNAUTHORIZED: AUTH_ERROR_TYPE,
    status.HTTP_403_FORBIDDEN: AUTH_ERROR_TYPE,
    status.HTTP_404_NOT_FOUND: RESOURCE_ERROR_TYPE,
    status.HTTP_409_CONFLICT: CONFLICT_ERROR_TYPE,
    status.HTTP_422_UNPROCESSABLE_ENTITY: VALIDATION_ERROR_TYPE,
    status.HTTP_500_INTERNAL_SERVER_ERROR: SERVER_ERROR_TYPE,
    status.HTTP_501_NOT_IMPLEMENTED: SERVER_ERROR_TYPE,
    status.HTTP_503_SERVICE_UNAVAILABLE: SERVER_ERROR_TYPE,
}

JSON_CONTENT_TYPE: Final[str] = "application/problem+json"

CACHE_CONTROL: Final[str] = "no-store, no-cache, must-revalidate"


class ProblemDetail(BaseModel):
    """RFC 7807 Problem Details for HTTP APIs."""

    type: str = Field(default=DEFAULT_ERROR_TYPE)
    title: str
    status: int
    detail: str
    instance: str = Field(max_length=MAX_INSTANCE_LENGTH)
    code: str | None = None
    errors: list[dict[str, Any]] | None = None


def truncate_url(url: str, max_length: int = MAX_INSTANCE_LENGTH) -> str:
    """Truncate URL to max length while preserving the path.

    Args:
        url: URL to truncate
        max_length: Maximum length allowed

    Returns:
        Truncated URL with path preserved
    """
    if len(url) <= max_length:
        return url

    path = url.split("?")[0]
    if len(path) > max_length:
        return path[:max_length-3] + "..."
    return path


def _problem_response(
    request: Request,
    status_code: int,
    detail: str,
    code: str | None,
    headers: dict[str, str] | None = None,
    errors: list[dict[str, Any]] | None = None,
) -> JSONResponse:
    problem = ProblemDetail(
        type=ERROR_TYPES.get(status_code, DEFAULT_ERROR_TYPE),
        title=HTTPStatus(status_code).phrase,
        status=status_code,
        detail=detail,
        instance=truncate_url(str(request.url)),
        code=code,
        errors=errors,
    )

    response_headers = {
        "Content-Type": JSON_CONTENT_TYPE,
        "Cache-Control": CACHE_CONTROL,
    }
    if headers:
        response_headers.update(headers)

    return JSONResponse(
        status_code=status_code,
        content=problem.model_dump(exclude_none=True),
        headers=response_headers,
    )


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions by converting to RFC 7807 problem details."""
    return _problem_response(
        request,
        exc.status_code,
        str(exc.detail),
        ERROR_CODES.get(exc.status_code),
        headers=exc.headers,
    )


async def validation_error_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle validation errors by converting to RFC 7807 problem details."""
    return _problem_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Request validation failed",
        ERROR_CODES[status.HTTP_422_UNPROCESSABLE_ENTITY],
        errors=[
            {
                "loc": err["loc"],
                "msg": err["msg"],
                "type": err["type"],
            }
            for err in exc.errors()
        ],
    )


async def oauth_error_handler(request: Request, exc: "OAuthError") -> JSONResponse:
    """Render client and server errors as problem details carrying their code."""
    return _problem_response(request, exc.status_code, exc.message, exc.code)


class AppError(Exception):
    """Base error class for application errors."""

    def __init__(self, message: str, details: Any = None) -> None:
        """Initialize error with message and optional details.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details


class RepositoryError(AppError):
    """Base error class for repository layer errors."""


class DatabaseError(RepositoryError):
    """Error raised when a database operation fails."""


class DuplicateError(DatabaseError):
    """Error raised when a unique constraint is violated."""


class NotFoundError(RepositoryError):
    """Error raised when a requested resource is not found."""


class ErrorMessage(Enum):
    """Catalogue entry: stable code, message template and HTTP status.

    Templates carry at most one ``{}`` slot, filled by :meth:`format`.
    """

    def __init__(self, code: str, template: str, status_code: int | None = None) -> None:
        self.code = code
        self.template = template
        self.status_code = status_code

    def format(self, data: str | None = None) -> str:
        if data is not None and data.strip():
            return self.template.format(data)
        return self.template.replace("{}", "").rstrip(" :,")


class TokenErrorMessage(ErrorMessage):
    """Errors raised by the token store."""

    TOKEN_NOT_FOUND = ("TKN-60001", "Access token not found for id: {}", 404)
    DUPLICATE_TOKEN = ("TKN-60002", "Access token already persisted: {}", 409)
    INVALID_STATE_TRANSITION = ("TKN-60003", "Illegal token state transition: {}", 400)
    INVALID_TOKEN_RECORD = ("TKN-60004", "Malformed access token record: {}", 400)
    DATABASE_ERROR = ("TKN-65001", "Error while accessing the token store: {}", 503)
    UNSUPPORTED_OPERATION = ("TKN-65002", "Operation not supported by this token store: {}", 501)
    CONCURRENT_MODIFICATION = ("TKN-65003", "Token modified concurrently: {}", 503)


class OAuthError(AppError):
    """Categorized error crossing the store boundary."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        code: str,
        message: str,
        cause: BaseException | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, details=code)
        self.code = code
        if status_code is not None:
            self.status_code = status_code
        if cause is not None:
            self.__cause__ = cause

    @classmethod
    def from_message(
        cls,
        error: ErrorMessage,
        data: str | None = None,
        cause: BaseException | None = None,
    ) -> Self:
        """Build an error from a catalogue entry and one substitution value."""
        return cls(error.code, error.format(data), cause=cause, status_code=error.status_code)


class OAuthClientError(OAuthError):
    """Malformed request or reference to an absent entity; not retryable as is."""

    status_code = status.HTTP_400_BAD_REQUEST


class OAuthServerError(OAuthError):
    """Transient or internal failure; callers may retry."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
