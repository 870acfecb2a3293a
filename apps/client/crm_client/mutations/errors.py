from __future__ import annotations

from crm_client.remote.errors import RemoteError
from crm_client.security.errors import AuthorizationError


UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"


def resolve_error_message(error: BaseException | str | None) -> str:
    if isinstance(error, (RemoteError, AuthorizationError)):
        return getattr(error, "message", None) or UNEXPECTED_ERROR_MESSAGE
    if isinstance(error, BaseException):
        return str(error) or UNEXPECTED_ERROR_MESSAGE
    if isinstance(error, str) and error:
        return error
    return UNEXPECTED_ERROR_MESSAGE


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, AuthorizationError):
        return False
    if isinstance(error, RemoteError):
        return error.retryable
    return True


def error_kind(error: BaseException) -> str:
    if isinstance(error, RemoteError):
        return error.kind
    return error.__class__.__name__
