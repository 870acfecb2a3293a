from __future__ import annotations


class RemoteError(Exception):
    """Failure reported by (or while reaching) the remote authority."""

    kind = "remote"

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = True) -> None:
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class RemoteTimeoutError(RemoteError):
    kind = "timeout"

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"The server did not respond within {timeout_seconds:g} seconds", status_code=504)


class NotFoundError(RemoteError):
    kind = "not_found"

    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found", status_code=404, retryable=False)


class AuditWriteError(RemoteError):
    kind = "audit_write"
