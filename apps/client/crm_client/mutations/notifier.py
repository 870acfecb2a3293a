from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, Protocol


logger = logging.getLogger("crm_client.notify")

RetryAction = Callable[[], Awaitable[Any]]


class NotificationKind(StrEnum):
    SUCCESS = "success"
    ERROR = "error"


class Notifier(Protocol):
    """User-facing feedback sink. Must return promptly; callers never wait on it."""

    def notify(
        self,
        kind: NotificationKind,
        message: str,
        *,
        description: str | None = None,
        retry: RetryAction | None = None,
    ) -> None: ...


class LoggingNotifier:
    def notify(
        self,
        kind: NotificationKind,
        message: str,
        *,
        description: str | None = None,
        retry: RetryAction | None = None,
    ) -> None:
        level = logging.INFO if kind is NotificationKind.SUCCESS else logging.WARNING
        logger.log(
            level,
            message,
            extra={"notification_kind": kind.value, "error": description},
        )
