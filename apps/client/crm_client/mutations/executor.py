from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeVar

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from crm_client.context import reset_mutation_id, set_mutation_id
from crm_client.core.config import Settings, get_settings
from crm_client.metrics import observe_mutation, observe_mutation_rollback
from crm_client.mutations.errors import error_kind, is_retryable, resolve_error_message
from crm_client.mutations.notifier import NotificationKind, Notifier, RetryAction
from crm_client.remote.timeouts import await_with_timeout


T = TypeVar("T")

logger = logging.getLogger("crm_client.mutations")
tracer = trace.get_tracer("crm_client.mutations.executor")

TEMP_ID_PREFIX = "temp-"


def new_temp_id() -> str:
    return f"{TEMP_ID_PREFIX}{uuid.uuid4()}"


def is_temp_id(value: str) -> bool:
    return value.startswith(TEMP_ID_PREFIX)


class MutationState(StrEnum):
    PENDING = "pending"
    OPTIMISTIC = "optimistic"
    RECONCILED = "reconciled"
    ROLLED_BACK = "rolled_back"


_TRANSITIONS = {
    MutationState.PENDING: {MutationState.OPTIMISTIC},
    MutationState.OPTIMISTIC: {MutationState.RECONCILED, MutationState.ROLLED_BACK},
    MutationState.RECONCILED: set(),
    MutationState.ROLLED_BACK: set(),
}


class InvalidMutationTransition(RuntimeError):
    pass


@dataclass(slots=True)
class MutationRequest:
    entity_type: str
    success_message: str
    error_message: str
    temp_id: str = field(default_factory=new_temp_id)
    speculative: Any = None
    state: MutationState = MutationState.PENDING
    started_at: float = field(default_factory=time.perf_counter)
    error: BaseException | None = None

    def transition(self, state: MutationState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise InvalidMutationTransition(f"{self.state.value} -> {state.value}")
        self.state = state

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started_at


class OptimisticMutationExecutor:
    """Runs one state-changing operation in three phases.

    ``apply_optimistic`` runs synchronously before anything is awaited, so the
    speculative value is visible immediately. ``perform_remote`` is awaited
    exactly once; it is the only suspension point. On failure ``rollback`` runs
    synchronously before the error is reported and re-raised. Concurrent calls
    are not serialized: for the same entity the last remote response to arrive
    wins.
    """

    def __init__(self, notifier: Notifier, *, settings: Settings | None = None) -> None:
        self.notifier = notifier
        self.settings = settings or get_settings()
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def is_updating(self) -> bool:
        return self._in_flight > 0

    async def execute(
        self,
        apply_optimistic: Callable[[], None],
        perform_remote: Callable[[], Awaitable[T]],
        rollback: Callable[[], None],
        *,
        success_message: str | None = None,
        error_message: str | None = None,
        on_success: Callable[[T], None] | None = None,
        on_error: Callable[[BaseException], None] | None = None,
        entity_type: str = "entity",
        temp_id: str | None = None,
        speculative: Any = None,
        retry: RetryAction | None = None,
        timeout: float | None = None,
    ) -> T:
        request = MutationRequest(
            entity_type=entity_type,
            success_message=success_message or self.settings.default_success_message,
            error_message=error_message or self.settings.default_error_message,
            speculative=speculative,
        )
        if temp_id is not None:
            request.temp_id = temp_id

        # Nothing to roll back yet: a failing apply propagates untouched.
        apply_optimistic()
        request.transition(MutationState.OPTIMISTIC)

        token = set_mutation_id(request.temp_id)
        self._in_flight += 1
        try:
            with tracer.start_as_current_span("mutation.execute") as span:
                span.set_attribute("entity_type", entity_type)
                span.set_attribute("mutation_id", request.temp_id)
                try:
                    result = await self._perform(perform_remote, timeout)
                except asyncio.CancelledError as exc:
                    self._roll_back(request, rollback, exc)
                    raise
                except Exception as exc:
                    span.set_status(Status(StatusCode.ERROR))
                    span.record_exception(exc)
                    self._roll_back(request, rollback, exc)
                    self._call_on_error(on_error, exc, entity_type)
                    self.notifier.notify(
                        NotificationKind.ERROR,
                        request.error_message,
                        description=resolve_error_message(exc),
                        retry=retry if is_retryable(exc) else None,
                    )
                    raise

                request.transition(MutationState.RECONCILED)
                span.set_attribute("state", request.state.value)

            observe_mutation(entity_type, request.state.value, request.elapsed)
            logger.info(
                "mutation.reconciled",
                extra={
                    "entity_type": entity_type,
                    "state": request.state.value,
                    "duration_ms": round(request.elapsed * 1000, 2),
                },
            )
            if on_success is not None:
                on_success(result)
            self.notifier.notify(NotificationKind.SUCCESS, request.success_message)
            return result
        finally:
            self._in_flight -= 1
            reset_mutation_id(token)

    async def _perform(self, perform_remote: Callable[[], Awaitable[T]], timeout: float | None) -> T:
        limit = timeout if timeout is not None else self.settings.request_timeout_seconds
        return await await_with_timeout(perform_remote(), limit)

    @staticmethod
    def _call_on_error(
        on_error: Callable[[BaseException], None] | None, error: BaseException, entity_type: str
    ) -> None:
        # The caller still sees the remote error, never one raised by its own callback.
        if on_error is None:
            return
        try:
            on_error(error)
        except Exception as callback_error:
            logger.warning(
                "mutation.on_error_failed",
                exc_info=True,
                extra={"entity_type": entity_type, "error": str(callback_error)},
            )

    def _roll_back(self, request: MutationRequest, rollback: Callable[[], None], error: BaseException) -> None:
        rollback()
        request.error = error
        request.transition(MutationState.ROLLED_BACK)
        observe_mutation(request.entity_type, request.state.value, request.elapsed)
        observe_mutation_rollback(request.entity_type, error_kind(error))
        logger.warning(
            "mutation.rolled_back",
            extra={
                "entity_type": request.entity_type,
                "state": request.state.value,
                "duration_ms": round(request.elapsed * 1000, 2),
                "error": resolve_error_message(error),
            },
        )
