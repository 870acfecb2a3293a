from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from crm_client.core.config import Settings
from crm_client.mutations.executor import (
    InvalidMutationTransition,
    MutationRequest,
    MutationState,
    OptimisticMutationExecutor,
    is_temp_id,
    new_temp_id,
)
from crm_client.mutations.notifier import NotificationKind
from crm_client.remote.errors import NotFoundError, RemoteError, RemoteTimeoutError


@dataclass
class RecordingNotifier:
    calls: list[tuple[str, str, str | None]] = field(default_factory=list)
    retries: list[Any] = field(default_factory=list)

    def notify(self, kind: NotificationKind, message: str, *, description: str | None = None, retry: Any = None) -> None:
        self.calls.append((kind.value, message, description))
        self.retries.append(retry)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def executor(notifier: RecordingNotifier) -> OptimisticMutationExecutor:
    return OptimisticMutationExecutor(notifier, settings=Settings(request_timeout_seconds=5))


def test_success_resolves_with_remote_result(executor: OptimisticMutationExecutor, notifier: RecordingNotifier) -> None:
    items: list[dict[str, Any]] = []
    apply = Mock(side_effect=lambda: items.append({"id": "temp-1"}))
    rollback = Mock()
    on_success = Mock()

    async def perform() -> dict[str, Any]:
        assert items == [{"id": "temp-1"}]
        items[0] = {"id": "lead-1"}
        return {"id": "lead-1"}

    result = asyncio.run(
        executor.execute(
            apply,
            perform,
            rollback,
            success_message="Lead created successfully",
            error_message="Failed to create lead",
            on_success=on_success,
        )
    )

    assert result == {"id": "lead-1"}
    assert items == [{"id": "lead-1"}]
    apply.assert_called_once_with()
    rollback.assert_not_called()
    on_success.assert_called_once_with({"id": "lead-1"})
    assert notifier.calls == [("success", "Lead created successfully", None)]


def test_rollback_restores_captured_state_on_remote_failure(
    executor: OptimisticMutationExecutor, notifier: RecordingNotifier
) -> None:
    items = [{"id": "c-1", "name": "Original"}]
    before = [dict(item) for item in items]
    snapshot = list(items)
    on_error = Mock()

    def apply() -> None:
        items[0] = {"id": "c-1", "name": "Speculative"}

    def rollback() -> None:
        items[:] = snapshot

    async def perform() -> None:
        raise RemoteError("Internal server error", status_code=500)

    with pytest.raises(RemoteError) as exc_info:
        asyncio.run(executor.execute(apply, perform, rollback, error_message="Failed to update customer", on_error=on_error))

    assert items == before
    on_error.assert_called_once_with(exc_info.value)
    assert notifier.calls == [("error", "Failed to update customer", "Internal server error")]


def test_apply_failure_skips_remote_and_rollback(executor: OptimisticMutationExecutor, notifier: RecordingNotifier) -> None:
    perform = AsyncMock()
    rollback = Mock()

    def apply() -> None:
        raise ValueError("bad local state")

    with pytest.raises(ValueError, match="bad local state"):
        asyncio.run(executor.execute(apply, perform, rollback))

    assert perform.call_count == 0
    rollback.assert_not_called()
    assert notifier.calls == []
    assert executor.in_flight == 0


def test_default_messages_come_from_settings(executor: OptimisticMutationExecutor, notifier: RecordingNotifier) -> None:
    async def perform() -> int:
        return 1

    asyncio.run(executor.execute(lambda: None, perform, lambda: None))

    assert notifier.calls == [("success", "Update successful", None)]


def test_unexpected_error_without_message_is_reported_generically(
    executor: OptimisticMutationExecutor, notifier: RecordingNotifier
) -> None:
    async def perform() -> None:
        raise RuntimeError()

    with pytest.raises(RuntimeError):
        asyncio.run(executor.execute(lambda: None, perform, lambda: None))

    assert notifier.calls == [("error", "Update failed", "An unexpected error occurred")]


def test_remote_timeout_rolls_back(notifier: RecordingNotifier) -> None:
    executor = OptimisticMutationExecutor(notifier, settings=Settings(request_timeout_seconds=0.01))
    rollback = Mock()

    async def perform() -> None:
        await asyncio.sleep(1)

    with pytest.raises(RemoteTimeoutError):
        asyncio.run(executor.execute(lambda: None, perform, rollback))

    rollback.assert_called_once_with()
    assert notifier.calls[0][0] == "error"


def test_retry_offered_only_for_retryable_failures(
    executor: OptimisticMutationExecutor, notifier: RecordingNotifier
) -> None:
    retry = AsyncMock()

    async def server_error() -> None:
        raise RemoteError("Service unavailable", status_code=503)

    async def missing() -> None:
        raise NotFoundError("customers", "c-9")

    with pytest.raises(RemoteError):
        asyncio.run(executor.execute(lambda: None, server_error, lambda: None, retry=retry))
    with pytest.raises(NotFoundError):
        asyncio.run(executor.execute(lambda: None, missing, lambda: None, retry=retry))

    assert notifier.retries == [retry, None]


def test_concurrent_calls_are_not_serialized(executor: OptimisticMutationExecutor) -> None:
    order: list[str] = []

    async def scenario() -> None:
        first_release = asyncio.Event()

        async def slow() -> str:
            await first_release.wait()
            order.append("first")
            return "first"

        async def fast() -> str:
            order.append("second")
            return "second"

        first = asyncio.create_task(executor.execute(lambda: None, slow, lambda: None))
        await asyncio.sleep(0)
        assert executor.is_updating is True
        assert await executor.execute(lambda: None, fast, lambda: None) == "second"
        first_release.set()
        assert await first == "first"

    asyncio.run(scenario())

    assert order == ["second", "first"]
    assert executor.is_updating is False


def test_mutation_request_state_machine() -> None:
    request = MutationRequest(entity_type="leads", success_message="ok", error_message="failed")

    assert request.state is MutationState.PENDING
    assert is_temp_id(request.temp_id)
    with pytest.raises(InvalidMutationTransition):
        request.transition(MutationState.RECONCILED)

    request.transition(MutationState.OPTIMISTIC)
    request.transition(MutationState.ROLLED_BACK)
    with pytest.raises(InvalidMutationTransition):
        request.transition(MutationState.RECONCILED)


def test_temp_ids_are_unique() -> None:
    assert new_temp_id() != new_temp_id()
    assert not is_temp_id("3f2b6c1e-0000-4000-8000-000000000000")


def test_failing_error_callback_keeps_remote_error_and_notification(
    executor: OptimisticMutationExecutor, notifier: RecordingNotifier
) -> None:
    rollback = Mock()
    on_error = Mock(side_effect=ValueError("callback bug"))

    async def perform() -> None:
        raise RemoteError("Row is locked")

    with pytest.raises(RemoteError) as exc_info:
        asyncio.run(executor.execute(lambda: None, perform, rollback, error_message="Failed to update job", on_error=on_error))

    assert exc_info.value.message == "Row is locked"
    rollback.assert_called_once_with()
    on_error.assert_called_once_with(exc_info.value)
    assert notifier.calls == [("error", "Failed to update job", "Row is locked")]


def test_zero_timeout_means_no_limit(notifier: RecordingNotifier) -> None:
    executor = OptimisticMutationExecutor(notifier, settings=Settings(request_timeout_seconds=0))

    async def perform() -> int:
        await asyncio.sleep(0.01)
        return 1

    assert asyncio.run(executor.execute(lambda: None, perform, lambda: None)) == 1
    assert notifier.calls == [("success", "Update successful", None)]
