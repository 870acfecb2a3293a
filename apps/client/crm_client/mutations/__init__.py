from crm_client.mutations.executor import MutationRequest, MutationState, OptimisticMutationExecutor, is_temp_id, new_temp_id
from crm_client.mutations.notifier import LoggingNotifier, NotificationKind, Notifier

__all__ = [
    "LoggingNotifier",
    "MutationRequest",
    "MutationState",
    "NotificationKind",
    "Notifier",
    "OptimisticMutationExecutor",
    "is_temp_id",
    "new_temp_id",
]
