from crm_client.remote.authority import RemoteAuthority
from crm_client.remote.errors import AuditWriteError, NotFoundError, RemoteError, RemoteTimeoutError
from crm_client.remote.memory import InMemoryRemoteAuthority
from crm_client.remote.sql import SqlRemoteAuthority

__all__ = [
    "AuditWriteError",
    "InMemoryRemoteAuthority",
    "NotFoundError",
    "RemoteAuthority",
    "RemoteError",
    "RemoteTimeoutError",
    "SqlRemoteAuthority",
]
