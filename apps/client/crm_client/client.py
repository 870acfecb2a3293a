from __future__ import annotations

import logging

from crm_client.audit.export import export_csv, export_filename
from crm_client.audit.recorder import AuditRecorder
from crm_client.audit.schemas import AuditAction, AuditFilters
from crm_client.core.auth import principal_from_token
from crm_client.core.config import Settings, get_settings
from crm_client.entities.hook import EntityHook, LeadHook
from crm_client.logging import configure_logging
from crm_client.mutations.executor import OptimisticMutationExecutor
from crm_client.mutations.notifier import LoggingNotifier, Notifier
from crm_client.otel import setup_otel
from crm_client.remote.authority import RemoteAuthority
from crm_client.security.gate import PolicyGate
from crm_client.security.permissions import PermissionAction, Resource, permission_key
from crm_client.security.principal import Principal
from crm_client.security.session import AuthSession


logger = logging.getLogger("crm_client.lifecycle")


class CRMClient:
    """One signed-in client session: the policy gate, executor and audit recorder
    shared by every entity hook."""

    def __init__(
        self,
        authority: RemoteAuthority,
        *,
        notifier: Notifier | None = None,
        settings: Settings | None = None,
        session: AuthSession | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.authority = authority
        self.notifier = notifier or LoggingNotifier()
        self.session = session or AuthSession()
        self.gate = PolicyGate(self.session, authority, break_glass_email=self.settings.break_glass_email)
        self.executor = OptimisticMutationExecutor(self.notifier, settings=self.settings)
        self.recorder = AuditRecorder(self.session, authority, settings=self.settings)

        hook_kwargs = {
            "session": self.session,
            "gate": self.gate,
            "executor": self.executor,
            "recorder": self.recorder,
            "authority": authority,
            "notifier": self.notifier,
        }
        self.leads = LeadHook(**hook_kwargs)
        self.customers = EntityHook(Resource.CUSTOMERS, **hook_kwargs)
        self.jobs = EntityHook(Resource.JOBS, **hook_kwargs)
        self.estimates = EntityHook(Resource.ESTIMATES, **hook_kwargs)
        self.invoices = EntityHook(Resource.INVOICES, **hook_kwargs)
        self.tasks = EntityHook(Resource.TASKS, **hook_kwargs)

    @property
    def principal(self) -> Principal | None:
        return self.session.principal

    def hook(self, entity_type: str) -> EntityHook:
        hooks = {
            Resource.LEADS: self.leads,
            Resource.CUSTOMERS: self.customers,
            Resource.JOBS: self.jobs,
            Resource.ESTIMATES: self.estimates,
            Resource.INVOICES: self.invoices,
            Resource.TASKS: self.tasks,
        }
        try:
            return hooks[Resource(entity_type)]
        except ValueError:
            raise KeyError(entity_type) from None

    def sign_in(self, principal: Principal) -> None:
        self.session.sign_in(principal)

    async def sign_in_with_token(self, token: str, *, refresh_role: bool = False) -> Principal | None:
        principal = principal_from_token(token, self.settings)
        if principal is None:
            self.session.sign_out()
            return None
        self.session.sign_in(principal)
        if refresh_role:
            await self.session.refresh_role(self.authority)
        return self.session.principal

    def sign_out(self) -> None:
        self.session.sign_out()

    async def convert_lead(self, lead_id: str) -> dict:
        return await self.leads.convert_to_customer(lead_id, self.customers)

    async def export_audit_trail(self, filters: AuditFilters | None = None, limit: int = 10_000) -> tuple[str, str]:
        principal = self.session.require_principal()
        await self.gate.enforce_permission(permission_key(Resource.AUDIT, PermissionAction.EXPORT))
        records = self.recorder.query(filters, limit=limit)
        payload = export_csv(records)
        await self.recorder.record(
            "audit_records",
            principal.id,
            AuditAction.EXPORTED,
            None,
            None,
            description=f"Exported {len(records)} audit records",
            principal=principal,
        )
        return export_filename(), payload


def create_client(
    authority: RemoteAuthority,
    *,
    notifier: Notifier | None = None,
    settings: Settings | None = None,
) -> CRMClient:
    resolved = settings or get_settings()
    configure_logging(resolved)
    setup_otel(resolved)
    logger.info("client.created", extra={"state": resolved.app_env})
    return CRMClient(authority, notifier=notifier, settings=resolved)
