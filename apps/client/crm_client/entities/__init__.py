from crm_client.entities.collection import Entity, EntityCollection
from crm_client.entities.hook import EntityHook, LeadHook

__all__ = ["Entity", "EntityCollection", "EntityHook", "LeadHook"]
