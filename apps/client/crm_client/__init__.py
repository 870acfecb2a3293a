from crm_client.client import CRMClient, create_client

__all__ = ["CRMClient", "create_client"]
