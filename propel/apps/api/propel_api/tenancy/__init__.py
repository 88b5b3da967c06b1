"""Tenant identity, provisioning and context resolution."""

from propel_api.tenancy.context import (
    TenantContext,
    UsageSnapshot,
    get_active_tenant_context,
    provision_and_resolve,
    try_resolve,
)
from propel_api.tenancy.identity import find_user_by_email, resolve_user
from propel_api.tenancy.provisioning import ProvisionResult, provision_tenant, workspace_name

__all__ = [
    "TenantContext",
    "UsageSnapshot",
    "get_active_tenant_context",
    "provision_and_resolve",
    "try_resolve",
    "find_user_by_email",
    "resolve_user",
    "ProvisionResult",
    "provision_tenant",
    "workspace_name",
]
