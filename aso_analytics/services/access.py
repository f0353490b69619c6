"""
Access resolution for multi-tenant, agency-aware data requests.

Resolves, once per request, which organization a principal acts for, which
organizations it may query (its own plus active agency clients), and which
apps it may see.

Resolution rules:
- A platform-wide principal (SUPER_ADMIN with no organization) must select an
  organization per request, otherwise ScopeRequired.
- A platform-wide principal with a selection acts for the selected org
  (scope source platform_admin_selection).
- Any other principal acts for its own org (scope source user_membership).
  A request naming another org is logged as a cross-org attempt and ignored.
- A principal with no role row or no organization gets NoOrganization.
- queryable orgs = {resolved org} + active agency clients of the resolved org.
  If the agency lookup fails the scope degrades to {resolved org} with a
  warning; it never fails the request.
- accessible apps = apps attached (not detached) to any queryable org.
  allowed apps = accessible apps intersected with the requested subset, if any.

Whether agency access additionally requires an admin-tier role is a policy of
the access-control store; it is not enforced here.

Dependencies:
- aso_analytics/sql/access_queries.py: parameterized queries
- aso_analytics/core/database.py: execute_query, execute_query_one, execute_command
"""

import logging
from typing import Iterable, List, Optional, Set

from aso_analytics.core.database import execute_command, execute_query, execute_query_one
from aso_analytics.core.errors import AccessLookupFailed, NoOrganization, ScopeRequired
from aso_analytics.models.enums import PrincipalRole, ScopeSource
from aso_analytics.models.schemas import AccessScope, AuditEvent, PrincipalRecord
from aso_analytics.sql.access_queries import (
    get_agency_clients_query,
    get_attached_apps_query,
    get_insert_audit_query,
    get_principal_role_query,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Repository
# =============================================================================


class AccessRepository:
    """
    Access-control store lookups.

    Each method is one round trip. get_principal and get_attached_apps raise
    AccessLookupFailed on store errors; get_agency_clients and record_audit
    let the original exception propagate so callers can degrade.
    """

    async def get_principal(self, principal_id: str) -> Optional[PrincipalRecord]:
        try:
            row = await execute_query_one(get_principal_role_query(), principal_id)
        except Exception as exc:
            logger.error(f"Principal lookup failed for {principal_id}: {exc}")
            raise AccessLookupFailed('Failed to verify user permissions') from exc

        if row is None:
            return None
        return PrincipalRecord(
            principal_id=principal_id,
            role=row['role'],
            organization_id=row['organization_id'],
        )

    async def get_agency_clients(self, agency_org_id: str) -> List[str]:
        rows = await execute_query(get_agency_clients_query(), agency_org_id)
        return [str(row['client_org_id']) for row in rows]

    async def get_attached_apps(self, org_ids: Iterable[str]) -> Set[str]:
        org_list = sorted(set(org_ids))
        try:
            rows = await execute_query(get_attached_apps_query(), org_list)
        except Exception as exc:
            logger.error(f"App access lookup failed for orgs {org_list}: {exc}")
            raise AccessLookupFailed('Failed to resolve app access') from exc
        return {str(row['app_id']) for row in rows if row['app_id'] is not None}

    async def record_audit(self, event: AuditEvent) -> None:
        await execute_command(
            get_insert_audit_query(),
            event.principal_id,
            event.organization_id,
            event.app_count,
            event.date_range.start,
            event.date_range.end,
            event.row_count,
            event.duration_ms,
        )


# =============================================================================
# Scope Resolution
# =============================================================================


def is_platform_wide(principal: PrincipalRecord) -> bool:
    return principal.role == PrincipalRole.SUPER_ADMIN.value and not principal.organization_id


async def expand_agency_access(repository: AccessRepository, org_id: str) -> Set[str]:
    """
    Return {org_id} plus every active client org it manages as an agency.

    Lookup failures degrade to {org_id} and are logged.
    """
    queryable = {org_id}
    try:
        clients = await repository.get_agency_clients(org_id)
    except Exception as exc:
        logger.warning(
            f"Agency lookup failed for {org_id}, continuing with direct org only: {exc}",
            extra={'organization_id': org_id},
        )
        return queryable

    if clients:
        logger.info(
            f"Agency {org_id} manages {len(clients)} client orgs",
            extra={'organization_id': org_id, 'client_count': len(clients)},
        )
    queryable.update(c for c in clients if c)
    return queryable


async def resolve_scope(
    principal_id: str,
    requested_org_id: Optional[str],
    requested_app_ids: Optional[Iterable[str]],
    repository: AccessRepository,
) -> AccessScope:
    """
    Resolve the effective access scope for one request.

    Args:
        principal_id: Authenticated principal.
        requested_org_id: Organization picked by the caller, if any.
        requested_app_ids: App subset picked by the caller; empty means all.
        repository: Access-control store.

    Returns:
        AccessScope: Frozen scope. allowed_app_ids may be empty, which is a
            valid (empty) result, not an error.

    Raises:
        ScopeRequired: Platform-wide principal without a selected org.
        NoOrganization: Principal has no role row or no organization.
        AccessLookupFailed: Principal or attached-app lookup failed.
    """
    principal = await repository.get_principal(principal_id)
    if principal is None:
        logger.warning(f"Principal {principal_id} has no role assignment")
        raise NoOrganization()

    if is_platform_wide(principal):
        if not requested_org_id:
            raise ScopeRequired()
        resolved_org_id = requested_org_id
        scope_source = ScopeSource.PLATFORM_ADMIN_SELECTION
        logger.info(
            f"Platform admin {principal_id} selected org {resolved_org_id}",
            extra={'principal_id': principal_id, 'organization_id': resolved_org_id},
        )
    else:
        if not principal.organization_id:
            raise NoOrganization()
        resolved_org_id = principal.organization_id
        scope_source = ScopeSource.USER_MEMBERSHIP
        if requested_org_id and requested_org_id != resolved_org_id:
            logger.warning(
                f"Cross-org request by {principal_id} for {requested_org_id} ignored; "
                f"using own org {resolved_org_id}",
                extra={
                    'principal_id': principal_id,
                    'requested_org_id': requested_org_id,
                    'organization_id': resolved_org_id,
                },
            )

    queryable = await expand_agency_access(repository, resolved_org_id)
    accessible = await repository.get_attached_apps(queryable)

    requested = {a.strip() for a in (requested_app_ids or []) if a and a.strip()}
    allowed = accessible & requested if requested else set(accessible)

    if requested and len(allowed) < len(requested):
        logger.info(
            f"Dropped {len(requested) - len(allowed)} requested apps outside scope "
            f"for {principal_id}",
            extra={'principal_id': principal_id, 'organization_id': resolved_org_id},
        )

    return AccessScope(
        principal_id=principal_id,
        resolved_org_id=resolved_org_id,
        queryable_org_ids=frozenset(queryable),
        accessible_app_ids=frozenset(accessible),
        allowed_app_ids=frozenset(allowed),
        scope_source=scope_source,
    )
