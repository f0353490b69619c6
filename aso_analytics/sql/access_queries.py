"""
Access-control store queries (PostgreSQL via asyncpg).

Tables read:
    user_roles        (user_id, role, organization_id)
    org_app_access    (organization_id, app_id, attached_at, detached_at)
    agency_clients    (agency_org_id, client_org_id, is_active)

Table written:
    data_access_audit (principal_id, organization_id, app_count,
                       start_date, end_date, row_count, duration_ms,
                       created_at)

Row-level-security policies on these tables are trusted as already enforced.
All queries use positional asyncpg parameters ($1, $2, ...).
"""


# =============================================================================
# PRINCIPAL LOOKUP
# =============================================================================

def get_principal_role_query() -> str:
    """
    Role and organization for one principal.

    A principal may carry several role rows; the platform-wide one, if any,
    sorts first so the caller can take the first row.

    Params:
        $1: principal id
    """
    return """
    SELECT user_id, role, organization_id
    FROM user_roles
    WHERE user_id = $1
    ORDER BY
        CASE WHEN role = 'SUPER_ADMIN' AND organization_id IS NULL THEN 0 ELSE 1 END,
        organization_id NULLS LAST
    LIMIT 1
    """


# =============================================================================
# AGENCY RELATIONSHIPS
# =============================================================================

def get_agency_clients_query() -> str:
    """
    Active client organizations managed by an agency organization.

    Params:
        $1: agency organization id
    """
    return """
    SELECT client_org_id
    FROM agency_clients
    WHERE agency_org_id = $1
      AND is_active = TRUE
    """


# =============================================================================
# ATTACHED APPS
# =============================================================================

def get_attached_apps_query() -> str:
    """
    Apps currently attached to any of the given organizations.

    Detached apps (detached_at set) are excluded.

    Params:
        $1: organization ids (text[])
    """
    return """
    SELECT DISTINCT app_id
    FROM org_app_access
    WHERE organization_id = ANY($1::text[])
      AND detached_at IS NULL
    """


# =============================================================================
# AUDIT
# =============================================================================

def get_insert_audit_query() -> str:
    """
    Params:
        $1 principal_id, $2 organization_id, $3 app_count, $4 start_date,
        $5 end_date, $6 row_count, $7 duration_ms
    """
    return """
    INSERT INTO data_access_audit (
        principal_id, organization_id, app_count,
        start_date, end_date, row_count, duration_ms, created_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, NOW())
    """
