"""
FastAPI dependency injection module for the ASO Analytics backend.

Authentication itself (sessions, tokens, MFA) happens upstream. The gateway
forwards the authenticated principal in the X-Principal-Id header; a request
without it is rejected with AuthenticationRequired.

Service dependencies (DataAccessDep, DashboardDep) live next to their routers
and read the instances built in the application lifespan from app.state.

Usage:
    @router.post("/data")
    async def fetch_data(principal_id: PrincipalDep, service: DataAccessDep):
        ...
"""

from typing import Annotated, Optional

from fastapi import Depends, Header

from aso_analytics.core.errors import AuthenticationRequired


PRINCIPAL_HEADER = 'X-Principal-Id'


async def get_principal_id(
    x_principal_id: Annotated[Optional[str], Header(alias=PRINCIPAL_HEADER)] = None,
) -> str:
    """
    Return the authenticated principal id.

    Raises:
        AuthenticationRequired: Header missing or blank.
    """
    if x_principal_id is None or not x_principal_id.strip():
        raise AuthenticationRequired(
            'Missing authenticated principal',
            hint=f'Requests must carry the {PRINCIPAL_HEADER} header',
        )
    return x_principal_id.strip()


PrincipalDep = Annotated[str, Depends(get_principal_id)]
