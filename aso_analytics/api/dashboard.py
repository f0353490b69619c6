"""
FastAPI router for dashboard sessions.

Key Endpoints:
- POST /dashboard/view          - Filtered summary, two-path and intelligence
- POST /dashboard/refresh       - Same as view, bypassing both cache tiers
- POST /dashboard/organization  - Switch the session's organization
- POST /dashboard/logout        - Drop the session cache
- GET  /dashboard/session       - Current session status
- GET  /dashboard/formulas      - Formula registry integrity check
"""

from typing import Annotated, Any, Dict

from fastapi import APIRouter, Body, Depends, Request

from aso_analytics.core.dependencies import PrincipalDep
from aso_analytics.core.formulas import validate_formula_config
from aso_analytics.models.schemas import (
    DashboardRequest,
    DashboardResponse,
    OrganizationSwitchRequest,
    SessionStatus,
)
from aso_analytics.services.dashboard import DashboardService


router = APIRouter()


def get_dashboard_service(request: Request) -> DashboardService:
    return request.app.state.dashboard


DashboardDep = Annotated[DashboardService, Depends(get_dashboard_service)]


@router.post("/view", response_model=DashboardResponse)
async def view_dashboard(
    principal_id: PrincipalDep,
    service: DashboardDep,
    payload: Annotated[Any, Body()] = None,
) -> DashboardResponse:
    return await service.view(principal_id, DashboardRequest.from_payload(payload))


@router.post("/refresh", response_model=DashboardResponse)
async def refresh_dashboard(
    principal_id: PrincipalDep,
    service: DashboardDep,
    payload: Annotated[Any, Body()] = None,
) -> DashboardResponse:
    return await service.refresh(principal_id, DashboardRequest.from_payload(payload))


@router.post("/organization", response_model=SessionStatus)
async def switch_organization(
    principal_id: PrincipalDep,
    service: DashboardDep,
    body: OrganizationSwitchRequest,
) -> SessionStatus:
    return await service.switch_organization(principal_id, body.organization_id)


@router.post("/logout", response_model=SessionStatus)
async def logout(principal_id: PrincipalDep, service: DashboardDep) -> SessionStatus:
    return service.logout(principal_id)


@router.get("/session", response_model=SessionStatus)
async def session_status(principal_id: PrincipalDep, service: DashboardDep) -> SessionStatus:
    return service.status(principal_id)


@router.get("/formulas")
async def formula_status() -> Dict[str, Any]:
    errors = validate_formula_config()
    return {"valid": not errors, "errors": errors}
