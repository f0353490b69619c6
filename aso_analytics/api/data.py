"""
FastAPI router for raw ASO metric data.

Key Endpoints:
- POST /data - Scoped, cached warehouse rows for a date range

Request body (aliases accepted, see DataRequest.from_payload):
    {
        "organization_id": "org-1",          # platform admins only
        "app_ids": ["1234567890"],           # optional subset
        "date_range": {"start": "2024-11-01", "end": "2024-11-30"},
        "traffic_sources": ["App Store Search"]
    }

Response: DataResponse {data, scope, meta, message?}. Zero rows is a
success; errors are rendered by the AsoAnalyticsError handler in main.py.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Request

from aso_analytics.core.dependencies import PrincipalDep
from aso_analytics.models.schemas import DataRequest, DataResponse
from aso_analytics.services.data_access import DataAccessService


logger = logging.getLogger(__name__)

router = APIRouter()


def get_data_access_service(request: Request) -> DataAccessService:
    """Process-wide orchestrator created in the application lifespan."""
    return request.app.state.data_access


DataAccessDep = Annotated[DataAccessService, Depends(get_data_access_service)]


@router.post("", response_model=DataResponse)
async def fetch_aso_data(
    principal_id: PrincipalDep,
    service: DataAccessDep,
    payload: Annotated[Any, Body()] = None,
) -> DataResponse:
    """
    Fetch ASO metric rows within the caller's access scope.

    Raises (rendered by the application error handler):
        InvalidRequest (400): Missing or malformed date range.
        ScopeRequired (400): Platform admin without a selected organization.
        NoOrganization (403): Principal not assigned to an organization.
        UpstreamQueryFailed (502) / UpstreamTimeout (504)
    """
    request = DataRequest.from_payload(payload)
    response = await service.fetch(request, principal_id)
    logger.info(
        f"Served {response.meta.row_count} rows to {principal_id} "
        f"(cache_hit={response.meta.cache_hit})"
    )
    return response
