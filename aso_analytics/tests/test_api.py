"""
HTTP-level tests for the ASO Analytics API.

The app's lifespan is not run; services built over the fake repository and
warehouse are placed on app.state directly.
"""

import pytest
from fastapi.testclient import TestClient

from aso_analytics.core.dependencies import PRINCIPAL_HEADER
from aso_analytics.main import app
from aso_analytics.models import PrincipalRecord
from aso_analytics.services.dashboard import DashboardService
from aso_analytics.services.data_access import DataAccessService


NOVEMBER_BODY = {'dateRange': {'from': '2024-11-01', 'to': '2024-11-03'}}
AUTH = {PRINCIPAL_HEADER: 'user-1'}


@pytest.fixture
def client(test_settings, fake_repository, fake_warehouse):
    data_access = DataAccessService(test_settings, fake_repository, fake_warehouse)
    app.state.data_access = data_access
    app.state.dashboard = DashboardService(test_settings, data_access)
    yield TestClient(app)
    del app.state.data_access
    del app.state.dashboard


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json() == {'status': 'healthy'}

    def test_root(self, client):
        body = client.get('/').json()

        assert body['name'] == 'ASO Analytics API'
        assert body['docs'] == '/docs'


class TestDataEndpoint:

    def test_requires_principal(self, client, fake_warehouse):
        response = client.post('/data', json=NOVEMBER_BODY)

        assert response.status_code == 401
        body = response.json()
        assert body['code'] == 'authentication_required'
        assert PRINCIPAL_HEADER in body['hint']
        fake_warehouse.fetch_metrics.assert_not_awaited()

    def test_missing_date_range(self, client):
        response = client.post('/data', json={'app_ids': ['app-1']}, headers=AUTH)

        assert response.status_code == 400
        assert response.json()['code'] == 'invalid_request'

    def test_inverted_date_range(self, client):
        body = {'date_range': {'start': '2024-11-03', 'end': '2024-11-01'}}

        response = client.post('/data', json=body, headers=AUTH)

        assert response.status_code == 400

    def test_returns_rows_and_scope(self, client):
        response = client.post('/data', json=NOVEMBER_BODY, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert len(body['data']) == 6
        assert body['scope']['organization_id'] == 'org-1'
        assert body['meta']['cache_hit'] is False

    def test_scope_required_for_platform_admin(self, client, fake_repository):
        fake_repository.get_principal.return_value = PrincipalRecord(
            principal_id='admin', role='SUPER_ADMIN', organization_id=None
        )

        response = client.post('/data', json=NOVEMBER_BODY, headers={PRINCIPAL_HEADER: 'admin'})

        assert response.status_code == 400
        assert response.json()['code'] == 'scope_required'

    def test_upstream_failure_maps_to_502(self, client, fake_warehouse):
        fake_warehouse.fetch_metrics.side_effect = RuntimeError('socket closed')

        response = client.post('/data', json=NOVEMBER_BODY, headers=AUTH)

        assert response.status_code == 502
        assert response.json()['code'] == 'upstream_query_failed'


class TestDashboardEndpoints:

    def test_view(self, client):
        response = client.post('/dashboard/view', json=NOVEMBER_BODY, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body['meta']['cache_state'] == 'miss'
        assert body['series']['summary']['downloads'] == 195
        assert body['intelligence']['stability']['status'] == 'insufficient_data'

    def test_session_lifecycle(self, client):
        client.post('/dashboard/view', json=NOVEMBER_BODY, headers=AUTH)

        session = client.get('/dashboard/session', headers=AUTH).json()
        assert session == {'principal_id': 'user-1', 'organization_id': 'org-1', 'cached_entries': 2}

        logout = client.post('/dashboard/logout', headers=AUTH).json()
        assert logout['cached_entries'] == 0

    def test_organization_switch(self, client):
        response = client.post(
            '/dashboard/organization', json={'organization_id': 'org-9'}, headers=AUTH
        )

        assert response.status_code == 200
        assert response.json()['organization_id'] == 'org-1'

    def test_formulas(self, client):
        assert client.get('/dashboard/formulas').json() == {'valid': True, 'errors': []}
