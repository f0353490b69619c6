'''
ASO Analytics Test Suite

Test Modules:
-------------
- test_schemas.py: request normalization and row coercion
  - organization/app/date-range aliases
  - invalid bodies raise InvalidRequest

- test_cache.py: TTL cache and request fingerprints
- test_access.py: scope resolution, agency expansion, SQL round trips
- test_data_access.py: orchestrator pipeline
  - hot cache hits, in-flight dedupe, overall deadline
  - empty scope never reaches the warehouse
- test_warehouse.py: BigQuery client parameters and error mapping
- test_client_cache.py: stale-while-revalidate session cache
- test_aggregation.py: zero-filled series, filters, period comparison
- test_two_path.py: install decomposition and derived KPIs
- test_intelligence.py: stability, opportunities, simulation, attribution
- test_formulas.py: formula registry integrity and overrides
- test_dashboard.py: dashboard sessions end to end over fakes
- test_api.py: HTTP contract via FastAPI TestClient

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v

Configuration:
--------------
See conftest.py for shared fixtures and test configuration.
'''

__all__ = []
