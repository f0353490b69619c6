"""
ASO Analytics Backend Package.

FastAPI service layer for App Store Optimization analytics. Serves scoped
conversion metrics from the warehouse and turns them into dashboard
summaries, two-path funnel analysis and intelligence reports.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, warehouse, caching, errors, formulas
    - models: Pydantic schemas and enums
    - services: Business logic services
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
