"""
Enumeration definitions for the ASO Analytics backend.

All enums inherit from both `str` and `Enum` to ensure JSON serialization
compatibility with Pydantic models, enabling automatic serialization in API
responses.
"""

from enum import Enum


class PrincipalRole(str, Enum):
    """
    Role attached to a principal by the access-control store.

    SUPER_ADMIN without an organization is platform-wide and must select an
    organization per request. Every other role is scoped to one organization.
    """
    SUPER_ADMIN = "SUPER_ADMIN"
    ORG_ADMIN = "ORG_ADMIN"
    ASO_MANAGER = "ASO_MANAGER"
    ANALYST = "ANALYST"
    VIEWER = "VIEWER"
    CLIENT = "CLIENT"


class ScopeSource(str, Enum):
    """How the resolved organization was chosen."""
    PLATFORM_ADMIN_SELECTION = "platform_admin_selection"
    USER_MEMBERSHIP = "user_membership"


class TrafficSourceGroup(str, Enum):
    """
    Grouping of App Store traffic sources for two-path analysis.

    - search: App Store Search
    - browse: App Store Browse (Today tab, categories, featuring)
    - other: referrers, search ads and everything else
    """
    SEARCH = "search"
    BROWSE = "browse"
    OTHER = "other"


class StabilityInterpretation(str, Enum):
    VERY_STABLE = "Very Stable"
    STABLE = "Stable"
    MODERATE = "Moderate Volatility"
    UNSTABLE = "Unstable"
    HIGHLY_VOLATILE = "Highly Volatile"


class IntelligenceStatus(str, Enum):
    """Outcome of an intelligence analysis. Never raised, always returned."""
    OK = "ok"
    INSUFFICIENT_DATA = "insufficient_data"


class OpportunityPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ImpactLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class OpportunityCategory(str, Enum):
    ICON_TITLE = "icon_title"
    SEARCH_PDP_CVR = "search_pdp_cvr"
    BROWSE_PDP_CVR = "browse_pdp_cvr"
    FUNNEL_LEAK = "funnel_leak"
    SEARCH_DISCOVERY = "search_discovery"
    BROWSE_DISCOVERY = "browse_discovery"
    BRAND_RECOGNITION = "brand_recognition"
    CHANNEL_BALANCE = "channel_balance"


class SimulationLever(str, Enum):
    IMPROVE_TAP_THROUGH = "improve_ttr"
    IMPROVE_PDP_CVR = "improve_pdp_cvr"
    REDUCE_FUNNEL_LEAK = "reduce_funnel_leak"
    INCREASE_SEARCH_IMPRESSIONS = "increase_search_impressions"


class ConfidenceTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AttributionCategory(str, Enum):
    METADATA = "metadata"
    CREATIVE = "creative"
    BRAND = "brand"
    ALGORITHM = "algorithm"
    TECHNICAL = "technical"
    FEATURING = "featuring"


class AnomalyDirection(str, Enum):
    SPIKE = "spike"
    DROP = "drop"
