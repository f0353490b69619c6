"""
Error taxonomy for the ASO Analytics backend.

Every failure that can surface to a caller is one of the exceptions below.
The API layer renders them through a single exception handler registered in
aso_analytics.main, so services raise them directly instead of building HTTP
responses.

Propagation rules:
    - ScopeRequired, NoOrganization and InvalidRequest surface unmodified.
    - UpstreamQueryFailed and UpstreamTimeout carry diagnostic detail but
      never the raw query text.
    - Dimension discovery and audit sink failures are absorbed by the
      orchestrator and never reach this module.

Insufficient history in the intelligence engine is NOT an exception; it is a
typed result status (see IntelligenceStatus in aso_analytics.models.enums).
"""

from typing import Any, Dict, Optional


class AsoAnalyticsError(Exception):
    """Base class for all errors rendered to API callers."""

    status_code: int = 500
    code: str = 'internal_error'

    def __init__(
        self,
        message: str,
        hint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {'error': self.message, 'code': self.code}
        if self.hint:
            body['hint'] = self.hint
        if self.details:
            body['details'] = self.details
        return body


class AuthenticationRequired(AsoAnalyticsError):
    status_code = 401
    code = 'authentication_required'


class ScopeRequired(AsoAnalyticsError):
    """A platform-wide principal must pick an organization first."""

    status_code = 400
    code = 'scope_required'

    def __init__(self, message: str = 'Platform admin must select an organization') -> None:
        super().__init__(message, hint='Use the organization picker to select an org')


class NoOrganization(AsoAnalyticsError):
    """Terminal: the principal is not assigned to any organization."""

    status_code = 403
    code = 'no_organization'

    def __init__(self, message: str = 'User not assigned to organization') -> None:
        super().__init__(message, hint='Contact admin to assign you to an organization')


class InvalidRequest(AsoAnalyticsError):
    status_code = 400
    code = 'invalid_request'


class AccessLookupFailed(AsoAnalyticsError):
    """The access-control store could not answer a mandatory lookup."""

    status_code = 500
    code = 'access_lookup_failed'


class UpstreamQueryFailed(AsoAnalyticsError):
    status_code = 502
    code = 'upstream_query_failed'


class UpstreamTimeout(AsoAnalyticsError):
    status_code = 504
    code = 'upstream_timeout'
