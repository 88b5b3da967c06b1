"""Domain error taxonomy.

Every error a request handler may surface derives from ``ProblemError`` and
is rendered by one exception handler as RFC 9457 problem details. Class
attributes carry the HTTP mapping; instances carry the detail and optional
problem extensions.
"""

from typing import Any, Optional

PROBLEM_BASE_URI = "https://api.propel.dev/problems"


class ProblemError(Exception):
    """Base class for errors rendered as application/problem+json."""

    status_code: int = 500
    error_type: str = f"{PROBLEM_BASE_URI}/internal-error"
    title: str = "Internal Server Error"

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        retry_after: Optional[int] = None,
        extensions: Optional[dict[str, Any]] = None,
    ) -> None:
        self.detail = detail or self.title
        self.retry_after = retry_after
        self.extensions = extensions or {}
        super().__init__(self.detail)


class Unauthenticated(ProblemError):
    status_code = 401
    error_type = f"{PROBLEM_BASE_URI}/unauthenticated"
    title = "Unauthorized"


class Forbidden(ProblemError):
    """Role policy denied the operation."""

    status_code = 403
    error_type = f"{PROBLEM_BASE_URI}/forbidden"
    title = "Forbidden"


class NotFound(ProblemError):
    status_code = 404
    error_type = f"{PROBLEM_BASE_URI}/not-found"
    title = "Not Found"


class BadRequest(ProblemError):
    status_code = 400
    error_type = f"{PROBLEM_BASE_URI}/bad-request"
    title = "Bad Request"


class QuotaExceeded(ProblemError):
    """Plan allowance exhausted; the action was not performed."""

    status_code = 402
    error_type = f"{PROBLEM_BASE_URI}/quota-exceeded"
    title = "Quota Exceeded"

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        code: str = "QUOTA_EXCEEDED",
        remaining: int = 0,
        limit: Optional[int] = None,
    ) -> None:
        self.code = code
        self.remaining = remaining
        self.limit = limit
        super().__init__(
            detail,
            extensions={"code": code, "remaining": remaining, "limit": limit, "upgrade": "PRO"},
        )


class RateLimited(ProblemError):
    status_code = 429
    error_type = f"{PROBLEM_BASE_URI}/rate-limited"
    title = "Too Many Requests"


class SignatureInvalid(ProblemError):
    """Webhook signature could not be verified; the event is never processed."""

    status_code = 400
    error_type = f"{PROBLEM_BASE_URI}/signature-invalid"
    title = "Invalid Signature"


class UpstreamProviderError(ProblemError):
    """Payment or identity provider call failed."""

    status_code = 502
    error_type = f"{PROBLEM_BASE_URI}/upstream-provider-error"
    title = "Bad Gateway"


class ConfigurationError(ProblemError):
    """A required secret or setting is missing for this operation."""

    status_code = 503
    error_type = f"{PROBLEM_BASE_URI}/not-configured"
    title = "Service Not Configured"


class NoTenantContext(ProblemError):
    """No membership could be resolved even after provisioning."""

    status_code = 500
    error_type = f"{PROBLEM_BASE_URI}/no-tenant-context"
    title = "Tenant Context Unavailable"


class PersistenceError(ProblemError):
    """Transient database failure; the operation is safe to retry."""

    status_code = 503
    error_type = f"{PROBLEM_BASE_URI}/persistence-error"
    title = "Service Unavailable"

    def __init__(self, detail: Optional[str] = None, *, retry_after: int = 1) -> None:
        super().__init__(detail, retry_after=retry_after)
