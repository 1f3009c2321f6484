class GitAnalyzerError(Exception):
    """Base exception for the analysis backend.

    ``status_code`` and ``code`` drive the HTTP mapping in the global
    exception handler; ``headers`` are copied onto the response.
    """

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = "", headers: dict[str, str] | None = None):
        self.message = message or self.code
        self.headers = headers or {}
        super().__init__(self.message)


# ──────────────────────────────────────────────────────────────────────────────
# Admission errors: surfaced to the caller, never retried internally
# ──────────────────────────────────────────────────────────────────────────────


class QuotaExceededError(GitAnalyzerError):
    """Raised when the monthly token budget cannot cover the request."""

    status_code = 402
    code = "quota_exceeded"

    def __init__(self, message: str, suggested_depth: str | None = None, upgrade_url: str = "/subscription"):
        self.suggested_depth = suggested_depth
        self.upgrade_url = upgrade_url
        super().__init__(message)


class PlanRestrictionError(GitAnalyzerError):
    """Raised when the plan does not allow a depth or analysis type."""

    status_code = 403
    code = "plan_restriction"


class AccessDeniedError(GitAnalyzerError):
    """Raised when the caller neither owns the resource nor is an admin."""

    status_code = 403
    code = "access_denied"


class RateLimitExceededError(GitAnalyzerError):
    """Raised when a per-user endpoint quota rejects the call."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, limit: int, remaining: int, reset_at: int, retry_after: int):
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": str(remaining),
                "X-RateLimit-Reset": str(reset_at),
            },
        )


# ──────────────────────────────────────────────────────────────────────────────
# Request errors
# ──────────────────────────────────────────────────────────────────────────────


class InvalidPayloadError(GitAnalyzerError):
    """Raised when a request body is missing required fields or has invalid ones."""

    status_code = 400
    code = "invalid_payload"


# ──────────────────────────────────────────────────────────────────────────────
# Data errors
# ──────────────────────────────────────────────────────────────────────────────


class NotFoundError(GitAnalyzerError):
    """Raised when a project, queue item, plan or analysis does not exist."""

    status_code = 404
    code = "not_found"


class MissingSnapshotError(NotFoundError):
    """Raised when a project has no cached repository snapshot to analyze."""

    code = "missing_snapshot"


class InvalidStateError(GitAnalyzerError):
    """Raised when a queue item is not in a state that allows the operation."""

    status_code = 409
    code = "invalid_state"


# ──────────────────────────────────────────────────────────────────────────────
# Provider errors
# ──────────────────────────────────────────────────────────────────────────────


class ProviderError(GitAnalyzerError):
    """Raised when an AI backend call fails. Retried by the provider client."""

    status_code = 502
    code = "provider_error"

    def __init__(self, message: str, provider: str = "", upstream_status: int | None = None):
        self.provider = provider
        self.upstream_status = upstream_status
        super().__init__(message)


class ProviderRateLimitedError(ProviderError):
    """Raised on HTTP 429 from an AI backend."""

    status_code = 429
    code = "provider_rate_limited"


class InsufficientCreditsError(ProviderError):
    """Raised on HTTP 402 from an AI backend. Not retried."""

    status_code = 402
    code = "insufficient_credits"


class InvalidRequestError(ProviderError):
    """Raised on HTTP 400 from an AI backend. Not retried."""

    status_code = 400
    code = "invalid_request"


class ProviderConfigurationError(GitAnalyzerError):
    """Raised when no AI backend has credentials configured."""

    status_code = 500
    code = "provider_not_configured"


class AIRequestFailedError(GitAnalyzerError):
    """Raised when a user-facing AI call fails for a reason other than credits or rate limits."""

    status_code = 500
    code = "ai_request_failed"
