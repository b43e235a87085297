"""Typed error taxonomy.

Every error the API can surface carries a stable ``kind`` (written to
``reports.error_kind`` for generation failures and returned in error bodies)
and the HTTP status the global handler maps it to.
"""


class BenchmarkError(Exception):
    """Base exception for BenchmarkAI application."""

    kind = "InternalError"
    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.kind
        super().__init__(self.message)


class ConfigurationError(BenchmarkError):
    """Raised when a required secret or setting is missing."""

    kind = "ConfigurationError"


class NotAuthenticatedError(BenchmarkError):
    """Authentication required."""

    kind = "NotAuthenticated"
    status_code = 401


class ForbiddenError(BenchmarkError):
    """Resource belongs to another user."""

    kind = "Forbidden"
    status_code = 403


class InvalidPlanError(BenchmarkError):
    """Raised when a plan name is not one of the sold tiers."""

    kind = "InvalidPlan"
    status_code = 400

    def __init__(self, plan: str):
        self.plan = plan
        super().__init__(f"Invalid plan: {plan}")


class BadRequestError(BenchmarkError):
    """Request is missing a required value."""

    kind = "BadRequest"
    status_code = 400


class MissingMetadataError(BenchmarkError):
    """Checkout session metadata is incomplete."""

    kind = "MissingMetadata"
    status_code = 400


class ReportNotFoundError(BenchmarkError):
    """Report not found."""

    kind = "NotFound"
    status_code = 404

    def __init__(self, report_id: str):
        self.report_id = report_id
        super().__init__(f"Report not found: {report_id}")


class ReportNotEligibleError(BenchmarkError):
    """Raised when an operation is not allowed from the report's current status."""

    kind = "NotEligible"
    status_code = 409

    def __init__(self, report_id: str, status: str, message: str = ""):
        self.report_id = report_id
        self.status = status
        super().__init__(message or f"Report {report_id} is {status}")


class InvalidTransitionError(BenchmarkError):
    """Raised when code asks for an edge that is not in the transition table."""

    kind = "InvalidTransition"

    def __init__(self, from_statuses, to_status):
        self.from_statuses = tuple(from_statuses)
        self.to_status = to_status
        names = ", ".join(str(getattr(s, "value", s)) for s in self.from_statuses)
        super().__init__(f"Illegal transition [{names}] -> {getattr(to_status, 'value', to_status)}")


class UpstreamUnavailableError(BenchmarkError):
    """Payment provider unreachable."""

    kind = "UpstreamUnavailable"
    status_code = 502


class PriceNotConfiguredError(BenchmarkError):
    """Raised when a plan has no price configured, or the price does not exist at Stripe."""

    kind = "PriceNotConfigured"

    def __init__(self, plan: str, detail: str = "price not found"):
        self.plan = plan
        super().__init__(f"{detail} for plan '{plan}'")


# ── Generation errors ───────────────────────────────────────────────
# Never surfaced as HTTP errors; the generator persists them as error_kind.


class GenerationError(BenchmarkError):
    """Base class for failures while producing a report."""

    kind = "InternalError"
    status_code = 502


class RateLimitedError(GenerationError):
    """AI service rate limit reached."""

    kind = "RateLimited"


class UpstreamUnauthenticatedError(GenerationError):
    """AI service rejected our credentials."""

    kind = "Unauthenticated"


class UpstreamError(GenerationError):
    """AI service returned an error."""

    kind = "UpstreamError"


class MalformedOutputError(GenerationError):
    """AI output is not valid JSON for the report schema."""

    kind = "MalformedOutput"


class GenerationTimeoutError(GenerationError):
    """AI call exceeded the generation timeout."""

    kind = "Timeout"
    status_code = 504
