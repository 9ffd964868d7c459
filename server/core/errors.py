class CalendarError(Exception):
    """Base class for every calendar aggregation failure."""


class AdapterFetchError(CalendarError):
    """One upstream source was unreachable or answered with a failure."""

    def __init__(self, source: str, message: str, status_code: int | None = None):
        super().__init__(f"[{source}] {message}")
        self.source = source
        self.status_code = status_code


class RateLimitExceeded(CalendarError):
    def __init__(self, action: str, message: str = "Too many requests. Please try again later."):
        super().__init__(message)
        self.action = action


class PermissionDenied(CalendarError):
    pass


class DomainViolation(CalendarError):
    """A Google account outside the tenant's email domain tried to sign in."""

    def __init__(self, email: str, domain: str):
        super().__init__(f"Please sign in with your {domain} account")
        self.email = email
        self.domain = domain


class TotalFetchFailure(CalendarError):
    """Every source adapter failed for a single aggregation call."""
