from typing import Optional


class AppError(Exception):
    """Base class for all application-level errors."""
    pass


class DomainError(AppError):
    """Base for domain logic errors."""
    pass

class InvalidQueryError(DomainError):
    def __init__(self, field: str, value) -> None:
        self.field = field
        self.value = value
        self.message = f"Invalid value for '{field}': {value!r}"
        super().__init__(self.message)

class RecordNotFoundError(DomainError):
    def __init__(self, what: str) -> None:
        self.message = f"No appraisal record found for {what}"
        super().__init__(self.message)



class InfrastructureError(AppError):
    """Base for infrastructure-related errors (DB, API, etc)."""
    pass

class UpstreamError(InfrastructureError):
    """The open-data catalog could not deliver a usable page."""

    def __init__(self, offset: int, detail: str = "", attempts: Optional[int] = None):
        self.offset = offset
        self.detail = detail
        self.attempts = attempts
        self.message = f"Upstream request failed at offset {offset}: {detail}"
        super().__init__(self.message)

class UpstreamTimeoutError(UpstreamError):
    def __init__(self, offset: int, detail: str = "", attempts: Optional[int] = None):
        super().__init__(offset, detail or "request timed out", attempts)

class UpstreamHttpError(UpstreamError):
    def __init__(self, offset: int, status_code: Optional[int] = None, detail: str = "",
                 attempts: Optional[int] = None):
        self.status_code = status_code
        if status_code is not None:
            detail = f"HTTP {status_code}" + (f" {detail}" if detail else "")
        super().__init__(offset, detail, attempts)

class UpstreamMalformedResponseError(UpstreamError):
    pass
