"""Custom exception classes for the couchauth scenario probe.

Errors fall into two families:
- Client boundary errors (``CouchError``) classify what the server or the
  transport reported, so scenario steps match on types instead of status codes.
- Step failures (``StepFailure``) are what the runner records when a step does
  not behave as its expectation requires.
"""

from __future__ import annotations

from typing import Any


class CouchAuthError(Exception):
    """Base exception class for all couchauth errors."""

    pass


class ConfigError(CouchAuthError):
    """Raised when scenario configuration cannot be loaded or validated."""

    pass


class CouchError(CouchAuthError):
    """Base exception class for errors reported by the server or transport."""

    pass


class ResponseError(CouchError):
    """Raised when the server answers with a non-success status."""

    def __init__(
        self,
        *,
        method: str,
        url: str,
        status: int,
        error: str | None = None,
        reason: str | None = None,
        body: Any = None,
    ) -> None:
        self.method = method
        self.url = url
        self.status = status
        self.error = error
        self.reason = reason
        self.body = body
        detail = ": ".join(part for part in (error, reason) if part)
        super().__init__(f"{method} {url} -> {status}" + (f" {detail}" if detail else ""))


class DeniedError(ResponseError):
    """Raised when the server rejects the caller's credentials or access (401/403)."""

    @property
    def unauthorized(self) -> bool:
        return self.status == 401


class NotFoundError(ResponseError):
    """Raised when the addressed entity does not exist (404)."""

    pass


class ConflictError(ResponseError):
    """Raised on revision conflicts or already-existing entities (409/412)."""

    pass


class TransportError(CouchError):
    """Raised when the request never produced an HTTP response."""

    def __init__(self, *, method: str, url: str, reason: str) -> None:
        self.method = method
        self.url = url
        self.reason = reason
        super().__init__(f"{method} {url} failed: {reason}")


class BulkItemError(CouchError):
    """Raised when one or more items of a bulk insert were rejected.

    ``failures`` holds ``(item_id, error, reason)`` for every rejected item.
    """

    def __init__(self, failures: list[tuple[str, str, str]]) -> None:
        self.failures = failures
        summary = ", ".join(f"{item_id} ({error}: {reason})" for item_id, error, reason in failures)
        super().__init__(f"bulk insert rejected {len(failures)} item(s): {summary}")


class StepFailure(CouchAuthError):
    """Base exception class for failures recorded against a scenario step."""

    def __init__(self, step: str, message: str, cause: BaseException | None = None) -> None:
        self.step = step
        self.cause = cause
        super().__init__(f"{step}: {message}")


class SetupFailed(StepFailure):
    """Raised when a setup or policy step could not establish its precondition."""

    def __init__(self, step: str, cause: BaseException | str) -> None:
        if isinstance(cause, BaseException):
            super().__init__(step, str(cause), cause)
        else:
            super().__init__(step, cause)


class AssertionMismatch(StepFailure):
    """Raised when a verification step's outcome differs from its expectation."""

    def __init__(
        self, step: str, expected: str, actual: str, cause: BaseException | None = None
    ) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(step, f"expected {expected}, got {actual}", cause)


class UnexpectedFailure(StepFailure):
    """Raised when a verification step failed outside of any expected outcome."""

    def __init__(self, step: str, cause: BaseException) -> None:
        super().__init__(step, f"{type(cause).__name__}: {cause}", cause)


class TeardownFailed(StepFailure):
    """Raised when a cleanup step failed. Never retried."""

    def __init__(self, step: str, cause: BaseException | str) -> None:
        if isinstance(cause, BaseException):
            super().__init__(step, str(cause), cause)
        else:
            super().__init__(step, cause)
