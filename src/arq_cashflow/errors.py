"""Exceptions raised by the series engine.

Every error carries the context a caller needs to build a user-facing
message: the template id, the scope of the attempted operation and the
target occurrence id, plus free-form details.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any
from uuid import UUID


class SeriesError(Exception):
    """Base exception for series engine errors."""

    code = "SERIES_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        template_id: UUID | None = None,
        scope: str | None = None,
        target_id: UUID | None = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.template_id = template_id
        self.scope = scope
        self.target_id = target_id
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for API responses and log lines."""
        return {
            "code": self.code,
            "message": self.message,
            "template_id": str(self.template_id) if self.template_id else None,
            "scope": self.scope,
            "target_id": str(self.target_id) if self.target_id else None,
            "details": self.details,
        }

    def fill_context(
        self,
        *,
        template_id: UUID | None = None,
        scope: str | Enum | None = None,
        target_id: UUID | None = None,
    ) -> None:
        """Set whichever of template id, scope and target id are still missing."""
        if self.template_id is None:
            self.template_id = template_id
        if self.scope is None and scope is not None:
            self.scope = scope.value if isinstance(scope, Enum) else scope
        if self.target_id is None:
            self.target_id = target_id


class ValidationError(SeriesError):
    """Malformed recurrence rule or request. Raised before any mutation."""

    code = "VALIDATION_ERROR"


class NotFoundError(SeriesError):
    """Template or occurrence does not resolve within the caller's scope."""

    code = "NOT_FOUND"


class TransactionError(SeriesError):
    """The persistence transaction failed and was rolled back as a whole."""

    code = "TRANSACTION_FAILED"


@contextmanager
def error_context(
    *,
    template_id: UUID | None = None,
    scope: str | Enum | None = None,
    target_id: UUID | None = None,
) -> Iterator[None]:
    """Attach the operation's context to any :class:`SeriesError` raised inside.

    Errors raised deep in the store (a failed commit, a timeout) do not know
    which template or occurrence the caller was working on.
    """
    try:
        yield
    except SeriesError as exc:
        exc.fill_context(template_id=template_id, scope=scope, target_id=target_id)
        raise
