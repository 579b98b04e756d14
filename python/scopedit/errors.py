"""Exception taxonomy for the scoped edit engine.

NotFound-family and guard errors are expected outcomes: tool operations turn them
into failed ``ToolResult`` objects so the calling agent can retry with adjusted
input. Nothing here is process-fatal.
"""

from typing import List, Optional


class ScopeditError(Exception):
    """Base exception for all scopedit errors."""


class NotFoundError(ScopeditError):
    """A locator did not resolve."""

    def __init__(self, message: str, attempted: Optional[List[str]] = None, preview: Optional[str] = None):
        super().__init__(message)
        self.attempted = list(attempted or [])
        self.preview = preview


class TextNotFoundError(NotFoundError):
    def __init__(
        self,
        query: str,
        attempted: Optional[List[str]] = None,
        preview: Optional[str] = None,
        candidates: Optional[List[dict]] = None,
    ):
        super().__init__(f'Text "{query}" not found in scope', attempted=attempted, preview=preview)
        self.query = query
        self.candidates = list(candidates or [])


class ArticleNotFoundError(NotFoundError):
    def __init__(self, name: str):
        super().__init__(f'Article "{name}" not found in document', attempted=[name])
        self.name = name


class GuardViolation(ScopeditError):
    """Read-before-write or instruction allow-list violated."""

    def __init__(self, action: str, hint: str):
        super().__init__(f"{action} blocked: {hint}")
        self.action = action
        self.hint = hint


class RenderFailure(ScopeditError):
    """Diff visualisation failed. Never blocks the underlying mutation."""


class InvalidLocatorError(ScopeditError, ValueError):
    """Malformed location or enum value supplied by the caller."""


class ProposalMismatchError(ScopeditError):
    """Accept/reject could not find the styled spans a change rendered."""


class ChangeStateError(ScopeditError):
    """Accept/reject requested for a change that is no longer pending."""
