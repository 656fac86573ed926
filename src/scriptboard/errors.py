"""
Exception types for scriptboard.

Undercounts are not exceptions: they are recorded as ``UndercountWarning``
values (see ``scriptboard.utils.types``) and never stop a run.
"""

from __future__ import annotations

from typing import Optional


class ScriptboardError(Exception):
    """Base class for all scriptboard exceptions."""

    pass


class ValidationError(ScriptboardError, ValueError):
    """Input text or configuration rejected before any generation call."""

    pass


class GenerationError(ScriptboardError):
    """The text-generation backend failed (network, quota, model)."""

    pass


class ParseFailure(GenerationError):
    """The backend answered, but not with usable structured output."""

    pass


class AssemblyError(ScriptboardError):
    """Assembled units are not numbered 1..N."""

    pass


class Cancelled(ScriptboardError):
    """A cancel event was set while a run was in flight."""

    pass


class PipelineError(ScriptboardError):
    """A run failed; ``cause`` is the underlying exception."""

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        chunk_index: Optional[int] = None,
    ):
        super().__init__(message)
        self.cause = cause
        self.chunk_index = chunk_index


class PipelineCancelled(PipelineError):
    pass
