"""
Error types for the cancellation pipeline.

Every error raised by the pipeline derives from CancellationError. Stage
failures carry the stage they originated from, so callers can tell which
of the three downstream calls went wrong.
"""

from __future__ import annotations

from bipro_cancel.models import Stage


class CancellationError(Exception):
    """Base class for all cancellation pipeline errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class PreconditionError(CancellationError):
    """Raised when customer or policy data is missing or incomplete."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class StageError(CancellationError):
    """A downstream stage failed. Carries the failing stage."""

    def __init__(self, stage: Stage, message: str) -> None:
        self.stage = stage
        super().__init__(f"{stage.value} failed: {message}")


class TransportError(StageError):
    """A downstream call could not complete (network failure or non-success status)."""

    def __init__(
        self,
        stage: Stage,
        message: str,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(stage, message)


class ShapeError(StageError):
    """A downstream response did not match the expected payload kind."""


class PresentationError(CancellationError):
    """Opening a preview or download of an artifact failed."""


_STAGE_MESSAGES: dict[Stage, str] = {
    Stage.DOCUMENT_GENERATION: "Could not generate the cancellation preview.",
    Stage.MAPPING: "Could not map the cancellation to the BiPRO template.",
    Stage.CONFIRMATION: "Could not submit the cancellation request.",
}


def user_message(exc: BaseException) -> str:
    """
    Human-readable notification for an error surfaced to the UI.

    Names the failed action in general terms; the underlying cause is
    expected to be recorded in the trace, not shown to the user.
    """
    if isinstance(exc, StageError):
        return _STAGE_MESSAGES[exc.stage]
    if isinstance(exc, PreconditionError):
        return "Customer or policy data is incomplete."
    if isinstance(exc, PresentationError):
        return "Could not open the cancellation document."
    return "The cancellation could not be processed."
