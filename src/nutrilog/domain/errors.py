"""Error taxonomy for the resolution and confirmation pipeline."""


class PipelineError(Exception):
    """Base class for pipeline errors."""


class EntryValidationError(PipelineError):
    """An item failed validation and cannot be confirmed as is."""


class ResolutionError(PipelineError):
    """A nutrition source could not produce usable data."""


class PersistenceError(PipelineError):
    """Saving or deleting a log entry failed; the action can be retried."""


class StepTimeoutError(PipelineError, TimeoutError):
    """A resolution or persistence step exceeded its time budget."""

    def __init__(self, step: str, budget_seconds: float) -> None:
        super().__init__(f"{step} exceeded {budget_seconds:g}s")
        self.step = step
        self.budget_seconds = budget_seconds


class CancellationError(PipelineError):
    """The user cancelled; results must be discarded without a message."""
