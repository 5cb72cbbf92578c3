"""Exception types shared by the pipeline, the worker and the controller."""

from __future__ import annotations

import datetime


class SprintPilotError(Exception):
    """Base class for all SprintPilot errors."""


class LLMError(SprintPilotError):
    """An LLM invocation failed."""

    def __init__(self, message: str, original_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.original_error = original_error


class RetryExhaustedError(LLMError):
    """Raised by the retry policy once every attempt has failed.

    The last underlying error is available both as ``original_error`` and as
    ``__cause__``.
    """

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"Failed after {attempts} attempts{detail}", last_error)
        self.attempts = attempts


class JsonExtractionError(SprintPilotError):
    """Model output could not be parsed as JSON of the expected shape."""


class StagePreconditionError(SprintPilotError):
    """A stage was asked to run without its upstream fields."""

    def __init__(self, stage: str, missing: list[str]) -> None:
        super().__init__(f"missing {', '.join(missing)}")
        self.stage = stage
        self.missing = missing


class PipelineInvariantError(SprintPilotError):
    """The runner detected a broken ordering or accounting invariant."""


class RateLimitExceeded(SprintPilotError):
    """Run creation was throttled for a caller."""

    def __init__(self, reset_at: datetime.datetime, remaining: int = 0) -> None:
        super().__init__("Rate limit exceeded. Please try again later.")
        self.reset_at = reset_at
        self.remaining = remaining
