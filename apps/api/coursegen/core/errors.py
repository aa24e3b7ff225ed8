# apps/api/coursegen/core/errors.py
from __future__ import annotations


class CourseGenError(Exception):
    pass


class ValidationError(CourseGenError):
    """Plan JSON is malformed even after the repair call. Never retried."""


class NotFoundError(CourseGenError):
    pass


class AccessError(CourseGenError):
    pass


class ExternalToolError(CourseGenError):
    """Renderer/compositor exited non-zero or timed out."""

    def __init__(self, tool: str, message: str, *, returncode: int | None = None):
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.returncode = returncode


class TransientIOError(CourseGenError):
    """Storage, LLM, broker or DB failure; the job queue may retry."""


class StageArtifactError(CourseGenError):
    """A stage could not produce its artifact for a subtopic."""


class PermanentPipelineFailure(CourseGenError):
    def __init__(self, message: str, *, attempts: int):
        super().__init__(message)
        self.attempts = attempts


# Errors that a retry cannot fix.
NON_RETRYABLE = (ValidationError, NotFoundError, AccessError, PermanentPipelineFailure)
