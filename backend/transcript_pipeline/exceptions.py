"""Domain exceptions for the transcript pipeline.

Each error carries the HTTP status it maps to and a single human readable
``detail`` string.  The API layer turns them into ``{"detail": ...}`` bodies;
no stack or nested cause ever leaves the process.
"""

from __future__ import annotations

__all__ = [
    "PipelineError",
    "ResolutionError",
    "InvalidSegmentError",
    "UpstreamSubmitError",
    "UpstreamPollError",
    "AnnotationError",
    "StoreError",
    "TranscriptNotFoundError",
]


class PipelineError(Exception):
    """Domain-level base exception so we can map to JSON responses easily."""

    status_code: int = 500

    def __init__(self, detail: str, status_code: int | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class ResolutionError(PipelineError):
    """The media id could not be resolved to a media-platform entry."""

    status_code = 404


class InvalidSegmentError(PipelineError, ValueError):
    """Segment bounds must be both null or both set with ``start < end``."""

    status_code = 422


class UpstreamSubmitError(PipelineError):
    """The transcription provider rejected a submission.

    ``detail`` holds the provider's raw error body.  Terminal, never retried.
    """

    status_code = 502


class UpstreamPollError(PipelineError):
    """A status or paragraph query against the provider failed."""

    status_code = 502


class AnnotationError(PipelineError):
    """Speaker identification failed; degrades output but is never fatal."""

    status_code = 502


class StoreError(PipelineError):
    """Persistence failure; surfaced as a generic failure."""

    status_code = 500


class TranscriptNotFoundError(PipelineError):
    """No transcript exists for the requested id or entry (or it was just removed)."""

    status_code = 404
