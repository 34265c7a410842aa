"""Pydantic models for transcript content and speaker identities."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from transcript_pipeline.exceptions import InvalidSegmentError


class Word(BaseModel):
    text: str
    start: int = Field(description="Offset in milliseconds.")
    end: int = Field(description="Offset in milliseconds.")
    confidence: Optional[float] = None
    speaker: Optional[str] = None


class Paragraph(BaseModel):
    text: str
    start: int
    end: int
    confidence: Optional[float] = None
    words: list[Word] = Field(default_factory=list)

    @property
    def speaker(self) -> Optional[str]:
        """Diarization label of the paragraph's first word."""
        return self.words[0].speaker if self.words else None


class TranscriptContent(BaseModel):
    paragraphs: list[Paragraph] = Field(default_factory=list)

    @property
    def is_enriched(self) -> bool:
        return bool(self.paragraphs)


class SpeakerInfo(BaseModel):
    name: Optional[str] = None
    function: Optional[str] = None
    affiliation: Optional[str] = None
    group: Optional[str] = None


SpeakerMapping = dict[str, SpeakerInfo]


class Segment(BaseModel):
    """Time-bounded sub-range of a recording, in seconds."""

    start: float
    end: float

    @classmethod
    def from_bounds(cls, start: Optional[float], end: Optional[float]) -> Optional["Segment"]:
        """Validate a (start, end) pair; both null means the full recording."""
        if start is None and end is None:
            return None
        if start is None or end is None:
            raise InvalidSegmentError("Segment start and end must both be set or both be null")
        if start < 0 or start >= end:
            raise InvalidSegmentError(f"Invalid segment: start ({start}) must be >= 0 and before end ({end})")
        return cls(start=start, end=end)
