"""ORM model for cached transcripts."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, DateTime, Enum as SAEnum, Float, Integer, String, Text

from transcript_pipeline.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TranscriptStatus(str, Enum):
    """Coarse status reported to callers."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class PipelineStage(str, Enum):
    """Fine-grained lifecycle of a transcript inside the pipeline.

    SUBMITTED -> PROCESSING -> TRANSCRIBED -> ANNOTATING -> DONE, with ERROR
    only when the provider reports a failed job.
    """

    SUBMITTED = "SUBMITTED"
    PROCESSING = "PROCESSING"
    TRANSCRIBED = "TRANSCRIBED"
    ANNOTATING = "ANNOTATING"
    DONE = "DONE"
    ERROR = "ERROR"

    @property
    def external_status(self) -> TranscriptStatus:
        if self is PipelineStage.DONE:
            return TranscriptStatus.COMPLETED
        if self is PipelineStage.ERROR:
            return TranscriptStatus.ERROR
        return TranscriptStatus.PROCESSING


# Stage a plain ``save(status=...)`` lands in when no explicit stage is given.
DEFAULT_STAGE_FOR_STATUS = {
    TranscriptStatus.PROCESSING: PipelineStage.PROCESSING,
    TranscriptStatus.COMPLETED: PipelineStage.DONE,
    TranscriptStatus.ERROR: PipelineStage.ERROR,
}


class TranscriptRecord(Base):
    """
    One transcription job for a media entry (or a time-bounded segment of it).

    Keyed by the provider's job id.  ``start_time``/``end_time`` are either
    both null (full recording) or both set.
    """
    __tablename__ = "transcripts"

    transcript_id = Column(String(64), primary_key=True, comment="Job id assigned by the transcription provider.")
    entry_id = Column(String(64), nullable=False, index=True, comment="Canonical media-platform entry id.")
    start_time = Column(Float, nullable=True, comment="Segment start in seconds; null for the full recording.")
    end_time = Column(Float, nullable=True, comment="Segment end in seconds; null for the full recording.")
    audio_url = Column(String(1024), nullable=False, comment="Audio rendition URL handed to the provider.")
    status = Column(SAEnum(TranscriptStatus, values_callable=lambda e: [m.value for m in e]), nullable=False, default=TranscriptStatus.PROCESSING)
    stage = Column(SAEnum(PipelineStage), nullable=False, default=PipelineStage.SUBMITTED)
    language_code = Column(String(16), nullable=True)
    content = Column(Text, nullable=False, default='{"paragraphs": []}', comment="Serialized paragraphs and words.")
    error_message = Column(Text, nullable=True)
    annotation_attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def segment(self) -> tuple[float, float] | None:
        if self.start_time is None or self.end_time is None:
            return None
        return (self.start_time, self.end_time)


class SpeakerMappingRecord(Base):
    """Label -> speaker identity mapping, keyed by transcript id.

    Deliberately not a foreign key: deleting a transcript orphans its mapping.
    """
    __tablename__ = "speaker_mappings"

    transcript_id = Column(String(64), primary_key=True)
    mapping = Column(Text, nullable=False, comment="Serialized label -> {name, function, affiliation, group}.")
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
