# Namespace for Pydantic & ORM models.
from .content import Paragraph, Segment, SpeakerInfo, SpeakerMapping, TranscriptContent, Word
from .transcript import PipelineStage, SpeakerMappingRecord, TranscriptRecord, TranscriptStatus

__all__ = [
    "Paragraph",
    "PipelineStage",
    "Segment",
    "SpeakerInfo",
    "SpeakerMapping",
    "SpeakerMappingRecord",
    "TranscriptContent",
    "TranscriptRecord",
    "TranscriptStatus",
    "Word",
]
