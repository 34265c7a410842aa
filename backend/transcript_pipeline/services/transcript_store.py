"""Durable cache of transcript records and speaker mappings.

The store is the single source of truth for the pipeline.  There is no lock
and no transaction spanning several calls: every write is an upsert keyed by
transcript id, so concurrent pollers writing the same record is harmless.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Optional

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from transcript_pipeline.exceptions import StoreError
from transcript_pipeline.models.content import Paragraph, Segment, SpeakerInfo, SpeakerMapping, TranscriptContent
from transcript_pipeline.models.transcript import (
    DEFAULT_STAGE_FOR_STATUS,
    PipelineStage,
    SpeakerMappingRecord,
    TranscriptRecord,
    TranscriptStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

EMPTY_CONTENT = TranscriptContent()

# Stages before the provider has reported completion.
IN_FLIGHT_STAGES = (PipelineStage.SUBMITTED, PipelineStage.PROCESSING)


def serialize_content(content: TranscriptContent | Iterable[Paragraph] | None) -> str:
    if content is None:
        content = EMPTY_CONTENT
    elif not isinstance(content, TranscriptContent):
        content = TranscriptContent(paragraphs=list(content))
    return content.model_dump_json()


def parse_content(raw: Optional[str]) -> TranscriptContent:
    """Deserialize stored content; unreadable content counts as empty."""
    if not raw:
        return TranscriptContent()
    try:
        return TranscriptContent.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning("Stored transcript content could not be parsed: %s", exc)
        return TranscriptContent()


def serialize_mapping(mapping: SpeakerMapping | dict[str, Any]) -> str:
    return json.dumps(
        {
            label: (info.model_dump() if isinstance(info, SpeakerInfo) else SpeakerInfo.model_validate(info).model_dump())
            for label, info in mapping.items()
        }
    )


def parse_mapping(raw: str) -> SpeakerMapping:
    data = json.loads(raw) if raw else {}
    return {label: SpeakerInfo.model_validate(info) for label, info in data.items()}


class TranscriptStore:
    """Repository over the ``transcripts`` and ``speaker_mappings`` tables."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Transcript records
    # ------------------------------------------------------------------

    def get(
        self,
        entry_id: str,
        start: Optional[float] = None,
        end: Optional[float] = None,
        *,
        include_submitted: bool = False,
    ) -> Optional[TranscriptRecord]:
        """Exact-match lookup on (entry_id, start, end); null and 0 are distinct.

        Records that have been submitted but never polled are invisible unless
        ``include_submitted`` is set.
        """
        Segment.from_bounds(start, end)
        statement = select(TranscriptRecord).where(TranscriptRecord.entry_id == entry_id)
        statement = statement.where(
            TranscriptRecord.start_time.is_(None) if start is None else TranscriptRecord.start_time == start
        )
        statement = statement.where(
            TranscriptRecord.end_time.is_(None) if end is None else TranscriptRecord.end_time == end
        )
        if not include_submitted:
            statement = statement.where(TranscriptRecord.stage != PipelineStage.SUBMITTED)
        statement = statement.order_by(TranscriptRecord.updated_at.desc(), TranscriptRecord.created_at.desc())
        try:
            return self.session.execute(statement).scalars().first()
        except SQLAlchemyError as exc:
            self._fail("look up transcript for entry %s" % entry_id, exc)

    def get_by_transcript_id(self, transcript_id: str) -> Optional[TranscriptRecord]:
        try:
            # populate_existing so a poller sees writes made by other sessions
            return self.session.get(TranscriptRecord, transcript_id, populate_existing=True)
        except SQLAlchemyError as exc:
            self._fail("load transcript %s" % transcript_id, exc)

    def save(
        self,
        entry_id: str,
        transcript_id: str,
        start: Optional[float],
        end: Optional[float],
        audio_url: str,
        status: TranscriptStatus | str,
        language_code: Optional[str],
        content: TranscriptContent | Iterable[Paragraph] | None,
        *,
        stage: PipelineStage | str | None = None,
        error_message: Optional[str] = None,
        annotation_attempts: Optional[int] = None,
    ) -> TranscriptRecord:
        """Upsert keyed by ``transcript_id``; overwrites every field."""
        Segment.from_bounds(start, end)
        status = TranscriptStatus(status)
        stage = PipelineStage(stage) if stage is not None else DEFAULT_STAGE_FOR_STATUS[status]
        try:
            record = self.session.get(TranscriptRecord, transcript_id)
            if record is None:
                record = TranscriptRecord(transcript_id=transcript_id, annotation_attempts=0, created_at=utcnow())
                self.session.add(record)
            record.entry_id = entry_id
            record.start_time = start
            record.end_time = end
            record.audio_url = audio_url
            record.status = status
            record.stage = stage
            record.language_code = language_code
            record.content = serialize_content(content)
            record.error_message = error_message
            if annotation_attempts is not None:
                record.annotation_attempts = annotation_attempts
            record.updated_at = utcnow()
            self.session.commit()
            self.session.refresh(record)
        except SQLAlchemyError as exc:
            self._fail("save transcript %s" % transcript_id, exc)
        logger.debug("Saved transcript %s (entry=%s, status=%s, stage=%s)", transcript_id, entry_id, status.value, stage.value)
        return record

    def set_stage(
        self,
        transcript_id: str,
        stage: PipelineStage,
        *,
        status: TranscriptStatus | None = None,
        error_message: Optional[str] = None,
        increment_attempts: bool = False,
        clear_error: bool = False,
        annotation_attempts: Optional[int] = None,
    ) -> Optional[TranscriptRecord]:
        """Move a record to ``stage`` without touching its content.

        Returns ``None`` when the record no longer exists.
        """
        try:
            record = self.session.get(TranscriptRecord, transcript_id, populate_existing=True)
            if record is None:
                return None
            record.stage = stage
            if status is not None:
                record.status = status
            if clear_error:
                record.error_message = None
            elif error_message is not None:
                record.error_message = error_message
            if annotation_attempts is not None:
                record.annotation_attempts = annotation_attempts
            elif increment_attempts:
                record.annotation_attempts = (record.annotation_attempts or 0) + 1
            record.updated_at = utcnow()
            self.session.commit()
            self.session.refresh(record)
            return record
        except SQLAlchemyError as exc:
            self._fail("update stage of transcript %s" % transcript_id, exc)

    def update_content(self, transcript_id: str, paragraphs: Iterable[Paragraph]) -> Optional[TranscriptRecord]:
        try:
            record = self.session.get(TranscriptRecord, transcript_id, populate_existing=True)
            if record is None:
                return None
            record.content = serialize_content(paragraphs)
            record.updated_at = utcnow()
            self.session.commit()
            self.session.refresh(record)
            return record
        except SQLAlchemyError as exc:
            self._fail("update content of transcript %s" % transcript_id, exc)

    def mark_transcribed(self, transcript_id: str, language_code: Optional[str]) -> bool:
        """Write the completed shell record if it is still in flight.

        A conditional UPDATE, never an insert: a record deleted by a forced
        re-submission stays deleted, and a record another poller already
        advanced is left alone.  Returns whether a row was changed.
        """
        statement = (
            update(TranscriptRecord)
            .where(
                TranscriptRecord.transcript_id == transcript_id,
                TranscriptRecord.stage.in_(IN_FLIGHT_STAGES),
            )
            .values(
                status=TranscriptStatus.COMPLETED,
                stage=PipelineStage.TRANSCRIBED,
                language_code=language_code,
                content=serialize_content(EMPTY_CONTENT),
                error_message=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(statement)
            self.session.commit()
        except SQLAlchemyError as exc:
            self._fail("mark transcript %s transcribed" % transcript_id, exc)
        return result.rowcount > 0

    def delete_for_entry(self, entry_id: str) -> int:
        """Remove every record for ``entry_id`` regardless of segment.

        Speaker mappings are left in place (orphaned).
        """
        try:
            records = self.session.execute(
                select(TranscriptRecord).where(TranscriptRecord.entry_id == entry_id)
            ).scalars().all()
            for record in records:
                self.session.delete(record)
            self.session.commit()
        except SQLAlchemyError as exc:
            self._fail("delete transcripts for entry %s" % entry_id, exc)
        logger.info("Deleted %d transcript record(s) for entry %s", len(records), entry_id)
        return len(records)

    def list_entries(self, status: TranscriptStatus = TranscriptStatus.COMPLETED, full_only: bool = True) -> list[str]:
        """Distinct entry ids with at least one record in ``status``."""
        statement = select(TranscriptRecord.entry_id).where(TranscriptRecord.status == status).distinct()
        if full_only:
            statement = statement.where(TranscriptRecord.start_time.is_(None), TranscriptRecord.end_time.is_(None))
        try:
            return list(self.session.execute(statement.order_by(TranscriptRecord.entry_id)).scalars())
        except SQLAlchemyError as exc:
            self._fail("list transcript entries", exc)

    # ------------------------------------------------------------------
    # Speaker mappings
    # ------------------------------------------------------------------

    def get_mapping(self, transcript_id: str) -> Optional[SpeakerMapping]:
        try:
            record = self.session.get(SpeakerMappingRecord, transcript_id, populate_existing=True)
        except SQLAlchemyError as exc:
            self._fail("load speaker mapping %s" % transcript_id, exc)
        if record is None:
            return None
        return parse_mapping(record.mapping)

    def set_mapping(self, transcript_id: str, mapping: SpeakerMapping | dict[str, Any]) -> None:
        """Last write wins."""
        try:
            record = self.session.get(SpeakerMappingRecord, transcript_id)
            if record is None:
                record = SpeakerMappingRecord(transcript_id=transcript_id)
                self.session.add(record)
            record.mapping = serialize_mapping(mapping)
            record.updated_at = utcnow()
            self.session.commit()
        except SQLAlchemyError as exc:
            self._fail("save speaker mapping %s" % transcript_id, exc)
        logger.info("Stored speaker mapping for transcript %s (%d speaker(s))", transcript_id, len(mapping))

    # ------------------------------------------------------------------

    def _fail(self, action: str, exc: SQLAlchemyError):
        logger.error("Transcript store failed to %s: %s", action, exc, exc_info=True)
        self.session.rollback()
        raise StoreError("Transcript store failure") from exc
