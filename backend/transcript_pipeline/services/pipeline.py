"""Transcript acquisition pipeline.

Resolver -> Submitter -> store -> client-paced polls -> speaker annotation.

There is no scheduler: every step runs inside the request that triggers it.
The only deferred work is speaker annotation, which ``poll_transcript``
enqueues as a Celery task and never waits for.

Pipeline stages (stored on every record):

    SUBMITTED -> PROCESSING -> TRANSCRIBED -> ANNOTATING -> DONE

ERROR is reached only when the provider reports a failed job.  Speaker
annotation that never succeeds still ends at DONE, with ``error_message`` set
and no speaker names.  Callers only ever see ``processing``, ``completed`` or
``error``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from transcript_pipeline.config import settings
from transcript_pipeline.exceptions import (
    AnnotationError,
    ResolutionError,
    TranscriptNotFoundError,
    UpstreamPollError,
)
from transcript_pipeline.models.content import Paragraph, Segment, SpeakerInfo, SpeakerMapping
from transcript_pipeline.models.transcript import PipelineStage, TranscriptRecord, TranscriptStatus, utcnow
from transcript_pipeline.services import assemblyai, kaltura, speakers
from transcript_pipeline.services.kaltura import ResolvedEntry
from transcript_pipeline.services.transcript_store import EMPTY_CONTENT, TranscriptStore, parse_content

logger = logging.getLogger(__name__)


class TranscriptResult(BaseModel):
    """What the entry points hand back to callers."""

    status: Optional[TranscriptStatus] = None
    cached: bool = False
    transcript_id: Optional[str] = None
    entry_id: Optional[str] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    language_code: Optional[str] = None
    paragraphs: Optional[list[Paragraph]] = None
    speakers: Optional[dict[str, SpeakerInfo]] = None
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Result builders
# ---------------------------------------------------------------------------


def _base_result(record: TranscriptRecord, status: TranscriptStatus, cached: bool = False) -> TranscriptResult:
    return TranscriptResult(
        status=status,
        cached=cached,
        transcript_id=record.transcript_id,
        entry_id=record.entry_id,
        start_time=record.start_time,
        end_time=record.end_time,
        language_code=record.language_code,
    )


def _result_for(store: TranscriptStore, record: TranscriptRecord, cached: bool = False) -> TranscriptResult:
    status = record.stage.external_status
    result = _base_result(record, status, cached)
    if status is TranscriptStatus.COMPLETED:
        result.paragraphs = parse_content(record.content).paragraphs
        result.speakers = store.get_mapping(record.transcript_id) or {}
    elif status is TranscriptStatus.ERROR:
        result.error = record.error_message or "Transcription failed"
    return result


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


async def _resolve(media_id: str) -> ResolvedEntry:
    resolved = await kaltura.resolve_entry(media_id)
    if resolved.is_live_stream:
        # Live feeds need an HLS segment capture step before they can be submitted.
        raise ResolutionError(
            f"Entry {resolved.entry_id} is a live stream; capture a recorded segment before transcribing",
            status_code=422,
        )
    return resolved


async def _submit(store: TranscriptStore, resolved: ResolvedEntry, segment: Optional[Segment]) -> TranscriptRecord:
    transcript_id = await assemblyai.submit_transcription(resolved.audio_url, segment)
    return store.save(
        resolved.entry_id,
        transcript_id,
        segment.start if segment else None,
        segment.end if segment else None,
        resolved.audio_url,
        TranscriptStatus.PROCESSING,
        None,
        EMPTY_CONTENT,
        stage=PipelineStage.SUBMITTED,
        annotation_attempts=0,
    )


async def force_retranscribe(
    db: Session,
    media_id: str,
    segment: Optional[Segment] = None,
    resolved: Optional[ResolvedEntry] = None,
) -> TranscriptResult:
    """
    Drop every cached record for the entry and start a fresh transcription.

    Safe when nothing is cached.  The new record stays at SUBMITTED, so a
    cache lookup for the entry finds nothing until it has been polled once.
    """
    store = TranscriptStore(db)
    resolved = resolved or await _resolve(media_id)
    deleted = store.delete_for_entry(resolved.entry_id)
    logger.info("Force retranscribe for %s: removed %d cached record(s)", resolved.entry_id, deleted)
    record = await _submit(store, resolved, segment)
    return _base_result(record, TranscriptStatus.PROCESSING)


async def submit_or_fetch(
    db: Session,
    media_id: str,
    check_only: bool = False,
    force: bool = False,
    segment: Optional[Segment] = None,
) -> TranscriptResult:
    """
    Serve a cached transcript, resume an in-flight one, or submit a new job.

    Raises:
        ResolutionError: The media id could not be resolved (or is live).
        UpstreamSubmitError: The provider rejected the submission.
        StoreError: Persistence failed.
    """
    resolved = await _resolve(media_id)
    if force:
        return await force_retranscribe(db, media_id, segment, resolved=resolved)

    store = TranscriptStore(db)
    start, end = (segment.start, segment.end) if segment else (None, None)
    record = store.get(resolved.entry_id, start, end, include_submitted=True)
    if record is not None:
        logger.info("Cache hit for %s: transcript %s at stage %s", resolved.entry_id, record.transcript_id, record.stage.value)
        return _result_for(store, record, cached=True)

    if check_only:
        return TranscriptResult(status=None, cached=False, entry_id=resolved.entry_id, start_time=start, end_time=end)

    record = await _submit(store, resolved, segment)
    return _base_result(record, TranscriptStatus.PROCESSING)


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


def enqueue_annotation(transcript_id: str) -> None:
    """Hand the speaker annotation of ``transcript_id`` to the task queue."""
    from transcript_pipeline.workers.tasks import annotate_transcript_task  # avoid import cycle

    annotate_transcript_task.delay(transcript_id)


def _removed_while_polling(transcript_id: str) -> TranscriptNotFoundError:
    logger.warning("Transcript %s was removed while polling (forced re-submission?)", transcript_id)
    return TranscriptNotFoundError(f"Transcript {transcript_id} was removed while polling")


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def annotation_is_stale(record: TranscriptRecord, now: Optional[datetime] = None) -> bool:
    """ANNOTATING for longer than ``ANNOTATION_STALE_SECONDS`` (task lost or worker gone)."""
    if record.stage is not PipelineStage.ANNOTATING or record.updated_at is None:
        return False
    now = now or utcnow()
    return now - _as_utc(record.updated_at) > timedelta(seconds=settings.ANNOTATION_STALE_SECONDS)


async def _trigger_annotation(store: TranscriptStore, record: TranscriptRecord) -> None:
    transcript_id = record.transcript_id
    attempts = record.annotation_attempts or 0
    if attempts >= settings.ANNOTATION_MAX_ATTEMPTS:
        # The transcript itself is fine; serve it without speaker names.
        reason = f"Speaker annotation failed after {attempts} attempt(s)"
        if record.error_message:
            reason = f"{reason}: {record.error_message}"
        if not parse_content(record.content).paragraphs:
            try:
                paragraphs = await assemblyai.get_paragraphs(transcript_id)
            except UpstreamPollError as exc:
                logger.warning("Could not fetch paragraphs for %s, will retry: %s", transcript_id, exc.detail)
                return
            if store.update_content(transcript_id, paragraphs) is None:
                return
        logger.error("Giving up on speaker annotation for %s: %s", transcript_id, reason)
        store.set_stage(transcript_id, PipelineStage.DONE, error_message=reason)
        return

    if store.set_stage(transcript_id, PipelineStage.ANNOTATING, increment_attempts=True) is None:
        return
    try:
        # Off the event loop: with an eager Celery app the task runs inside .delay().
        await asyncio.to_thread(enqueue_annotation, transcript_id)
    except Exception as exc:  # broker outage must not fail the poll
        logger.error("Could not enqueue speaker annotation for %s: %s", transcript_id, exc, exc_info=True)
        # Nothing ran, so the attempt is not spent.
        store.set_stage(
            transcript_id,
            PipelineStage.TRANSCRIBED,
            error_message=f"Could not enqueue speaker annotation: {exc}",
            annotation_attempts=attempts,
        )
    else:
        logger.info("Enqueued speaker annotation for %s (attempt %d)", transcript_id, attempts + 1)


async def poll_transcript(db: Session, transcript_id: str) -> TranscriptResult:
    """
    Advance the pipeline for ``transcript_id`` by one step and report status.

    Safe to call concurrently: the shell write is a conditional update and
    annotation is at-least-once.

    Raises:
        TranscriptNotFoundError: Nothing was ever submitted under this id, or
            a forced re-submission removed it while this poll was running.
    """
    store = TranscriptStore(db)
    record = store.get_by_transcript_id(transcript_id)
    if record is None:
        raise TranscriptNotFoundError(f"Transcript {transcript_id} not found")
    if record.stage in (PipelineStage.DONE, PipelineStage.ERROR):
        return _result_for(store, record)

    try:
        provider = await assemblyai.get_transcript_status(transcript_id)
    except UpstreamPollError as exc:
        logger.warning("Status query for %s failed: %s", transcript_id, exc.detail)
        result = _base_result(record, TranscriptStatus.ERROR)
        result.error = exc.detail
        return result

    if provider.is_error:
        message = provider.error or "Transcription failed"
        logger.error("Provider reported failure for %s: %s", transcript_id, message)
        record = store.set_stage(transcript_id, PipelineStage.ERROR, status=TranscriptStatus.ERROR, error_message=message)
        if record is None:
            raise _removed_while_polling(transcript_id)
        return _result_for(store, record)

    if not provider.is_completed:
        if record.stage is PipelineStage.SUBMITTED:
            record = store.set_stage(transcript_id, PipelineStage.PROCESSING)
            if record is None:
                raise _removed_while_polling(transcript_id)
        return _base_result(record, TranscriptStatus.PROCESSING)

    if store.mark_transcribed(transcript_id, provider.language_code):
        logger.info("Transcript %s completed at provider (language=%s)", transcript_id, provider.language_code)

    record = store.get_by_transcript_id(transcript_id)
    if record is None:
        raise _removed_while_polling(transcript_id)
    if record.stage is PipelineStage.TRANSCRIBED:
        await _trigger_annotation(store, record)
    elif annotation_is_stale(record):
        logger.warning(
            "Speaker annotation for %s has been pending since %s; re-triggering",
            transcript_id, record.updated_at,
        )
        await _trigger_annotation(store, record)

    record = store.get_by_transcript_id(transcript_id)
    if record is None:
        raise _removed_while_polling(transcript_id)
    return _result_for(store, record)



# ---------------------------------------------------------------------------
# Speaker annotation (runs inside the Celery task)
# ---------------------------------------------------------------------------


async def annotate_transcript(
    db: Session,
    transcript_id: str,
    final_attempt: bool = True,
) -> Optional[SpeakerMapping]:
    """
    Fetch paragraphs, store them, identify speakers and mark the record DONE.

    A speaker identification failure on the final attempt is contained: the
    error is recorded and the transcript is served with null speaker fields.

    Raises:
        UpstreamPollError: Paragraphs could not be fetched (retryable).
        AnnotationError: Identification failed and this is not the final attempt.
    """
    store = TranscriptStore(db)
    record = store.get_by_transcript_id(transcript_id)
    if record is None:
        logger.warning("Transcript %s vanished before annotation; skipping", transcript_id)
        return None
    if record.stage is PipelineStage.DONE:
        logger.info("Transcript %s already annotated; skipping", transcript_id)
        return store.get_mapping(transcript_id)
    if record.stage is PipelineStage.ERROR:
        logger.info("Transcript %s is in error; skipping annotation", transcript_id)
        return None

    paragraphs = await assemblyai.get_paragraphs(transcript_id)
    store.update_content(transcript_id, paragraphs)
    if not paragraphs:
        logger.warning("Transcript %s has no paragraphs; nothing to annotate", transcript_id)
        store.set_stage(transcript_id, PipelineStage.DONE, clear_error=True)
        return {}

    try:
        mapping = await speakers.identify_speakers(paragraphs, transcript_id, store)
    except AnnotationError as exc:
        if not final_attempt:
            raise
        logger.warning(
            "Speaker identification for %s failed; serving transcript without speaker names: %s",
            transcript_id, exc.detail,
        )
        store.set_stage(transcript_id, PipelineStage.DONE, error_message=exc.detail)
        return None

    store.set_stage(transcript_id, PipelineStage.DONE, clear_error=True)
    return mapping


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def _ms_to_seconds(value: Optional[int]) -> Optional[float]:
    return value / 1000 if value is not None else None


async def export_transcript(db: Session, media_id: str) -> dict[str, Any]:
    """
    Full-recording transcript for ``media_id`` with speaker info per paragraph.

    Raises:
        TranscriptNotFoundError: No transcript has been requested for the entry.
    """
    resolved = await kaltura.resolve_entry(media_id)
    store = TranscriptStore(db)
    record = store.get(resolved.entry_id)
    if record is None:
        raise TranscriptNotFoundError(f"No transcript available for {media_id}")

    status = record.stage.external_status
    exported: dict[str, Any] = {
        "entry_id": record.entry_id,
        "transcript_id": record.transcript_id,
        "status": status.value,
        "language": record.language_code,
        "paragraphs": None,
    }
    if status is not TranscriptStatus.COMPLETED:
        return exported

    mapping = store.get_mapping(record.transcript_id) or {}
    paragraphs = []
    for index, paragraph in enumerate(parse_content(record.content).paragraphs):
        label = paragraph.speaker
        info = mapping.get(label) if label else None
        paragraphs.append(
            {
                "paragraph_number": index + 1,
                "text": paragraph.text,
                "start": _ms_to_seconds(paragraph.start),
                "end": _ms_to_seconds(paragraph.end),
                "speaker": {"label": label, **(info or SpeakerInfo()).model_dump()},
                "words": [
                    {
                        "text": word.text,
                        "start": _ms_to_seconds(word.start),
                        "end": _ms_to_seconds(word.end),
                        "confidence": word.confidence,
                    }
                    for word in paragraph.words
                ],
            }
        )
    exported["paragraphs"] = paragraphs
    return exported
