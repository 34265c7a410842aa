"""Endpoints for submitting, polling and exporting transcripts.

* POST /transcribe              – serve cached transcript or submit a new job.
* POST /transcribe/poll         – advance a job and report its status.
* GET  /transcripts/{media_id}  – export the completed transcript with speakers.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db.database import get_db
from ..models.content import Segment
from ..services import pipeline
from ..services.pipeline import TranscriptResult

router = APIRouter()
logger = logging.getLogger(__name__)


class TranscribeRequest(BaseModel):
    media_id: str = Field(min_length=1, description="Public asset id or media-platform entry id.")
    check_only: bool = False
    force: bool = False
    start_time: Optional[float] = Field(default=None, description="Segment start in seconds.")
    end_time: Optional[float] = Field(default=None, description="Segment end in seconds.")


class PollRequest(BaseModel):
    transcript_id: str = Field(min_length=1)


@router.post("/transcribe", response_model=TranscriptResult, response_model_exclude_none=True)
async def transcribe(body: TranscribeRequest, db: Session = Depends(get_db)) -> TranscriptResult:
    """Return the cached transcript for a media id, or start transcribing it."""
    segment = Segment.from_bounds(body.start_time, body.end_time)
    logger.info(
        "Transcribe request for %s (check_only=%s, force=%s, segment=%s)",
        body.media_id, body.check_only, body.force, segment,
    )
    return await pipeline.submit_or_fetch(
        db,
        body.media_id,
        check_only=body.check_only,
        force=body.force,
        segment=segment,
    )


@router.post("/transcribe/poll", response_model=TranscriptResult, response_model_exclude_none=True)
async def poll(body: PollRequest, db: Session = Depends(get_db)) -> TranscriptResult:
    """Report ``processing``, ``completed`` (with content) or ``error``."""
    return await pipeline.poll_transcript(db, body.transcript_id)


@router.get("/transcripts/{media_id}")
async def export_transcript(media_id: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    return await pipeline.export_transcript(db, media_id)
