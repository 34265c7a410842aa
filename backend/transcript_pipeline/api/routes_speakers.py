"""Endpoints for speaker identification."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..db.database import get_db
from ..models.content import Paragraph, SpeakerInfo
from ..services.speakers import identify_speakers
from ..services.transcript_store import TranscriptStore

router = APIRouter()
logger = logging.getLogger(__name__)


class IdentifyRequest(BaseModel):
    paragraphs: list[Paragraph] = Field(min_length=1)
    transcript_id: Optional[str] = None


class MappingResponse(BaseModel):
    mapping: Optional[dict[str, SpeakerInfo]] = None


@router.post("/identify", response_model=MappingResponse)
async def identify(body: IdentifyRequest, db: Session = Depends(get_db)) -> MappingResponse:
    """Identify the speakers of ``paragraphs``; persisted when a transcript id is given."""
    mapping = await identify_speakers(body.paragraphs, body.transcript_id, TranscriptStore(db))
    return MappingResponse(mapping=mapping)


@router.get("/{transcript_id}", response_model=MappingResponse)
async def get_mapping(transcript_id: str, db: Session = Depends(get_db)) -> MappingResponse:
    """Stored mapping for a transcript, ``null`` when none has been identified yet."""
    return MappingResponse(mapping=TranscriptStore(db).get_mapping(transcript_id))
