"""Thin async client for the AssemblyAI transcript REST API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from transcript_pipeline.config import settings
from transcript_pipeline.exceptions import UpstreamPollError, UpstreamSubmitError
from transcript_pipeline.models.content import Paragraph, Segment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderStatus:
    status: str  # queued | processing | completed | error
    language_code: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_error(self) -> bool:
        return self.status == "error"


def _headers() -> dict[str, str]:
    return {"Authorization": settings.ASSEMBLYAI_API_KEY}


def build_submission(audio_url: str, segment: Segment | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "audio_url": audio_url,
        "speaker_labels": True,
        "keyterms_prompt": list(settings.TRANSCRIPTION_KEYTERMS),
    }
    if segment is not None:
        payload["audio_start_from"] = int(segment.start * 1000)
        payload["audio_end_at"] = int(segment.end * 1000)
    return payload


async def submit_transcription(audio_url: str, segment: Segment | None = None) -> str:
    """
    Hands an audio URL to the provider and returns the job id.

    Raises:
        UpstreamSubmitError: On any non-success response, carrying the raw
            provider body.  Not retried.
    """
    url = f"{settings.ASSEMBLYAI_BASE_URL}/v2/transcript"
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
        try:
            response = await client.post(url, json=build_submission(audio_url, segment), headers=_headers())
        except httpx.RequestError as e:
            logger.error("Submission request failed for %s: %s", audio_url, e, exc_info=True)
            raise UpstreamSubmitError(f"Failed to submit: {e}") from e

    if not response.is_success:
        logger.error("Provider rejected submission (HTTP %s): %s", response.status_code, response.text)
        raise UpstreamSubmitError(f"Failed to submit: {response.text}")

    transcript_id = response.json().get("id")
    if not transcript_id:
        raise UpstreamSubmitError(f"Failed to submit: no job id in response {response.text}")
    logger.info("Submitted %s as transcript %s", audio_url, transcript_id)
    return transcript_id


async def _get(path: str) -> Any:
    url = f"{settings.ASSEMBLYAI_BASE_URL}{path}"
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
        try:
            response = await client.get(url, headers=_headers())
        except httpx.RequestError as e:
            logger.error("Provider request %s failed: %s", path, e, exc_info=True)
            raise UpstreamPollError("Failed to poll status") from e
    if not response.is_success:
        logger.error("Provider returned HTTP %s for %s: %s", response.status_code, path, response.text)
        raise UpstreamPollError("Failed to poll status")
    return response.json()


async def get_transcript_status(transcript_id: str) -> ProviderStatus:
    data = await _get(f"/v2/transcript/{transcript_id}")
    return ProviderStatus(
        status=data.get("status", "processing"),
        language_code=data.get("language_code"),
        error=data.get("error"),
    )


async def get_paragraphs(transcript_id: str) -> list[Paragraph]:
    data = await _get(f"/v2/transcript/{transcript_id}/paragraphs")
    try:
        return [Paragraph.model_validate(p) for p in data.get("paragraphs") or []]
    except ValidationError as e:
        logger.error("Malformed paragraphs for transcript %s: %s", transcript_id, e)
        raise UpstreamPollError("Malformed paragraphs response") from e
