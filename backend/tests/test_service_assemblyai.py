import pytest
import httpx
from unittest.mock import patch, AsyncMock

from transcript_pipeline.config import settings
from transcript_pipeline.exceptions import UpstreamPollError, UpstreamSubmitError
from transcript_pipeline.models.content import Segment
from transcript_pipeline.services.assemblyai import (
    get_paragraphs,
    get_transcript_status,
    submit_transcription,
)

from .conftest import make_paragraph, make_response

AUDIO_URL = "https://media.example/1_abc123.mp3"


@pytest.mark.asyncio
@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_submit_transcription_success(mock_post):
    mock_post.return_value = make_response({"id": "T1", "status": "queued"})

    transcript_id = await submit_transcription(AUDIO_URL)

    assert transcript_id == "T1"
    args, kwargs = mock_post.call_args
    assert args[0] == f"{settings.ASSEMBLYAI_BASE_URL}/v2/transcript"
    assert kwargs["headers"]["Authorization"] == settings.ASSEMBLYAI_API_KEY
    payload = kwargs["json"]
    assert payload["audio_url"] == AUDIO_URL
    assert payload["speaker_labels"] is True
    assert payload["keyterms_prompt"] == settings.TRANSCRIPTION_KEYTERMS
    assert "audio_start_from" not in payload


@pytest.mark.asyncio
@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_submit_transcription_with_segment(mock_post):
    mock_post.return_value = make_response({"id": "T2"})

    await submit_transcription(AUDIO_URL, Segment(start=1.5, end=60))

    payload = mock_post.call_args.kwargs["json"]
    assert payload["audio_start_from"] == 1500
    assert payload["audio_end_at"] == 60000


@pytest.mark.asyncio
@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_submit_transcription_rejected_carries_provider_body(mock_post):
    mock_post.return_value = make_response(status_code=400, text='{"error": "invalid audio_url"}')

    with pytest.raises(UpstreamSubmitError) as exc_info:
        await submit_transcription(AUDIO_URL)

    assert exc_info.value.detail == 'Failed to submit: {"error": "invalid audio_url"}'
    assert mock_post.call_count == 1


@pytest.mark.asyncio
@patch("httpx.AsyncClient.get", new_callable=AsyncMock)
async def test_get_transcript_status(mock_get):
    mock_get.return_value = make_response({"id": "T1", "status": "completed", "language_code": "en_us"})

    status = await get_transcript_status("T1")

    assert status.is_completed
    assert status.language_code == "en_us"
    assert mock_get.call_args.args[0] == f"{settings.ASSEMBLYAI_BASE_URL}/v2/transcript/T1"


@pytest.mark.asyncio
@patch("httpx.AsyncClient.get", new_callable=AsyncMock)
async def test_get_transcript_status_error_reported(mock_get):
    mock_get.return_value = make_response({"id": "T1", "status": "error", "error": "Audio file is empty"})

    status = await get_transcript_status("T1")

    assert status.is_error
    assert status.error == "Audio file is empty"


@pytest.mark.asyncio
@patch("httpx.AsyncClient.get", new_callable=AsyncMock)
async def test_get_transcript_status_http_failure(mock_get):
    mock_get.return_value = make_response({"error": "unavailable"}, status_code=503)

    with pytest.raises(UpstreamPollError, match="Failed to poll status"):
        await get_transcript_status("T1")


@pytest.mark.asyncio
@patch("httpx.AsyncClient.get", new_callable=AsyncMock)
async def test_get_transcript_status_request_error(mock_get):
    mock_get.side_effect = httpx.ReadTimeout("timed out")

    with pytest.raises(UpstreamPollError):
        await get_transcript_status("T1")


@pytest.mark.asyncio
@patch("httpx.AsyncClient.get", new_callable=AsyncMock)
async def test_get_paragraphs(mock_get):
    mock_get.return_value = make_response({"paragraphs": [make_paragraph("Thank you, Chair.", "B")]})

    paragraphs = await get_paragraphs("T1")

    assert mock_get.call_args.args[0].endswith("/v2/transcript/T1/paragraphs")
    assert len(paragraphs) == 1
    assert paragraphs[0].speaker == "B"
    assert [w.text for w in paragraphs[0].words] == ["Thank", "you,", "Chair."]


@pytest.mark.asyncio
@patch("httpx.AsyncClient.get", new_callable=AsyncMock)
async def test_get_paragraphs_malformed(mock_get):
    mock_get.return_value = make_response({"paragraphs": [{"text": "no timings"}]})

    with pytest.raises(UpstreamPollError):
        await get_paragraphs("T1")
