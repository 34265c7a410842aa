"""Shared fixtures: a fresh schema per test and canned provider payloads."""

from __future__ import annotations

import json
from typing import Any, Optional
from unittest.mock import MagicMock

import httpx
import pytest

from transcript_pipeline.db.base import Base
from transcript_pipeline.db.database import SessionLocal, engine, init_db, reset_schema_state
from transcript_pipeline.services.kaltura import ResolvedEntry
from transcript_pipeline.services.transcript_store import TranscriptStore


def make_response(json_data: Any = None, status_code: int = 200, text: Optional[str] = None) -> MagicMock:
    """Stand-in for an ``httpx.Response`` returned by a patched client call."""
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.json.return_value = json_data
    response.text = text if text is not None else json.dumps(json_data)
    if response.is_success:
        response.raise_for_status = MagicMock()
    else:
        request = httpx.Request("POST", "https://example.test")
        real = httpx.Response(status_code, text=response.text, request=request)
        response.raise_for_status = MagicMock(
            side_effect=httpx.HTTPStatusError("error", request=request, response=real)
        )
    return response


def make_paragraph(text: str, speaker: str, start: int = 0, end: int = 1000) -> dict:
    words = text.split()
    step = max((end - start) // max(len(words), 1), 1)
    return {
        "text": text,
        "start": start,
        "end": end,
        "confidence": 0.95,
        "words": [
            {
                "text": word,
                "start": start + i * step,
                "end": start + (i + 1) * step,
                "confidence": 0.95,
                "speaker": speaker,
            }
            for i, word in enumerate(words)
        ],
    }


@pytest.fixture
def http_response():
    return make_response


@pytest.fixture
def db_session():
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        reset_schema_state()


@pytest.fixture
def store(db_session):
    return TranscriptStore(db_session)


@pytest.fixture
def resolved_entry():
    return ResolvedEntry(
        entry_id="1_abc123",
        audio_url="https://cdnapisec.kaltura.com/p/2503451/sp/0/playManifest/entryId/1_abc123/format/download/protocol/https/flavorParamIds/100",
        flavor_params_id=100,
    )


@pytest.fixture
def sample_paragraphs():
    return [
        make_paragraph("I give the floor to the representative of Kenya.", "A", 0, 4000),
        make_paragraph("Thank you, Chair.", "B", 4000, 6000),
        make_paragraph("Kenya supports the proposal.", "B", 6000, 9000),
    ]


@pytest.fixture
def client(db_session):
    from fastapi.testclient import TestClient

    from transcript_pipeline.db.database import get_db
    from transcript_pipeline.main import app

    app.dependency_overrides[get_db] = lambda: db_session
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
