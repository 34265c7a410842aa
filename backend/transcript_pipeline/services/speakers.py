"""Label diarized speakers with names, functions and affiliations.

The identification is a single schema-constrained chat-completion call against
an OpenAI-compatible endpoint.  The response is validated with pydantic before
anything is persisted.
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Sequence

import httpx
from pydantic import BaseModel, ValidationError

from transcript_pipeline.config import settings
from transcript_pipeline.exceptions import AnnotationError
from transcript_pipeline.models.content import Paragraph, SpeakerInfo, SpeakerMapping

logger = logging.getLogger(__name__)

UNKNOWN_SPEAKER = "Unknown"

SYSTEM_PROMPT = """You identify speakers in transcripts of United Nations meetings. Extract names, functions, affiliations and country-group information strictly from the transcript text.

RULES:
- Look for explicit introductions ("I give the floor to...", "I invite Mr. X to...").
- Use "thank you" statements that refer back to the previous speaker.
- Extract personal names and official functions whenever both are present.
- If an identity cannot be determined, return null for name, function, affiliation and group.

FIELDS:
name: The person's name exactly as it appears in the text; fix obvious transcription errors but never guess from world knowledge. If only a surname is given and the gender is explicit, prefix "Mr." or "Ms.". Null if unknown.
function: Concise title using canonical abbreviations, e.g. "SG", "PGA", "Chair", "Representative", "Spokesperson". Null if unknown.
affiliation: ISO 3166-1 alpha-3 code for country representatives (e.g. "PRY", "KEN"); the canonical abbreviation for organizations (e.g. "OHCHR", "ACABQ", "UN Secretariat"). Null if unknown.
group: Group of countries a representative speaks on behalf of, e.g. "G77", "EU", "AU". Null if not applicable.

EXAMPLES:
"I invite Mr. Yassin Hamazoui to introduce the report" -> name "Yassin Hamazoui", function null, affiliation null, group null
"The permanent representative of Germany has the floor" -> name null, function "Representative", affiliation "DEU", group null
"Mr. Carlo Iacobucci, Vice-Chair of ACABQ" -> name "Carlo Iacobucci", function "Vice-Chair", affiliation "ACABQ", group null
"I am speaking on behalf of the Group of 77 and China" (representative of Iraq) -> function "Representative", affiliation "IRQ", group "G77"
"""

_NULLABLE_STRING = {"type": ["string", "null"]}

SPEAKER_MAPPING_SCHEMA = {
    "type": "object",
    "properties": {
        "speakers": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "label": {"type": "string", "description": 'The speaker label (e.g., "A", "B", "C")'},
                    "name": _NULLABLE_STRING,
                    "function": _NULLABLE_STRING,
                    "affiliation": _NULLABLE_STRING,
                    "group": _NULLABLE_STRING,
                },
                "required": ["label", "name", "function", "affiliation", "group"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["speakers"],
    "additionalProperties": False,
}


class IdentifiedSpeaker(SpeakerInfo):
    label: str


class SpeakerMappingResponse(BaseModel):
    speakers: list[IdentifiedSpeaker]


def build_labeled_transcript(
    paragraphs: Sequence[Paragraph],
    limit: Optional[int] = None,
) -> tuple[list[str], str]:
    """Group paragraphs into speaker turns.

    Consecutive paragraphs whose first word carries the same diarization label
    are merged into one ``[Speaker X]: ...`` turn.  Returns the sorted list of
    labels and the labeled transcript cut to ``limit`` characters.
    """
    limit = settings.SPEAKER_TRANSCRIPT_CHAR_LIMIT if limit is None else limit
    labels: set[str] = set()
    turns: list[tuple[str, list[str]]] = []

    for paragraph in paragraphs:
        label = paragraph.speaker
        if label:
            labels.add(label)
        text = " ".join(w.text for w in paragraph.words) if paragraph.words else paragraph.text
        label = label or UNKNOWN_SPEAKER
        if turns and turns[-1][0] == label:
            turns[-1][1].append(text)
        else:
            turns.append((label, [text]))

    transcript = "\n\n".join(f"[Speaker {label}]: {' '.join(texts)}" for label, texts in turns)
    return sorted(labels), transcript[:limit]


def build_messages(speaker_labels: Sequence[str], transcript: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                f"Analyze the following UN transcript and identify speakers ({', '.join(speaker_labels)}).\n\n"
                f"Transcript:\n{transcript}"
            ),
        },
    ]


async def request_speaker_mapping(speaker_labels: Sequence[str], transcript: str) -> SpeakerMapping:
    """
    Calls the extraction model and returns ``label -> SpeakerInfo``.

    Raises:
        AnnotationError: On transport errors, HTTP errors, or a response that
            does not match the schema.
    """
    payload = {
        "model": settings.LLM_MODEL,
        "messages": build_messages(speaker_labels, transcript),
        "response_format": {
            "type": "json_schema",
            "json_schema": {"name": "speaker_mapping", "strict": True, "schema": SPEAKER_MAPPING_SCHEMA},
        },
    }
    headers = {}
    if settings.LLM_API_KEY:
        headers["Authorization"] = f"Bearer {settings.LLM_API_KEY}"

    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
        try:
            response = await client.post(settings.LLM_CHAT_COMPLETIONS_URL, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error_body = e.response.text if e.response is not None else "No response body."
            logger.error("HTTP error from extraction provider: %s", error_body)
            raise AnnotationError(f"Speaker identification failed: HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error("Request to extraction provider failed: %s", e, exc_info=True)
            raise AnnotationError("Speaker identification failed: provider unreachable") from e

    try:
        content = response.json()["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise AnnotationError("Failed to parse speaker mappings") from e
    if not content:
        raise AnnotationError("Failed to parse speaker mappings")

    try:
        parsed = SpeakerMappingResponse.model_validate(json.loads(content))
    except (ValueError, ValidationError) as e:
        logger.error("Speaker mapping response did not match the schema: %s", e)
        raise AnnotationError("Failed to parse speaker mappings") from e

    return {s.label: SpeakerInfo(**s.model_dump(exclude={"label"})) for s in parsed.speakers}


async def identify_speakers(
    paragraphs: Sequence[Paragraph],
    transcript_id: Optional[str] = None,
    store=None,
) -> SpeakerMapping:
    """
    Identifies speakers for ``paragraphs`` and persists the mapping.

    The mapping is stored under ``transcript_id`` when both a transcript id
    and a :class:`TranscriptStore` are given (last write wins).

    Raises:
        AnnotationError: If there is nothing to identify or the call fails.
    """
    if not paragraphs:
        raise AnnotationError("No paragraphs provided", status_code=400)

    labels, transcript = build_labeled_transcript(paragraphs)
    logger.info(
        "Identifying %d speaker label(s) for transcript %s (%d chars)",
        len(labels), transcript_id or "<adhoc>", len(transcript),
    )
    mapping = await request_speaker_mapping(labels, transcript)
    logger.info("Speaker mapping identified for %s: %s", transcript_id or "<adhoc>", {k: v.name for k, v in mapping.items()})

    if transcript_id and store is not None:
        store.set_mapping(transcript_id, mapping)
    return mapping
