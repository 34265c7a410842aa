"""Resolve public media ids to a downloadable Kaltura audio rendition."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import httpx

from transcript_pipeline.config import settings
from transcript_pipeline.exceptions import ResolutionError

logger = logging.getLogger(__name__)

FLAVOR_STATUS_READY = 2
LIVE_STREAM_OBJECT_TYPE = "KalturaLiveStreamEntry"
ENGLISH_LANGUAGE_NAMES = {"english", "en", "eng"}


@dataclass(frozen=True)
class ResolvedEntry:
    entry_id: str
    audio_url: str
    flavor_params_id: int
    is_live_stream: bool = False
    duration_ms: Optional[int] = None


def extract_kaltura_id(asset_id: str) -> str:
    """Normalise the public asset id shapes used on the schedule pages.

    ``"Title (1_abc)"``, ``".../id/1_abc"``, ``"1_abc"``, ``".../k1abc"`` and
    ``"k1abc"`` all map to ``"1_abc"``.  Anything else is returned unchanged so
    the platform can try it as an entry id.
    """
    candidate = asset_id.strip()
    match = re.search(r"\(([^)]+)\)", candidate)
    if match:
        return match.group(1)
    match = re.search(r"/id/([^/]+)", candidate)
    if match:
        return match.group(1)
    if re.match(r"^1_[a-z0-9]+$", candidate, re.IGNORECASE):
        return candidate
    match = re.search(r"/k1(\w+)$", candidate) or re.match(r"^k1(\w+)$", candidate)
    if match:
        return f"1_{match.group(1)}"
    return candidate


def build_multirequest(kaltura_id: str) -> dict[str, Any]:
    """Session + entry lookup + flavor listing, chained in one round trip."""
    return {
        "1": {"service": "session", "action": "startWidgetSession", "widgetId": settings.KALTURA_WIDGET_ID},
        "2": {
            "service": "baseEntry",
            "action": "list",
            "ks": "{1:result:ks}",
            "filter": {"redirectFromEntryId": kaltura_id},
            "responseProfile": {"type": 1, "fields": "id,duration,objectType"},
        },
        "3": {
            "service": "flavorAsset",
            "action": "list",
            "ks": "{1:result:ks}",
            "filter": {"entryIdEqual": "{2:result:objects:0:id}"},
        },
        "apiVersion": "3.3.0",
        "format": 1,
        "ks": "",
        "clientTag": "transcript-pipeline",
        "partnerId": settings.KALTURA_PARTNER_ID,
    }


def _is_english_audio(flavor: dict[str, Any]) -> bool:
    language = (flavor.get("language") or "").lower()
    tags = flavor.get("tags") or ""
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",")]
    return language in ENGLISH_LANGUAGE_NAMES and "audio_only" in tags


def select_flavor(flavors: Sequence[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Pick the English audio-only rendition.

    Preference: ready and default, then any ready one, then the first
    candidate regardless of readiness.  ``None`` when there is no candidate.
    """
    candidates = [f for f in flavors if isinstance(f, dict) and _is_english_audio(f)]
    for flavor in candidates:
        if flavor.get("status") == FLAVOR_STATUS_READY and flavor.get("isDefault"):
            return flavor
    for flavor in candidates:
        if flavor.get("status") == FLAVOR_STATUS_READY:
            return flavor
    return candidates[0] if candidates else None


def build_download_url(entry_id: str, flavor_params_id: int) -> str:
    return (
        f"{settings.KALTURA_SERVICE_URL}/p/{settings.KALTURA_PARTNER_ID}/sp/0/playManifest"
        f"/entryId/{entry_id}/format/download/protocol/https/flavorParamIds/{flavor_params_id}"
    )


def _objects(result: Any) -> list:
    # Failed sub-requests come back as KalturaAPIException dicts without "objects".
    if isinstance(result, dict):
        return result.get("objects") or []
    return []


def parse_multirequest_response(data: Any) -> ResolvedEntry:
    if not isinstance(data, list) or len(data) < 2:
        raise ResolutionError("Unexpected response from media platform")

    entries = _objects(data[1])
    entry = entries[0] if entries else {}
    entry_id = entry.get("id") if isinstance(entry, dict) else None
    if not entry_id:
        raise ResolutionError("No entry found")

    flavors = _objects(data[2]) if len(data) > 2 else []
    flavor = select_flavor(flavors)
    flavor_params_id = (flavor or {}).get("flavorParamsId") or settings.KALTURA_DEFAULT_FLAVOR_PARAMS_ID
    if flavor is None:
        logger.info("Entry %s has no English audio-only flavor; using default flavor %s", entry_id, flavor_params_id)

    duration = entry.get("duration")
    return ResolvedEntry(
        entry_id=entry_id,
        audio_url=build_download_url(entry_id, flavor_params_id),
        flavor_params_id=int(flavor_params_id),
        is_live_stream=entry.get("objectType") == LIVE_STREAM_OBJECT_TYPE,
        duration_ms=int(duration * 1000) if isinstance(duration, (int, float)) else None,
    )


async def resolve_entry(media_id: str) -> ResolvedEntry:
    """
    Maps a public asset/media id to the canonical entry id and audio URL.

    Raises:
        ResolutionError: If the platform call fails or no entry is found.
    """
    kaltura_id = extract_kaltura_id(media_id)
    url = f"{settings.KALTURA_SERVICE_URL}/api_v3/service/multirequest"
    logger.info("Resolving media id %s (kaltura id %s)", media_id, kaltura_id)

    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
        try:
            response = await client.post(url, json=build_multirequest(kaltura_id))
        except httpx.RequestError as e:
            logger.error("Request to media platform failed for %s: %s", media_id, e, exc_info=True)
            raise ResolutionError("Failed to query media platform") from e

    if not response.is_success:
        logger.error("Media platform returned HTTP %s for %s: %s", response.status_code, media_id, response.text)
        raise ResolutionError("Failed to query media platform")

    resolved = parse_multirequest_response(response.json())
    logger.info(
        "Resolved %s -> entry %s (flavor %s, live=%s)",
        media_id, resolved.entry_id, resolved.flavor_params_id, resolved.is_live_stream,
    )
    return resolved
