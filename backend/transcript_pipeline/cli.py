"""Command-line entrypoints for the transcript pipeline."""

from __future__ import annotations

import asyncio
import logging
import time

import typer

from transcript_pipeline.db.database import SessionLocal, init_db
from transcript_pipeline.exceptions import PipelineError
from transcript_pipeline.logging_config import setup_logging
from transcript_pipeline.models.transcript import TranscriptStatus
from transcript_pipeline.services.pipeline import force_retranscribe, poll_transcript
from transcript_pipeline.services.transcript_store import TranscriptStore

app = typer.Typer(help="Maintain cached session transcripts.")
logger = logging.getLogger(__name__)


def _poll_until_done(db, transcript_id: str, entry_id: str, interval: float, max_attempts: int) -> TranscriptStatus:
    for attempt in range(1, max_attempts + 1):
        result = asyncio.run(poll_transcript(db, transcript_id))
        if result.status in (TranscriptStatus.COMPLETED, TranscriptStatus.ERROR):
            return result.status
        if attempt % 6 == 0:
            typer.echo(f"  … still processing {entry_id} ({attempt * interval:.0f}s)")
        time.sleep(interval)
    raise TimeoutError(f"Timed out polling {entry_id}")


@app.command()
def retranscribe(
    target: str = typer.Argument(..., help="Asset id, entry id, or 'all' for every completed full recording."),
    interval: float = typer.Option(5.0, "--interval", help="Seconds between polls."),
    max_attempts: int = typer.Option(120, "--max-attempts", help="Polls before giving up on one entry."),
) -> None:
    """Drop cached transcripts and transcribe again, waiting for each to finish."""
    setup_logging()
    init_db()
    db = SessionLocal()
    try:
        if target.lower() == "all":
            targets = TranscriptStore(db).list_entries(TranscriptStatus.COMPLETED, full_only=True)
        else:
            targets = [target]
        typer.echo(f"Processing {len(targets)} entry/entries...")

        failures = 0
        for media_id in targets:
            try:
                submitted = asyncio.run(force_retranscribe(db, media_id))
                typer.echo(f"Submitted {submitted.entry_id} ({submitted.transcript_id})")
                status = _poll_until_done(db, submitted.transcript_id, submitted.entry_id, interval, max_attempts)
            except (PipelineError, TimeoutError) as exc:
                failures += 1
                typer.echo(f"  failed {media_id}: {getattr(exc, 'detail', exc)}", err=True)
                continue
            if status is TranscriptStatus.ERROR:
                failures += 1
                typer.echo(f"  transcription failed for {submitted.entry_id}", err=True)
            else:
                typer.echo(f"  completed {submitted.entry_id}")
    finally:
        db.close()

    if failures:
        typer.echo(f"Done with {failures} failure(s).", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Done. Completed {len(targets)} transcript(s).")


@app.command()
def status(transcript_id: str = typer.Argument(..., help="Provider job id.")) -> None:
    """Poll one transcript once and print its status."""
    setup_logging()
    init_db()
    db = SessionLocal()
    try:
        result = asyncio.run(poll_transcript(db, transcript_id))
    except PipelineError as exc:
        typer.echo(exc.detail, err=True)
        raise typer.Exit(code=2) from exc
    finally:
        db.close()
    typer.echo(result.status.value if result.status else "unknown")
    if result.error:
        typer.echo(result.error, err=True)


if __name__ == "__main__":
    app()
