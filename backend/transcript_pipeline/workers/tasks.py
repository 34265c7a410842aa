"""Celery task definitions."""

import asyncio
import concurrent.futures
import logging

from celery import Celery, Task
from celery.signals import worker_process_init

from transcript_pipeline.config import settings
from transcript_pipeline.db.database import SessionLocal, init_db
from transcript_pipeline.exceptions import AnnotationError, UpstreamPollError
from transcript_pipeline.logging_config import setup_logging as setup_app_logging
from transcript_pipeline.models.transcript import PipelineStage
from transcript_pipeline.services.pipeline import annotate_transcript
from transcript_pipeline.services.transcript_store import TranscriptStore

logger = logging.getLogger(__name__)


# --- Celery Application Setup ---
celery_app = Celery(
    "transcript_pipeline",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=['transcript_pipeline.workers.tasks'],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
)


@worker_process_init.connect
def _on_worker_process_init(**_kwargs):
    # Schema must exist before the worker touches the store.
    setup_app_logging()
    init_db()


def run_coroutine(coro):
    """Run ``coro`` to completion from synchronous task code.

    When a loop is already running on this thread (an eager task started from
    async code) the coroutine gets a private loop on a helper thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


# --- Base Task with failure channel ---
class AnnotationTask(Task):
    """Base task that records terminal annotation failures on the transcript."""
    abstract = True

    def __call__(self, *args, **kwargs):
        logger.info(f"Task {self.name} [{self.request.id}] called with args: {args}, kwargs: {kwargs}")
        return super().__call__(*args, **kwargs)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(f"Task {self.name} [{task_id}] will retry: {exc}")
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Task {self.name} [{task_id}] failed: {exc}", exc_info=einfo)
        transcript_id = kwargs.get('transcript_id') or (args[0] if args else None)
        if transcript_id:
            db = SessionLocal()
            try:
                # Back to TRANSCRIBED so a later poll may enqueue another attempt.
                record = TranscriptStore(db).set_stage(
                    transcript_id,
                    PipelineStage.TRANSCRIBED,
                    error_message=f"Speaker annotation failed: {str(exc)[:500]}",
                )
                if record is None:
                    logger.warning(f"Transcript {transcript_id} not found for failure update of task {self.name} [{task_id}].")
            except Exception as db_exc:
                logger.error(f"DB error during task failure handling for transcript {transcript_id}: {db_exc}", exc_info=True)
            finally:
                db.close()
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):
        logger.info(f"Task {self.name} [{task_id}] completed successfully.")
        super().on_success(retval, task_id, args, kwargs)


# --- Speaker Annotation Task ---
@celery_app.task(
    name="annotate_transcript_task",
    base=AnnotationTask,
    bind=True,
    max_retries=settings.ANNOTATION_TASK_MAX_RETRIES,
)
def annotate_transcript_task(self, transcript_id: str):
    logger.info(f"Starting speaker annotation for transcript {transcript_id} (retry {self.request.retries})")
    final_attempt = self.request.retries >= self.max_retries
    db = SessionLocal()
    try:
        mapping = run_coroutine(annotate_transcript(db, transcript_id, final_attempt=final_attempt))
        return {
            "transcript_id": transcript_id,
            "speakers": sorted(mapping) if mapping else [],
        }
    except (UpstreamPollError, AnnotationError) as e:
        countdown = settings.ANNOTATION_RETRY_BACKOFF_SECONDS * (2 ** self.request.retries)
        logger.warning(f"Speaker annotation for {transcript_id} failed ({e.detail}); retrying in {countdown:.0f}s")
        # Re-raises ``e`` once max_retries is exhausted, which lands in on_failure.
        raise self.retry(exc=e, countdown=countdown)
    finally:
        db.close()
