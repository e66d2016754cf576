# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Celery runs the project-file pipeline (parse → chunk → embed → store)
# outside the web process.
#
#   FastAPI ──▶ Redis db 0 (broker) ──▶ worker ──▶ Redis db 1 (results)
#
# Start a worker with:
#   celery -A grooshub.workers.celery_app worker --loglevel=info
# =============================================================================

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from grooshub.config import settings
from grooshub.logging_config import setup_logging

celery_app = Celery(
    "grooshub.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # JSON only; pickle can execute code on deserialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Re-queue tasks whose worker dies mid-run
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    # Large PDFs can take minutes to parse
    task_soft_time_limit=300,
    task_time_limit=600,

    result_expires=3600,
    include=["grooshub.workers.tasks"],
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    setup_logging(settings.log_level)
