"""
Celery application: broker and result backend from settings.
Tasks are in bookvault.workers.tasks (NFT minting and the unminted-purchase sweep).
"""
from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init

from bookvault.core.config import settings
from bookvault.core.logging import configure_logging

celery_app = Celery(
    "bookvault",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "bookvault.workers.tasks.mint_nft",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=1800,
    result_expires=86400,
    beat_schedule={
        "sweep-unminted-purchases": {
            "task": "bookvault.workers.tasks.mint_nft.sweep_unminted_purchases",
            "schedule": crontab(minute="*/10"),
        },
    },
)

celery_app.conf.task_routes = {
    "bookvault.workers.tasks.mint_nft.mint_purchase_nft": {"queue": "minting"},
}


@worker_process_init.connect
def _init_worker_logging(**_kwargs) -> None:
    configure_logging()
