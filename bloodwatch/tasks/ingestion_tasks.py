"""
Celery entry point for ingestion cycles.

For deployments that drive cycles from Celery beat instead of the
standalone worker loop. Each task runs exactly one cycle for one source.
"""

import asyncio
from dataclasses import asdict
from typing import Any, Dict

from bloodwatch.core.celery_app import celery_app
from bloodwatch.core.config import settings
from bloodwatch.db.session import SessionLocal
from bloodwatch.services.adapters import default_adapter_registry
from bloodwatch.services.ingestion import build_ingestion_orchestrator
from bloodwatch.services.notifiers import (
    NotifierRegistry,
    create_http_client,
    default_notifiers,
)
from bloodwatch.utils.logger import get_logger

logger = get_logger(__name__)


@celery_app.task(
    bind=True,
    acks_late=True,
    reject_on_worker_lost=True,
    soft_time_limit=25 * 60,
    time_limit=30 * 60,
)
def run_ingestion_cycle_task(self, source_key: str) -> Dict[str, Any]:
    """
    Run one ingestion cycle for a source.

    Args:
        source_key: Adapter key of the source to poll

    Returns:
        Dict with the cycle counts
    """
    logger.info(
        "ingestion_task_started", source_key=source_key, task_id=self.request.id
    )
    return asyncio.run(run_ingestion_cycle_async(source_key))


async def run_ingestion_cycle_async(source_key: str) -> Dict[str, Any]:
    client = create_http_client(settings)
    session = SessionLocal()
    try:
        notifiers = NotifierRegistry(default_notifiers(settings, client))
        orchestrator = build_ingestion_orchestrator(
            session, default_adapter_registry, notifiers, settings
        )
        result = await orchestrator.run_cycle(source_key)
    finally:
        session.close()
        await client.aclose()

    summary = asdict(result)
    summary["polled_at"] = result.polled_at.isoformat()
    return summary
