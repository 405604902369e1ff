"""
Long-lived ingestion loop.

Runs one cycle per configured source, one at a time, then sleeps for the
configured interval. A failed cycle is logged and reported, never fatal;
cancellation stops the loop.
"""

import asyncio
import signal
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence

import sentry_sdk
from sqlalchemy.orm import Session

from bloodwatch.core.config import settings as default_settings
from bloodwatch.db.session import SessionLocal
from bloodwatch.services.adapters import AdapterRegistry, default_adapter_registry
from bloodwatch.services.ingestion import (
    IngestionCycleResult,
    build_ingestion_orchestrator,
)
from bloodwatch.services.notifiers import (
    NotifierRegistry,
    create_http_client,
    default_notifiers,
)
from bloodwatch.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


class WorkerStatus(str, Enum):
    """Worker operational status"""

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class IngestionWorker:
    """
    Background polling loop.

    Owns one unit of work (session) per cycle; no two cycles overlap.
    """

    def __init__(
        self,
        adapters: AdapterRegistry,
        notifiers: NotifierRegistry,
        session_factory: Callable[[], Session] = SessionLocal,
        source_keys: Optional[Sequence[str]] = None,
        interval_seconds: Optional[float] = None,
        settings: Any = default_settings,
    ):
        self.adapters = adapters
        self.notifiers = notifiers
        self.session_factory = session_factory
        self.settings = settings
        self.source_keys = list(source_keys or settings.INGESTION_SOURCE_KEYS)
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else settings.ingestion_interval_seconds
        )

        self.status = WorkerStatus.STOPPED
        self.worker_id = str(uuid.uuid4())
        self.started_at: Optional[datetime] = None
        self.last_results: List[IngestionCycleResult] = []

        self._task: Optional[asyncio.Task] = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the polling loop in the background"""
        if self.status != WorkerStatus.STOPPED:
            raise RuntimeError(f"Worker already running (status: {self.status})")

        self.status = WorkerStatus.STARTING
        self.started_at = datetime.now(timezone.utc)
        self._shutdown_event.clear()
        self._task = asyncio.create_task(self._loop())
        self.status = WorkerStatus.RUNNING
        logger.info(
            "ingestion_worker_started",
            worker_id=self.worker_id,
            sources=self.source_keys,
            interval_seconds=self.interval_seconds,
        )

    async def stop(self, timeout: float = 30) -> None:
        """Signal the loop to stop and wait for the current cycle to finish"""
        if self.status == WorkerStatus.STOPPED:
            return

        self.status = WorkerStatus.STOPPING
        self._shutdown_event.set()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("ingestion_worker_stop_timeout", worker_id=self.worker_id)
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None

        self.status = WorkerStatus.STOPPED
        logger.info("ingestion_worker_stopped", worker_id=self.worker_id)

    async def run_once(self) -> List[IngestionCycleResult]:
        """Run one cycle for every configured source, sequentially."""
        results: List[IngestionCycleResult] = []
        for source_key in self.source_keys:
            result = await self._run_source(source_key)
            if result is not None:
                results.append(result)
        self.last_results = results
        return results

    async def _run_source(self, source_key: str) -> Optional[IngestionCycleResult]:
        session = self.session_factory()
        try:
            orchestrator = build_ingestion_orchestrator(
                session, self.adapters, self.notifiers, self.settings
            )
            return await orchestrator.run_cycle(source_key)
        except Exception as e:
            logger.error(
                "ingestion_cycle_failed",
                source_key=source_key,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            sentry_sdk.capture_exception(e)
            return None
        finally:
            session.close()

    async def _loop(self) -> None:
        try:
            while not self._shutdown_event.is_set():
                await self.run_once()
                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(), timeout=self.interval_seconds
                    )
                except asyncio.TimeoutError:
                    continue
        except asyncio.CancelledError:
            logger.info("ingestion_worker_cancelled", worker_id=self.worker_id)
            raise
        except Exception as e:
            self.status = WorkerStatus.ERROR
            logger.error("ingestion_worker_crashed", error=str(e), exc_info=True)
            raise


async def _serve(adapters: AdapterRegistry) -> None:
    client = create_http_client(default_settings)
    notifiers = NotifierRegistry(default_notifiers(default_settings, client))
    worker = IngestionWorker(adapters, notifiers)

    loop = asyncio.get_running_loop()
    stop_requested = asyncio.Event()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_requested.set)
        except NotImplementedError:
            pass

    await worker.start()
    try:
        await stop_requested.wait()
    finally:
        await worker.stop()
        await client.aclose()


def main(adapters: Optional[AdapterRegistry] = None) -> None:
    """Console entry point for the standalone worker."""
    configure_logging()
    if default_settings.SENTRY_DSN:
        sentry_sdk.init(
            dsn=default_settings.SENTRY_DSN, environment=default_settings.APP_ENV
        )

    registry = adapters if adapters is not None else default_adapter_registry
    missing = [key for key in default_settings.INGESTION_SOURCE_KEYS if key not in registry]
    if missing:
        logger.warning("ingestion_sources_without_adapter", sources=missing)

    asyncio.run(_serve(registry))


if __name__ == "__main__":
    main()
