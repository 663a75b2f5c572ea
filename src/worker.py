"""Worker process entry point.

Run directly:        python -m src.worker

Loads fetchers, then loops: scheduler tick → drain due jobs → sleep for
the poll interval. SIGINT/SIGTERM finish the current job and exit.
"""

import asyncio
import signal

import structlog

from src.core.config import Settings
from src.core.logging import setup_logging
from src.db.session import create_engine, create_schema, create_session_factory
from src.services.container import ServiceContainer
from src.services.queue.worker import JobWorker
from src.services.scheduler import Scheduler

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


async def run_loop(
    worker: JobWorker,
    scheduler: Scheduler,
    stop: asyncio.Event,
    *,
    poll_interval: float,
) -> None:
    """Tick and process jobs until ``stop`` is set."""
    while not stop.is_set():
        try:
            await scheduler.tick()
            while not stop.is_set() and await worker.process_next():
                pass
        except Exception:
            logger.exception("worker_loop_error")

        try:
            await asyncio.wait_for(stop.wait(), timeout=poll_interval)
        except TimeoutError:
            pass


async def serve(settings: Settings) -> None:
    """Build services and run the worker loop until signalled."""
    engine = create_engine(settings)
    # PostgreSQL schemas are managed by Alembic.
    if engine.dialect.name == "sqlite":
        await create_schema(engine)
    container = ServiceContainer.build(settings, create_session_factory(engine))
    worker = container.build_worker()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info(
        "worker_starting",
        worker_id=worker.worker_id,
        job_types=worker.job_types,
        fetchers=container.fetchers.sources,
    )
    try:
        await run_loop(
            worker,
            container.scheduler,
            stop,
            poll_interval=settings.worker_poll_interval_seconds,
        )
    finally:
        await engine.dispose()
        logger.info("worker_stopped", worker_id=worker.worker_id)


def main() -> None:
    settings = Settings()
    setup_logging(settings)
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
