"""
Notification worker process.

    minicompete-worker
    python -m minicompete.runners.worker

Runs until SIGINT/SIGTERM. In-flight jobs finish; anything leased but not
acknowledged is picked up again by another worker once its lease expires.
"""

import asyncio
import signal

from prometheus_client import start_http_server

from minicompete.bootstrap import build_container
from minicompete.core.config import get_settings
from minicompete.core.logging import get_logger, setup_logging


async def run_worker() -> None:
    settings = get_settings()
    setup_logging(service="worker")
    logger = get_logger(__name__)

    if settings.WORKER_METRICS_PORT:
        start_http_server(settings.WORKER_METRICS_PORT)
        logger.info("worker_metrics_listening", port=settings.WORKER_METRICS_PORT)

    container = build_container(settings)
    worker = container.build_worker()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await worker.run(stop)
    finally:
        await container.close()
        logger.info("worker_shutdown")


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
