"""
Scheduler process: reminders and retention purges on fixed intervals.

    minicompete-scheduler
    minicompete-scheduler --once     # run every task once and exit

Run a single scheduler per deployment; a second copy sends duplicate
reminders.
"""

import argparse
import asyncio
import signal

from minicompete.bootstrap import build_container
from minicompete.core.config import get_settings
from minicompete.core.logging import get_logger, setup_logging


async def run_scheduler(once: bool = False) -> None:
    settings = get_settings()
    setup_logging(service="scheduler")
    logger = get_logger(__name__)

    container = build_container(settings)
    scheduler = container.build_scheduler()
    tasks = container.scheduled_tasks(scheduler)

    try:
        if once:
            for task in tasks:
                result = await task.run(None)
                logger.info("scheduled_task_finished", task=task.name, result=result)
            return

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)
        await scheduler.run(tasks, stop)
    finally:
        await container.close()
        logger.info("scheduler_shutdown")


def main() -> None:
    parser = argparse.ArgumentParser(description="Mini Compete scheduler")
    parser.add_argument("--once", action="store_true", help="run every task once and exit")
    args = parser.parse_args()
    asyncio.run(run_scheduler(once=args.once))


if __name__ == "__main__":
    main()
