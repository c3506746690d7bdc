"""
Standalone case status monitor.

Run with:
    python -m app.status_monitor_main

Subscribes to the cases table and sends status-change notifications until
SIGINT or SIGTERM, then stops the listener and waits for in-flight
notifications to finish.
"""

import asyncio
import logging
import signal

from app.services.runtime import get_services

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


async def run() -> None:
    services = await get_services()
    monitor = services.monitor

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await monitor.start()
    logger.info("Status monitor running; press Ctrl+C to stop")

    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down status monitor")
        await monitor.stop()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
