"""Process entry point for running the coordination layer as a worker."""

from __future__ import annotations

import asyncio
import logging
import signal

from marketplace_coord.config.settings import AppConfig
from marketplace_coord.coordinator.service import Coordinator

logger = logging.getLogger(__name__)


async def run(config: AppConfig) -> None:
    """Initialize a coordinator and keep it running until SIGINT/SIGTERM."""
    coordinator = Coordinator(config)
    await coordinator.initialize()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("Coordination worker running (store engine: %s)", config.store.engine)
    try:
        await stop.wait()
    finally:
        await coordinator.shutdown()


def main() -> None:
    """Start the coordination worker."""
    # MPCOORD_CONFIG_PATH, if set, points at a YAML file
    config = AppConfig()
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run(config))


if __name__ == "__main__":
    main()
