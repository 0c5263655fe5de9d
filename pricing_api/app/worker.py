"""
Standalone scheduler worker.

Usage:
    python -m app.worker

Any number of workers can run against the same Redis database.
"""

import asyncio
import logging
import signal

from app.config import get_settings
from app.deps import close_redis, get_executor

logger = logging.getLogger(__name__)


async def main():
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    executor = await get_executor()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, executor.stop)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    try:
        await executor.run_forever()
    finally:
        await close_redis()


if __name__ == "__main__":
    asyncio.run(main())
