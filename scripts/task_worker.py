from __future__ import annotations

import asyncio

from billbus.core.logging import configure_logging
from billbus.workers.task_worker import run_task_worker


async def _main() -> None:
    # Run the task engine in its own process, apart from the API.
    configure_logging()
    await run_task_worker()


if __name__ == "__main__":
    asyncio.run(_main())
