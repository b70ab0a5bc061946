from __future__ import annotations

import asyncio
import logging
import signal

from billbus.core.config import get_settings
from billbus.services.runtime import Runtime, build_runtime


logger = logging.getLogger(__name__)


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    # SIGINT/SIGTERM request a clean stop; the current task write-back still completes.
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Platforms without loop signal support fall back to KeyboardInterrupt.
            logger.debug("signal_handler_unavailable signal=%s", sig)


async def run_task_worker(runtime: Runtime | None = None, stop_event: asyncio.Event | None = None) -> None:
    settings = get_settings()
    if not settings.task_engine_enabled:
        logger.info("task_engine_disabled")
        return
    runtime = runtime or build_runtime(validate=True)
    stop_event = stop_event or asyncio.Event()
    install_signal_handlers(stop_event)
    try:
        await runtime.engine.run_forever(stop_event)
    finally:
        await runtime.aclose()


async def run_single_pass(runtime: Runtime | None = None) -> dict[str, object]:
    runtime = runtime or build_runtime(validate=True)
    try:
        summary = await runtime.engine.run_pass()
    finally:
        await runtime.aclose()
    return summary.as_dict()
