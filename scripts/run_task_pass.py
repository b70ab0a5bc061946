from __future__ import annotations

import asyncio
import json
import sys

from billbus.core.logging import configure_logging
from billbus.workers.task_worker import run_single_pass


async def _main() -> int:
    configure_logging()
    summary = await run_single_pass()
    print(json.dumps(summary, indent=2))
    return 0 if summary.get("status") in {"ok", "stopped"} else 1


if __name__ == "__main__":
    try:
        raise SystemExit(asyncio.run(_main()))
    except Exception as exc:  # noqa: BLE001 - report config and database failures without a traceback
        print(f"run_task_pass failed: {exc}", file=sys.stderr)
        raise SystemExit(1)
