from __future__ import annotations

import argparse
import asyncio
import sys

from billbus.core.config import get_settings
from billbus.persistence.db import SessionLocal
from billbus.services.tokens import TokenGuard


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Issue a caller session token")
    parser.add_argument("--user-id", required=True, help="User the token belongs to")
    return parser


async def _issue(args: argparse.Namespace) -> int:
    guard = TokenGuard(SessionLocal, idle_minutes=get_settings().token_idle_minutes)
    token = await guard.issue(args.user_id)
    print(token)
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_issue(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"issue_token failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
