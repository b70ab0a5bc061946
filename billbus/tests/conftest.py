from __future__ import annotations

import os
from pathlib import Path
import tempfile

# Point settings at throwaway locations before any billbus module reads them.
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="billbus-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_ROOT / 'system.db'}"
os.environ["CONFIG_DIR"] = str(_TEST_ROOT / "config")
os.environ["AUDIT_FALLBACK_DIR"] = str(_TEST_ROOT / "logs")
os.environ["ACCOUNT_SECRET_KEY"] = "billbus-test-secret"
os.environ["LOG_LEVEL"] = "INFO"

import pytest  # noqa: E402

from billbus.domain.models import Base  # noqa: E402
from billbus.persistence.db import engine  # noqa: E402
from billbus.services import telemetry  # noqa: E402
from billbus.tests.utils.bus import BusFixture, create_bus  # noqa: E402


@pytest.fixture(autouse=True)
async def system_tables() -> None:
    # Fresh system tables per test; dispose so no connection outlives its event loop.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_telemetry() -> None:
    telemetry.reset()
    yield


@pytest.fixture
async def bus(tmp_path) -> BusFixture:
    # Account database, YAML config tree and runtime rooted in a per-test directory.
    fixture = await create_bus(tmp_path)
    yield fixture
    await fixture.runtime.aclose()
