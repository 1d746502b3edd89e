"""Pytest configuration and shared fixtures."""

import sys
import asyncio
import inspect
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure src directory is in Python path for all tests
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from medsync.adapters.memory import InMemoryRemoteClient
from medsync.api_models import MedicationDTO
from medsync.config import Config
from medsync.models import Frequency, Medication
from medsync.store import InMemoryMedicationStore


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """Execute async tests without external plugins."""
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            sig = inspect.signature(testfunction)
            call_kwargs = {name: pyfuncitem.funcargs[name] for name in sig.parameters}
            loop.run_until_complete(testfunction(**call_kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


T0 = datetime(2026, 1, 11, 10, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """Timestamp ``seconds`` after the fixed test epoch."""
    return T0 + timedelta(seconds=seconds)


class StepClock:
    """Server clock that advances one second per reading."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def make_medication(**overrides) -> Medication:
    values = dict(
        id="med-1",
        username="alice",
        name="Aspirin",
        dosage="100mg",
        frequency=Frequency.DAILY,
        created_at=T0,
        updated_at=T0,
    )
    values.update(overrides)
    return Medication(**values)


def make_dto(**overrides) -> MedicationDTO:
    values = dict(
        id="med-1",
        username="alice",
        name="Aspirin",
        dosage="100mg",
        frequency=Frequency.DAILY,
        created_at=T0,
        updated_at=T0,
    )
    values.update(overrides)
    return MedicationDTO(**values)


@pytest.fixture
def rows():
    """Committed rows shared by every store session of a test."""
    return {}


@pytest.fixture
def store(rows):
    return InMemoryMedicationStore(rows)


@pytest.fixture
def remote():
    return InMemoryRemoteClient(clock=StepClock(at(1000)))


@pytest.fixture
def clean_config(monkeypatch, tmp_path):
    """Isolate configuration from the environment and the home directory."""
    for name in ("API_BASE_URL", "API_KEY", "TIMEOUT_SECONDS", "USERNAME", "DATA_DIR", "LOG_LEVEL"):
        monkeypatch.delenv(f"MEDSYNC_{name}", raising=False)
    monkeypatch.setenv("MEDSYNC_DATA_DIR", str(tmp_path / "data"))
    Config.reset()
    yield tmp_path / "data"
    Config.reset()
