"""Shared fixtures: a file-backed engine per test and a few helpers."""

import math

import pytest

from civicguard.config import EngineConfig
from civicguard.engine import CivicGuardEngine
from civicguard.geo.proximity import EARTH_RADIUS_KM, Coordinate
from civicguard.identity import Registered
from civicguard.notifications import NotificationDispatcher
from civicguard.store.sqlite_store import RecordStore

CENTER = Coordinate(40.7128, -74.0060)


def north_of(origin: Coordinate, km: float) -> Coordinate:
    """Point exactly *km* due north of *origin* along its meridian."""
    return Coordinate(origin.latitude + math.degrees(km / EARTH_RADIUS_KM), origin.longitude)


@pytest.fixture
def config(tmp_path) -> EngineConfig:
    return EngineConfig(
        database_path=str(tmp_path / "civicguard.db"),
        audit_log_dir=str(tmp_path / "admin_logs"),
    )


@pytest.fixture
def store(config) -> RecordStore:
    return RecordStore(config.database_path, config.busy_timeout_seconds)


@pytest.fixture
def engine(config, store) -> CivicGuardEngine:
    return CivicGuardEngine(config, store=store, dispatcher=NotificationDispatcher(store, []))


@pytest.fixture
def make_issue(engine):
    """Factory for visible issues reported by ``user:reporter`` unless told otherwise."""

    def _make(location: Coordinate = CENTER, reporter=Registered("reporter"), title: str = "Pothole on Main St"):
        return engine.report_issue(
            title=title,
            description="Deep pothole in the right lane near the crossing.",
            category="roads",
            location=location,
            reporter=reporter,
        )

    return _make
