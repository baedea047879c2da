"""
Pytest configuration and fixtures for dvirsync tests.
"""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add backend to path for imports
backend_path = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(backend_path))

# Set environment variables for testing BEFORE any imports
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("GEOTAB_SERVER", "my.geotab.test")
os.environ.setdefault("GEOTAB_DATABASE", "test_db")
os.environ.setdefault("GEOTAB_USERNAME", "tester@example.com")
os.environ.setdefault("GEOTAB_SESSION_ID", "test-session")

import pytest

from dvirsync.core.config import Settings
from dvirsync.services.fleet_context import FleetContext

from fakes import FakeInspectionApi, RecordingSleep

# Fixed clock so chunk boundaries are deterministic
NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def test_settings() -> Settings:
    """Settings with the production pacing and a test session."""
    return Settings(
        ENVIRONMENT="testing",
        GEOTAB_SERVER="my.geotab.test",
        GEOTAB_DATABASE="test_db",
        GEOTAB_USERNAME="tester@example.com",
        GEOTAB_SESSION_ID="test-session",
        LOG_FORMAT="text",
    )


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_api() -> FakeInspectionApi:
    return FakeInspectionApi()


@pytest.fixture
def fleet_context() -> FleetContext:
    return FleetContext()
