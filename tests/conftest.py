"""Shared test fixtures."""

import sys

import pytest

# Ensure src is in path
sys.path.insert(0, "src")

from loguru import logger

from codecity import CitySettings, DerivationEngine, EntityLedger, SpatialIndex


@pytest.fixture
def settings():
    """Default settings, isolated from CODECITY_* environment variables."""
    return CitySettings.model_validate({})


@pytest.fixture
def engine(settings):
    """Fresh DerivationEngine."""
    return DerivationEngine(settings)


@pytest.fixture
def index():
    """Fresh 50x50 SpatialIndex with roads every 4th row/column."""
    return SpatialIndex(initial_size=50, road_interval=4)


@pytest.fixture
def ledger():
    """Fresh EntityLedger."""
    return EntityLedger()


@pytest.fixture
def log_messages():
    """Capture loguru messages emitted during the test."""
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(str(message)), level="DEBUG")
    yield messages
    logger.remove(handler_id)
