"""Test fixtures for the jaxSONG test suite.

Provides:
- Small HierarchyParams / HierarchySetup fixtures
- A loguru capture fixture for log-based assertions
"""

# Enable 64-bit JAX (exact comparisons of products rely on float64)
import jax
jax.config.update("jax_enable_x64", True)

import pytest
from loguru import logger

from jaxsong import HierarchyParams, HierarchySetup


@pytest.fixture
def params():
    return HierarchyParams(l_max_g=4, l_max_pol_g=3, l_max_ur=5)


@pytest.fixture
def params_no_pol():
    return HierarchyParams(l_max_g=4, l_max_pol_g=3, l_max_ur=5, has_polarization=False)


@pytest.fixture
def setup(params):
    return HierarchySetup.build(params)


@pytest.fixture
def log_records():
    """Collect loguru records emitted during the test."""
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)


def messages(records, level=None):
    """Messages of captured records, optionally filtered by level name."""
    return [r["message"] for r in records if level is None or r["level"].name == level]
