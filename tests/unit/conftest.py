"""Shared test fixtures for unit tests."""

import logging

import pytest

from agent_relay.core.config import RelayPaths, clear_settings_cache
from agent_relay.utils.rich_logging import ROOT_LOGGER_NAME
from tests.unit.relay_fixtures import make_team_settings


@pytest.fixture(autouse=True)
def _reset_relay_state():
    """Settings cache and logger propagation are process-global."""
    clear_settings_cache()
    yield
    clear_settings_cache()
    logging.getLogger(ROOT_LOGGER_NAME).propagate = True


@pytest.fixture
def paths(tmp_path) -> RelayPaths:
    relay_paths = RelayPaths(tmp_path / "relay")
    relay_paths.ensure()
    return relay_paths


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "workspace"
    ws.mkdir()
    return ws


@pytest.fixture
def team_settings(workspace):
    return make_team_settings(workspace)
