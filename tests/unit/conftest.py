"""Shared test fixtures for unit tests."""

import pytest

from agent_loop.core.config import AppConfig
from tests.unit.fakes import TEST_PROMPTS, RecordingLogger


@pytest.fixture
def app_config():
    return AppConfig(prompts=TEST_PROMPTS)


@pytest.fixture
def recording_logger():
    return RecordingLogger()
