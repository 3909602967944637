"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from workspace_agent.ai.orchestration.types import Message, RunParams

from helpers import EventCollector, RecordingExecutor


@pytest.fixture
def collector() -> EventCollector:
    return EventCollector()


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def run_params() -> RunParams:
    return RunParams(model="fake-model", message="List the files in src", current_folder="/work")


@pytest.fixture
def base_messages() -> tuple[Message, ...]:
    return (Message.system("You are helpful."), Message.user("List the files in src"))
