"""Shared fixtures for the unit tests."""

import pytest


class RecordingReporter:
    """Progress reporter that keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def begin(self, message: str) -> None:
        self.events.append(("begin", message))

    def succeed(self, message: str) -> None:
        self.events.append(("succeed", message))

    def fail(self, message: str) -> None:
        self.events.append(("fail", message))

    def info(self, message: str) -> None:
        self.events.append(("info", message))

    def messages(self, kind: str) -> list[str]:
        return [message for event, message in self.events if event == kind]


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()
