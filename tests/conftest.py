"""Fixtures shared across the test suite."""

import pytest

from omnichat.backends.base import MediaResult
from tests.fakes import RecordingSink


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def image_media():
    return MediaResult(kind="image", url="https://img.example/red-bicycle.png")
