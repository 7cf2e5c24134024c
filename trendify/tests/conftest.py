"""Shared fixtures for the Trendify test suite."""

import io
from unittest.mock import AsyncMock, Mock

import pytest
from PIL import Image

from trendify.core.rate_governor import RateGovernor
from trendify.models import ImageArtifact
from trendify.pipeline.context import RunContext


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_png_bytes(color=(255, 0, 0)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_artifact(tag: str = "img") -> ImageArtifact:
    return ImageArtifact(mime_type="image/png", data=tag.encode("utf-8"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def governor(clock):
    return RateGovernor(clock=clock)


@pytest.fixture
def sleep():
    """Records pacing delays without waiting."""
    return AsyncMock()


@pytest.fixture
def client():
    mock_client = Mock()
    mock_client.generate = AsyncMock(return_value=make_artifact("out"))
    return mock_client


@pytest.fixture
def make_context(client, governor, sleep):
    def _make(credential=None, **overrides):
        return RunContext(client=client, governor=governor, credential=credential, sleep=sleep, **overrides)
    return _make


async def collect(stream):
    return [event async for event in stream]
