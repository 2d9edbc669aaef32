"""Shared fixtures: a real subprocess backend and fast timeouts."""

import pathlib
import sys

import pytest

# Ensure the src directory is on the path for importing tool_bridge directly
sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1] / "src"))

from tool_bridge.config import BackendConfig, BridgeSettings

FAKE_BACKEND = pathlib.Path(__file__).resolve().parent / "fake_backend.py"


def fake_backend(name: str = "mongodb", *flags: str, **kwargs) -> BackendConfig:
    """A stdio backend running tests/fake_backend.py with the given flags."""
    return BackendConfig.stdio(name, sys.executable, ["-u", str(FAKE_BACKEND), *flags], **kwargs)


@pytest.fixture
def settings() -> BridgeSettings:
    return BridgeSettings(
        connect_timeout=5.0,
        request_timeout=5.0,
        handshake_timeout=3.0,
        shutdown_grace=1.0,
        terminate_grace=0.5,
    )


@pytest.fixture
def make_backend():
    return fake_backend
