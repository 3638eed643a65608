"""Shared fixtures: a scripted session, a silent TCP server and a throwaway log directory."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Keep the rotating file handler out of the working tree during tests.
os.environ.setdefault("LOG_DIR", "")

from fakes import FakeSession, StallingServer  # noqa: E402

TOKEN = "123456:TEST-token"


@pytest.fixture
def token() -> str:
    return TOKEN


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def stalling_server():
    server = StallingServer()
    yield server
    server.close()
