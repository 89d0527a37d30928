"""
Pytest configuration and fixtures for pel tests.
"""

import pytest

from pel.config import SessionConfig
from pel.session import Session

from tests.helpers import FakeWorker, Recorder


@pytest.fixture
def worker():
    return FakeWorker()


@pytest.fixture
def config():
    return SessionConfig()


@pytest.fixture
def session(worker, config):
    return Session(worker, config)


@pytest.fixture
def recorder():
    return Recorder()
