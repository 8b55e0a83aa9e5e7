from pathlib import Path
from unittest import mock

import pytest
import yaml

import ocean.logstreams
import ocean.poll
from ocean.client import OceanClient
from ocean.config import REST_SERVER

SUPPORT = Path(__file__).parent / "support"


def pytest_configure(*args, **kwargs):
    """Pytest calls this hook on startup."""
    # Set log level to DEBUG for all unit tests.
    ocean.logstreams.setup("DEBUG")


def url(path: str) -> str:
    return REST_SERVER + path


@pytest.fixture
def client(respx_mock):
    """Return a logged in client. Every request must be mocked with respx."""
    with OceanClient("token") as c:
        yield c


@pytest.fixture
def m_sleep():
    """Replace the sleep between two polls."""
    with mock.patch.object(ocean.poll, "_mysleep") as m_sleep:
        yield m_sleep


@pytest.fixture
def specimen():
    """Return a function that loads a server response from `tests/support`."""

    def load(name: str) -> dict:
        return yaml.safe_load((SUPPORT / f"{name}.yaml").read_text())

    return load
