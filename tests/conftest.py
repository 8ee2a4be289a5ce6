import pytest

from connectors.credential_store import InMemoryCredentialStore
from fakes import FakeConnector


@pytest.fixture
def store():
    return InMemoryCredentialStore()


@pytest.fixture
def connector():
    return FakeConnector()
