"""Shared fixtures: a JMAP config, a fake server and a client wired to it."""

import pytest

from jmap_mcp.client import JmapClient
from jmap_mcp.config import JmapConfig
from jmap_mcp.mailboxes import MailboxCache

from tests.fakes import BASE_URL, FakeJmapServer


@pytest.fixture
def config():
    return JmapConfig(base_url=BASE_URL, username="alice", password="secret")


@pytest.fixture
def jmap_server(monkeypatch):
    return FakeJmapServer().install(monkeypatch)


@pytest.fixture
async def client(config, jmap_server):
    client = JmapClient(config)
    yield client
    await client.aclose()


@pytest.fixture
def mailboxes(client):
    return MailboxCache(client)
