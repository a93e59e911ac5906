"""
Tests for session discovery and the batch request executor.
"""

import base64

import httpx
import pytest

from jmap_mcp.client import (
    CAPABILITIES,
    JmapClient,
    back_reference,
    check_back_references,
)
from jmap_mcp.config import JmapConfig
from jmap_mcp.errors import DiscoveryError, MethodError, RequestError

from tests.fakes import API_URL, BASE_URL, MethodFailure


class TestSessionResolver:
    """Account selection and discovery failures."""

    async def test_primary_mail_account_is_used(self, client, jmap_server):
        session = await client.get_session()

        assert session.account_id == "acc1"
        assert session.api_url == API_URL
        assert session.state == "s1"
        assert session.event_source_url.endswith("/eventsource/")
        assert jmap_server.get_urls == [f"{BASE_URL}/.well-known/jmap"]

    async def test_explicit_account_id_wins(self, jmap_server):
        config = JmapConfig(base_url=BASE_URL, username="alice", password="secret", account_id="override")
        client = JmapClient(config)

        session = await client.get_session()

        assert session.account_id == "override"
        await client.aclose()

    async def test_first_account_without_primary_mapping(self, client, jmap_server):
        jmap_server.session["primaryAccounts"] = {}
        jmap_server.session["accounts"] = {"first": {}, "second": {}}

        session = await client.get_session()

        assert session.account_id == "first"

    async def test_no_accounts_is_a_discovery_error(self, client, jmap_server):
        jmap_server.session["primaryAccounts"] = {}
        jmap_server.session["accounts"] = {}

        with pytest.raises(DiscoveryError):
            await client.get_session()

    async def test_basic_auth_header(self, client, jmap_server):
        await client.get_session()

        expected = base64.b64encode(b"alice:secret").decode("ascii")
        assert jmap_server.get_headers[0]["Authorization"] == f"Basic {expected}"
        assert jmap_server.get_headers[0]["Content-Type"] == "application/json"

    async def test_failed_discovery_probes_alternatives_then_raises(self, client, jmap_server):
        jmap_server.discovery_status = 401

        with pytest.raises(DiscoveryError) as exc_info:
            await client.get_session()

        assert exc_info.value.status == 401
        assert "discovery refused" in exc_info.value.body
        assert jmap_server.get_urls == [
            f"{BASE_URL}/.well-known/jmap",
            f"{BASE_URL}/jmap",
            f"{BASE_URL}/jmap/session",
            f"{BASE_URL}/.well-known/jmap-session",
        ]
        assert client.session is None

    async def test_alternative_success_is_not_adopted(self, client, jmap_server):
        jmap_server.discovery_status = 500
        jmap_server.alternative_status = 200

        with pytest.raises(DiscoveryError):
            await client.get_session()

        # Probing stops at the first answering endpoint
        assert len(jmap_server.get_urls) == 2
        assert client.session is None

    async def test_connection_error_is_a_discovery_error(self, client, monkeypatch):
        async def refuse(self_client, url, **kwargs):
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(httpx.AsyncClient, "get", refuse)

        with pytest.raises(DiscoveryError) as exc_info:
            await client.get_session()

        assert exc_info.value.status is None


class TestBatchRequestExecutor:
    """Payload shape, positional responses and HTTP failures."""

    async def test_session_is_discovered_once(self, client, jmap_server):
        await client.request([["Mailbox/get", {"accountId": "acc1", "ids": None}, "a"]])
        await client.request([["Mailbox/get", {"accountId": "acc1", "ids": None}, "b"]])

        assert jmap_server.get_urls == [f"{BASE_URL}/.well-known/jmap"]
        assert len(jmap_server.payloads) == 2

    async def test_payload_declares_capabilities(self, client, jmap_server):
        await client.request([["Mailbox/get", {"accountId": "acc1", "ids": None}, "mailboxes"]])

        payload = jmap_server.payloads[0]
        assert payload["using"] == CAPABILITIES
        assert "urn:ietf:params:jmap:core" in payload["using"]
        assert "urn:ietf:params:jmap:mail" in payload["using"]
        assert "urn:ietf:params:jmap:calendars" in payload["using"]
        assert "urn:ietf:params:jmap:contacts" in payload["using"]
        assert payload["methodCalls"] == [["Mailbox/get", {"accountId": "acc1", "ids": None}, "mailboxes"]]

    async def test_responses_are_positional(self, client, jmap_server):
        jmap_server.on("Email/query", {"ids": ["E1", "E2"]})
        jmap_server.on("Email/get", MethodFailure(type="invalidArguments"))

        responses = await client.request([
            ["Email/query", {"accountId": "acc1"}, "q"],
            ["Email/get", {"accountId": "acc1", "#ids": back_reference("q", "Email/query")}, "g"],
        ])

        assert responses[0] == ["Email/query", {"ids": ["E1", "E2"]}, "q"]
        # A method-level error still occupies its slot
        assert responses[1][0] == "error"
        assert responses[1][2] == "g"

    async def test_back_reference_is_sent_unresolved(self, client, jmap_server):
        jmap_server.on("Email/query", {"ids": ["E1", "E2"]})

        await client.request([
            ["Email/query", {"accountId": "acc1"}, "q"],
            ["Email/get", {"accountId": "acc1", "#ids": back_reference("q", "Email/query")}, "g"],
        ])

        get_params = jmap_server.calls[1][1]
        assert "ids" not in get_params
        assert get_params["#ids"] == {"resultOf": "q", "name": "Email/query", "path": "/ids"}

    async def test_http_failure_raises_request_error(self, client, jmap_server):
        jmap_server.api_status = 500

        with pytest.raises(RequestError) as exc_info:
            await client.request([["Mailbox/get", {"accountId": "acc1"}, "m"]])

        assert exc_info.value.status == 500
        assert exc_info.value.body == "Internal error"
        assert len(jmap_server.payloads) == 1

    async def test_call_fills_account_and_raises_method_error(self, client, jmap_server):
        jmap_server.on("Email/get", MethodFailure(type="accountNotFound", description="no such account"))

        with pytest.raises(MethodError) as exc_info:
            await client.call("Email/get", {"ids": ["E1"]}, "email")

        assert exc_info.value.error_type == "accountNotFound"
        assert "no such account" in str(exc_info.value)
        assert jmap_server.calls[0][1]["accountId"] == "acc1"


class TestBackReferenceValidation:

    def test_reference_to_earlier_call_is_accepted(self):
        check_back_references([
            ["Email/query", {}, "q"],
            ["Email/get", {"#ids": back_reference("q", "Email/query")}, "g"],
        ])

    def test_reference_to_later_call_is_rejected(self):
        with pytest.raises(ValueError):
            check_back_references([
                ["Email/get", {"#ids": back_reference("q", "Email/query")}, "g"],
                ["Email/query", {}, "q"],
            ])

    async def test_rejected_batch_is_never_sent(self, client, jmap_server):
        with pytest.raises(ValueError):
            await client.request([["Email/get", {"#ids": back_reference("missing", "Email/query")}, "g"]])

        assert jmap_server.payloads == []
        assert jmap_server.get_urls == []
