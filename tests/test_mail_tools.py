"""
Tests for the mail operations' batch shapes.
"""

import pytest

from jmap_mcp.errors import ResolutionError, ValidationError
from jmap_mcp.mail_tools import FULL_PROPERTIES, MAX_BODY_VALUE_BYTES, MailTools


@pytest.fixture
def mail(client, mailboxes):
    return MailTools(client, mailboxes)


@pytest.fixture
def jmap_server(jmap_server):
    jmap_server.mailboxes = [
        {"id": "M1", "name": "Inbox", "role": "inbox"},
        {"id": "M7", "name": "Trash", "role": "trash"},
    ]
    jmap_server.on("Email/query", {"ids": ["E1", "E2"], "position": 0, "total": 2})
    jmap_server.on("Email/get", {"list": [{"id": "E1"}, {"id": "E2"}], "notFound": []})
    return jmap_server


class TestListEmails:

    async def test_list_by_mailbox_name_resolves_and_filters(self, mail, jmap_server):
        result = await mail.list_emails(mailbox_name="Inbox")

        assert jmap_server.methods == ["Mailbox/get", "Email/query", "Email/get"]
        query = jmap_server.calls[1][1]
        assert query["filter"] == {"inMailbox": "M1"}
        assert query["sort"] == [{"property": "receivedAt", "isAscending": False}]
        assert query["limit"] == 50
        assert result["mailboxUsed"] == "M1"
        assert result["query"]["ids"] == ["E1", "E2"]
        assert [e["id"] for e in result["emails"]["list"]] == ["E1", "E2"]

    async def test_list_all_has_no_filter(self, mail, jmap_server):
        result = await mail.list_emails(limit=10)

        assert jmap_server.methods == ["Email/query", "Email/get"]
        assert jmap_server.calls[0][1]["filter"] == {}
        assert jmap_server.calls[0][1]["limit"] == 10
        assert result["mailboxUsed"] == "all"

    async def test_get_back_references_query_ids(self, mail, jmap_server):
        await mail.list_emails(mailbox_id="M1")

        query_call, get_call = jmap_server.calls
        assert query_call[2] == "query"
        assert get_call[1]["#ids"] == {"resultOf": "query", "name": "Email/query", "path": "/ids"}
        assert "preview" in get_call[1]["properties"]
        assert get_call[1]["accountId"] == "acc1"

    async def test_explicit_id_is_used_verbatim(self, mail, jmap_server):
        # An id that happens to look like a mailbox name is not resolved
        await mail.list_emails(mailbox_id="Inbox")

        assert jmap_server.methods == ["Email/query", "Email/get"]
        assert jmap_server.calls[0][1]["filter"] == {"inMailbox": "Inbox"}

    async def test_unknown_mailbox_name(self, mail, jmap_server):
        with pytest.raises(ResolutionError):
            await mail.list_emails(mailbox_name="Receipts")

        assert "Email/query" not in jmap_server.methods


class TestSearchAndGet:

    async def test_search_in_named_mailbox(self, mail, jmap_server):
        result = await mail.search_emails("invoice", limit=5, mailbox_name="trash")

        query_call, get_call = jmap_server.calls[1:]
        assert query_call[2] == "search"
        assert query_call[1]["filter"] == {"text": "invoice", "inMailbox": "M7"}
        assert query_call[1]["limit"] == 5
        assert get_call[1]["#ids"]["resultOf"] == "search"
        assert "bodyValues" not in get_call[1]["properties"]
        assert result["mailboxUsed"] == "M7"

    async def test_search_without_mailbox(self, mail, jmap_server):
        result = await mail.search_emails("invoice")

        assert jmap_server.calls[0][1]["filter"] == {"text": "invoice"}
        assert result["mailboxUsed"] is None

    async def test_empty_query_rejected(self, mail, jmap_server):
        with pytest.raises(ValidationError):
            await mail.search_emails("")
        assert jmap_server.payloads == []

    async def test_get_email_fetches_bodies(self, mail, jmap_server):
        await mail.get_email("E1")

        method, params, tag = jmap_server.calls[0]
        assert method == "Email/get"
        assert params["ids"] == ["E1"]
        assert params["properties"] == FULL_PROPERTIES
        assert params["fetchTextBodyValues"] is True
        assert params["fetchHTMLBodyValues"] is True
        assert params["maxBodyValueBytes"] == MAX_BODY_VALUE_BYTES


class TestFlagUpdates:

    async def test_mark_as_read(self, mail, jmap_server):
        await mail.mark_as_read(["E1", "E2"])

        method, params, tag = jmap_server.calls[0]
        assert method == "Email/set"
        assert params["update"] == {
            "E1": {"keywords/$seen": True},
            "E2": {"keywords/$seen": True},
        }

    async def test_mark_as_read_twice_does_not_raise(self, mail, jmap_server):
        jmap_server.on("Email/set", {"updated": {"E1": None}})

        first = await mail.mark_as_read(["E1"])
        second = await mail.mark_as_read(["E1"])

        assert first == second
        assert jmap_server.calls[0][1]["update"] == jmap_server.calls[1][1]["update"]

    async def test_mark_as_unread_sends_null(self, mail, jmap_server):
        await mail.mark_as_unread(["E1"])

        assert jmap_server.calls[0][1]["update"] == {"E1": {"keywords/$seen": None}}

    async def test_delete_sets_deleted_flag(self, mail, jmap_server):
        await mail.delete_emails(["E1"])

        params = jmap_server.calls[0][1]
        assert params["update"] == {"E1": {"keywords/$deleted": True}}
        assert "destroy" not in params

    async def test_partial_failure_is_returned_raw(self, mail, jmap_server):
        jmap_server.on("Email/set", {
            "updated": {"E1": None},
            "notUpdated": {"E2": {"type": "notFound"}},
        })

        result = await mail.mark_as_read(["E1", "E2"])

        assert result["notUpdated"] == {"E2": {"type": "notFound"}}

    async def test_empty_id_list_rejected(self, mail, jmap_server):
        with pytest.raises(ValidationError):
            await mail.delete_emails([])
        assert jmap_server.payloads == []

    async def test_move_to_named_mailbox(self, mail, jmap_server):
        await mail.move_emails(["E1"], mailbox_name="Trash")

        assert jmap_server.calls[-1][1]["update"] == {"E1": {"mailboxIds": {"M7": True}}}

    async def test_move_requires_target(self, mail, jmap_server):
        with pytest.raises(ValidationError):
            await mail.move_emails(["E1"])

    async def test_move_to_blank_name_is_rejected(self, mail, jmap_server):
        with pytest.raises(ValidationError):
            await mail.move_emails(["E1"], mailbox_name="   ")

        assert "Email/set" not in jmap_server.methods


async def test_list_mailboxes_refreshes_cache(mail, mailboxes, jmap_server):
    result = await mail.list_mailboxes()

    assert [mb["id"] for mb in result["list"]] == ["M1", "M7"]
    assert result["fetchedAt"] == mailboxes.fetched_at.isoformat()
    assert mailboxes.names() == ["Inbox", "Trash"]
