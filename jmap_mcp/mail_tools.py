"""
Mail Tools - Email operations via JMAP.

Listing and search are one batch each: an Email/query whose id list is
fed into Email/get by back-reference, so the server never round-trips
the ids through us.
"""

import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .client import back_reference
from .errors import ValidationError

if TYPE_CHECKING:
    from .client import JmapClient
    from .mailboxes import MailboxCache

logger = logging.getLogger(__name__)

SUMMARY_PROPERTIES = [
    "id", "subject", "from", "to", "cc", "bcc",
    "receivedAt", "sentAt", "hasAttachment", "preview",
    "keywords", "size", "mailboxIds",
]

SEARCH_PROPERTIES = [
    "id", "subject", "from", "to", "receivedAt",
    "preview", "hasAttachment", "keywords", "mailboxIds",
]

FULL_PROPERTIES = [
    "id", "subject", "from", "to", "cc", "bcc",
    "receivedAt", "sentAt", "hasAttachment", "preview",
    "bodyStructure", "bodyValues", "textBody", "htmlBody",
    "keywords", "size", "references", "inReplyTo",
]

MAX_BODY_VALUE_BYTES = 1024 * 1024

NEWEST_FIRST = [{"property": "receivedAt", "isAscending": False}]


class MailTools:
    """Email operations via JMAP."""

    def __init__(self, client: "JmapClient", mailboxes: "MailboxCache"):
        """
        Initialize mail tools.

        Args:
            client: JmapClient used for every batch
            mailboxes: Shared mailbox cache for name resolution
        """
        self.client = client
        self.mailboxes = mailboxes

    async def list_mailboxes(self) -> Dict[str, Any]:
        """Fetch all mailboxes, refreshing the name-resolution cache."""
        result = await self.mailboxes.refresh()
        return {**result, "fetchedAt": self.mailboxes.fetched_at.isoformat()}

    async def list_emails(
        self,
        mailbox_id: Optional[str] = None,
        mailbox_name: Optional[str] = None,
        limit: int = 50,
    ) -> Dict[str, Any]:
        """
        List the newest emails, optionally restricted to one mailbox.

        Args:
            mailbox_id: Opaque mailbox id (used as-is)
            mailbox_name: Mailbox label such as "Inbox" (resolved)
            limit: Maximum number of emails to return

        Returns:
            Dict with the raw ``query`` and ``emails`` results and ``mailboxUsed``
        """
        resolved = await self.mailboxes.resolve(mailbox_id, mailbox_name)
        filter_ = {"inMailbox": resolved} if resolved else {}
        return await self._query_and_get(filter_, limit, "query", SUMMARY_PROPERTIES, resolved or "all")

    async def get_email(self, email_id: str) -> Dict[str, Any]:
        """
        Fetch one email with headers and decoded text/HTML bodies.

        Returns:
            The raw Email/get result (``list`` and ``notFound``)
        """
        if not email_id:
            raise ValidationError("emailId is required")
        return await self.client.call(
            "Email/get",
            {
                "ids": [email_id],
                "properties": FULL_PROPERTIES,
                "bodyProperties": ["partId", "type", "size"],
                "fetchTextBodyValues": True,
                "fetchHTMLBodyValues": True,
                "maxBodyValueBytes": MAX_BODY_VALUE_BYTES,
            },
            "email",
        )

    async def search_emails(
        self,
        query: str,
        limit: int = 20,
        mailbox_id: Optional[str] = None,
        mailbox_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Full-text search, newest first.

        Args:
            query: Free-text search string
            limit: Maximum number of results
            mailbox_id: Restrict to this mailbox id
            mailbox_name: Restrict to the mailbox with this label

        Returns:
            Dict with the raw ``query`` and ``emails`` results and ``mailboxUsed``
        """
        if not query:
            raise ValidationError("query is required")
        resolved = await self.mailboxes.resolve(mailbox_id, mailbox_name)
        filter_: Dict[str, Any] = {"text": query}
        if resolved:
            filter_["inMailbox"] = resolved
        return await self._query_and_get(filter_, limit, "search", SEARCH_PROPERTIES, resolved)

    async def mark_as_read(self, email_ids: List[str]) -> Dict[str, Any]:
        return await self._update_each(email_ids, {"keywords/$seen": True}, "markRead")

    async def mark_as_unread(self, email_ids: List[str]) -> Dict[str, Any]:
        return await self._update_each(email_ids, {"keywords/$seen": None}, "markUnread")

    async def delete_emails(self, email_ids: List[str]) -> Dict[str, Any]:
        """
        Flag emails with ``$deleted``.

        This does not move or expunge anything; what the flag means is up
        to the server.
        """
        return await self._update_each(email_ids, {"keywords/$deleted": True}, "delete")

    async def move_emails(
        self,
        email_ids: List[str],
        mailbox_id: Optional[str] = None,
        mailbox_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Replace the mailbox membership of each email with a single target mailbox."""
        target = await self.mailboxes.resolve(mailbox_id, mailbox_name)
        if not target:
            raise ValidationError("A target mailbox_id or mailbox_name is required")
        return await self._update_each(email_ids, {"mailboxIds": {target: True}}, "move")

    async def _query_and_get(
        self,
        filter_: Dict[str, Any],
        limit: int,
        tag: str,
        properties: List[str],
        mailbox_used: Optional[str],
    ) -> Dict[str, Any]:
        session = await self.client.ensure_session()
        responses = await self.client.request([
            ["Email/query", {
                "accountId": session.account_id,
                "filter": filter_,
                "sort": NEWEST_FIRST,
                "limit": limit,
            }, tag],
            ["Email/get", {
                "accountId": session.account_id,
                "#ids": back_reference(tag, "Email/query"),
                "properties": properties,
            }, "emails"],
        ])
        return {
            "query": self.client.result_of(responses, 0, "Email/query"),
            "emails": self.client.result_of(responses, 1, "Email/get"),
            "mailboxUsed": mailbox_used,
        }

    async def _update_each(self, email_ids: List[str], patch: Dict[str, Any], tag: str) -> Dict[str, Any]:
        """One Email/set with the same patch applied to every id; per-id failures stay in notUpdated."""
        if not email_ids:
            raise ValidationError("emailIds must contain at least one id")
        result = await self.client.call(
            "Email/set",
            {"update": {email_id: dict(patch) for email_id in email_ids}},
            tag,
        )
        if result.get("notUpdated"):
            logger.warning(f"Email/set {tag}: {len(result['notUpdated'])} ids not updated")
        return result
