"""
Mailbox cache and name resolution.

Tools accept either an opaque mailbox id (used verbatim) or a human label
such as "Inbox", which is resolved against a cached Mailbox/get listing.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .errors import ResolutionError, ValidationError

if TYPE_CHECKING:
    from .client import JmapClient

logger = logging.getLogger(__name__)

# Common labels mapped to RFC 8621 mailbox roles
ROLE_ALIASES = {
    "inbox": "inbox",
    "sent": "sent",
    "draft": "drafts",
    "drafts": "drafts",
    "trash": "trash",
    "deleted": "trash",
    "spam": "junk",
    "junk": "junk",
    "archive": "archive",
    "outbox": "outbox",
}


class MailboxCache:
    """
    Flat in-memory copy of the account's mailboxes.

    Filled lazily on first lookup and replaced wholesale by refresh().
    Mailboxes created or deleted by other clients are not noticed until
    the next refresh.
    """

    def __init__(self, client: "JmapClient"):
        self.client = client
        self.mailboxes: List[Dict[str, Any]] = []
        self.fetched_at: Optional[datetime] = None

    async def refresh(self) -> Dict[str, Any]:
        """
        Re-fetch every mailbox and replace the cache.

        Returns:
            The raw Mailbox/get result
        """
        result = await self.client.call("Mailbox/get", {"ids": None}, "mailboxes")
        self.mailboxes = result.get("list") or []
        self.fetched_at = datetime.now(timezone.utc)
        logger.info(f"Mailbox cache refreshed: {len(self.mailboxes)} mailboxes")
        return result

    async def ensure_loaded(self) -> List[Dict[str, Any]]:
        if not self.mailboxes:
            await self.refresh()
        return self.mailboxes

    def names(self) -> List[str]:
        return [mb.get("name", "") for mb in self.mailboxes]

    async def find_id_by_name(self, mailbox_name: str) -> Optional[str]:
        """
        Map a label to a mailbox id.

        Tries, in order: exact name, substring of name, then the role
        table (so "spam" finds the junk mailbox whatever it is called).
        All comparisons are case-insensitive.

        Returns:
            The mailbox id, or None if nothing matched
        """
        wanted = mailbox_name.strip().lower()
        if not wanted:
            return None
        await self.ensure_loaded()

        for mb in self.mailboxes:
            if (mb.get("name") or "").lower() == wanted:
                return mb["id"]

        for mb in self.mailboxes:
            if wanted in (mb.get("name") or "").lower():
                return mb["id"]

        role = ROLE_ALIASES.get(wanted)
        if role:
            for mb in self.mailboxes:
                if mb.get("role") == role:
                    return mb["id"]

        return None

    async def resolve(
        self,
        mailbox_id: Optional[str] = None,
        mailbox_name: Optional[str] = None,
    ) -> Optional[str]:
        """
        Turn an explicit id or a label into a mailbox id.

        Args:
            mailbox_id: Opaque server id, returned unchanged
            mailbox_name: Label to resolve through find_id_by_name

        Returns:
            The mailbox id, or None when neither argument was given (blank
            strings count as not given)

        Raises:
            ValidationError: if both arguments are given
            ResolutionError: if the label matches no mailbox
        """
        if mailbox_id is not None and not mailbox_id.strip():
            mailbox_id = None
        mailbox_name = (mailbox_name or "").strip() or None
        if mailbox_id and mailbox_name:
            raise ValidationError("Pass either mailbox_id or mailbox_name, not both")
        if mailbox_id:
            return mailbox_id
        if not mailbox_name:
            return None

        found = await self.find_id_by_name(mailbox_name)
        if not found:
            raise ResolutionError(
                f'Mailbox "{mailbox_name}" not found. '
                f"Available mailboxes: {', '.join(self.names())}"
            )
        logger.debug(f"Resolved mailbox {mailbox_name!r} to {found}")
        return found
