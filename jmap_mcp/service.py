"""
JMAP Service - the connection context handed to every MCP tool.

Owns the JmapClient, the mailbox cache and the tool classes. A service
without a client is the "not connected" state; tools check is_ready()
instead of tracking initialization separately.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from .calendar_tools import CalendarTools
from .client import JmapClient
from .config import JmapConfig
from .contact_tools import ContactTools
from .errors import JmapError
from .mail_tools import MailTools
from .mailboxes import MailboxCache
from .send import SendWorkflow

logger = logging.getLogger(__name__)

NOT_CONNECTED_MESSAGE = (
    "Not connected to JMAP server. Please use the connect_jmap tool first with your server details."
)


class JmapService:
    """JMAP mail, calendar and contacts service for one account at a time."""

    def __init__(self):
        self._reset()

    def _reset(self):
        self.config: Optional[JmapConfig] = None
        self.client: Optional[JmapClient] = None
        self.mailboxes: Optional[MailboxCache] = None
        self.mail_tools: Optional[MailTools] = None
        self.send_workflow: Optional[SendWorkflow] = None
        self.calendar_tools: Optional[CalendarTools] = None
        self.contact_tools: Optional[ContactTools] = None

    async def connect(
        self,
        config: JmapConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> Dict[str, Any]:
        """
        Replace the current connection with a new one and verify it.

        The connection is tested by listing mailboxes, which also warms the
        mailbox cache. On failure the service is left disconnected.

        Args:
            config: Credentials for the new connection
            http_client: Optional pre-built httpx client (mainly for tests)

        Returns:
            The Mailbox/get result from the connection test

        Raises:
            JmapError: if discovery or the test request fails
        """
        await self.close()

        client = JmapClient(config, http_client=http_client)
        mailboxes = MailboxCache(client)
        try:
            result = await mailboxes.refresh()
        except Exception:
            await client.aclose()
            raise

        self.config = config
        self.client = client
        self.mailboxes = mailboxes
        self.mail_tools = MailTools(client, mailboxes)
        self.send_workflow = SendWorkflow(client, mailboxes, config)
        self.calendar_tools = CalendarTools(client)
        self.contact_tools = ContactTools(client)

        logger.info(f"Connected to JMAP server at {config.base_url} as {config.username}")
        return result

    async def initialize(self, config: Optional[JmapConfig]) -> bool:
        """
        Auto-connect at startup.

        Returns:
            True if connected; False leaves the service in the not-connected state
        """
        if config is None:
            logger.info("No JMAP configuration - waiting for connect_jmap")
            return False

        logger.info(f"Attempting connection to {config.base_url} as {config.username}")
        try:
            await self.connect(config)
        except JmapError as e:
            logger.error(f"Failed to auto-connect to JMAP server: {e}")
            return False
        return True

    def is_ready(self) -> bool:
        """Check if service is ready to handle requests."""
        return self.client is not None and self.mail_tools is not None

    async def close(self):
        """Close the client and drop all per-connection state."""
        if self.client:
            await self.client.aclose()
        self._reset()
