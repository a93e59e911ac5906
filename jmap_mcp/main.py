#!/usr/bin/env python3
"""
JMAP MCP Server - email, calendar and contacts over JMAP.

This is the main entry point for the JMAP MCP server that exposes a JMAP
account (RFC 8620/8621 plus calendars and contacts) as FastMCP tools.
"""

import argparse
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional, Union

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from .config import JmapConfig, load_config
from .service import NOT_CONNECTED_MESSAGE, JmapService

logger = logging.getLogger(__name__)

SERVER_NAME = "jmap-mail-server"

INSTRUCTIONS = (
    "Tools for a JMAP mail, calendar and contacts account. "
    "Mailboxes can be addressed by id (mailbox_id) or by name such as 'Inbox' (mailbox_name)."
)

ToolResult = Union[Dict[str, Any], str]


def tool_failure(exc: Exception) -> ToolError:
    """Wrap any failure into the single error shape returned to MCP clients."""
    logger.error(f"Tool execution failed: {exc}")
    return ToolError(f"Tool execution failed: {exc}")


def build_tools(service: JmapService) -> List[Callable]:
    """Create the MCP tool functions bound to ``service``."""

    # === Connection ===

    async def connect_jmap(
        base_url: str,
        username: str,
        password: str,
        account_id: Optional[str] = None,
    ) -> str:
        """
        Connect to a JMAP mail server.

        Args:
            base_url: Base URL of the JMAP server (e.g., https://mail.example.com)
            username: Username/email for authentication
            password: Password for authentication
            account_id: Optional account ID (default: primary mail account)

        Returns:
            Confirmation message
        """
        try:
            config = JmapConfig(
                base_url=base_url,
                username=username,
                password=password,
                account_id=account_id,
            )
            await service.connect(config)
        except Exception as e:
            raise tool_failure(e) from e
        return f"Successfully connected to JMAP server at {config.base_url}"

    # === Mail ===

    async def get_mailboxes() -> ToolResult:
        """
        Get all mailboxes from the mail server.

        Also refreshes the cache used to resolve mailbox names.
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.mail_tools.list_mailboxes()
        except Exception as e:
            raise tool_failure(e) from e

    async def refresh_mailboxes() -> ToolResult:
        """
        Re-fetch the mailbox list used for name resolution.

        Use after mailboxes were created, renamed or deleted elsewhere.
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            await service.mailboxes.refresh()
        except Exception as e:
            raise tool_failure(e) from e
        return {
            "mailboxes": service.mailboxes.names(),
            "fetchedAt": service.mailboxes.fetched_at.isoformat(),
        }

    async def get_emails(
        mailbox_id: Optional[str] = None,
        mailbox_name: Optional[str] = None,
        limit: int = 50,
    ) -> ToolResult:
        """
        Get emails from a mailbox, newest first.

        Args:
            mailbox_id: Mailbox ID as returned by get_mailboxes
            mailbox_name: Mailbox name or role (e.g., "Inbox", "Sent", "spam")
            limit: Maximum number of emails to retrieve (default: 50)

        Without a mailbox, emails from all mailboxes are returned.
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.mail_tools.list_emails(mailbox_id, mailbox_name, limit)
        except Exception as e:
            raise tool_failure(e) from e

    async def get_email_by_id(email_id: str) -> ToolResult:
        """
        Get a specific email by its ID, including text and HTML bodies.

        Args:
            email_id: Email ID
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.mail_tools.get_email(email_id)
        except Exception as e:
            raise tool_failure(e) from e

    async def search_emails(
        query: str,
        limit: int = 20,
        mailbox_id: Optional[str] = None,
        mailbox_name: Optional[str] = None,
    ) -> ToolResult:
        """
        Search emails by text query.

        Args:
            query: Search query
            limit: Maximum number of results (default: 20)
            mailbox_id: Search within this mailbox ID (optional)
            mailbox_name: Search within the mailbox with this name (optional)
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.mail_tools.search_emails(query, limit, mailbox_id, mailbox_name)
        except Exception as e:
            raise tool_failure(e) from e

    async def send_email(
        to: List[str],
        subject: str,
        text_body: Optional[str] = None,
        html_body: Optional[str] = None,
        cc: Optional[List[str]] = None,
        bcc: Optional[List[str]] = None,
        in_reply_to: Optional[str] = None,
        references: Optional[List[str]] = None,
    ) -> ToolResult:
        """
        Send an email.

        The message is first saved as a draft, then submitted. If submission
        fails the draft remains in the drafts mailbox.

        Args:
            to: Recipient email addresses
            subject: Email subject
            text_body: Plain text body
            html_body: HTML body
            cc: CC recipients
            bcc: BCC recipients
            in_reply_to: Message ID this is replying to
            references: Reference message IDs
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.send_workflow.send(
                to, subject, text_body, html_body, cc, bcc, in_reply_to, references
            )
        except Exception as e:
            raise tool_failure(e) from e

    async def mark_as_read(email_ids: List[str]) -> ToolResult:
        """
        Mark emails as read.

        Args:
            email_ids: Email IDs to mark as read
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            result = await service.mail_tools.mark_as_read(email_ids)
        except Exception as e:
            raise tool_failure(e) from e
        return {"message": f"Marked {len(email_ids)} emails as read", "result": result}

    async def mark_as_unread(email_ids: List[str]) -> ToolResult:
        """
        Mark emails as unread.

        Args:
            email_ids: Email IDs to mark as unread
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            result = await service.mail_tools.mark_as_unread(email_ids)
        except Exception as e:
            raise tool_failure(e) from e
        return {"message": f"Marked {len(email_ids)} emails as unread", "result": result}

    async def delete_emails(email_ids: List[str]) -> ToolResult:
        """
        Delete emails by setting the $deleted flag.

        Whether flagged emails are hidden or expunged is decided by the server.

        Args:
            email_ids: Email IDs to delete
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            result = await service.mail_tools.delete_emails(email_ids)
        except Exception as e:
            raise tool_failure(e) from e
        return {"message": f"Deleted {len(email_ids)} emails", "result": result}

    async def move_emails(
        email_ids: List[str],
        mailbox_id: Optional[str] = None,
        mailbox_name: Optional[str] = None,
    ) -> ToolResult:
        """
        Move emails into a single mailbox (e.g., "Trash" or "Archive").

        Args:
            email_ids: Email IDs to move
            mailbox_id: Target mailbox ID
            mailbox_name: Target mailbox name or role
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            result = await service.mail_tools.move_emails(email_ids, mailbox_id, mailbox_name)
        except Exception as e:
            raise tool_failure(e) from e
        return {"message": f"Moved {len(email_ids)} emails", "result": result}

    # === Calendar ===

    async def list_calendars() -> ToolResult:
        """Get all calendars of the account."""
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.calendar_tools.list_calendars()
        except Exception as e:
            raise tool_failure(e) from e

    async def list_calendar_events(
        calendar_id: Optional[str] = None,
        after: Optional[str] = None,
        before: Optional[str] = None,
        limit: int = 50,
    ) -> ToolResult:
        """
        List calendar events, earliest first.

        Args:
            calendar_id: Only events from this calendar (optional)
            after: Only events ending after this time (ISO format, optional)
            before: Only events starting before this time (ISO format, optional)
            limit: Maximum number of events to return (default: 50)
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.calendar_tools.list_events(calendar_id, after, before, limit)
        except Exception as e:
            raise tool_failure(e) from e

    async def get_calendar_event(event_id: str) -> ToolResult:
        """
        Get a calendar event by its ID.

        Args:
            event_id: Event ID
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.calendar_tools.get_event(event_id)
        except Exception as e:
            raise tool_failure(e) from e

    async def create_calendar_event(
        calendar_id: str,
        title: str,
        start: str,
        duration: str = "PT1H",
        time_zone: Optional[str] = None,
        description: str = "",
        location: str = "",
        participants: Optional[List[Dict[str, Any]]] = None,
    ) -> ToolResult:
        """
        Create a new calendar event.

        Args:
            calendar_id: Calendar ID from list_calendars
            title: Event title
            start: Event start time (ISO format: 2025-06-06T10:00:00)
            duration: ISO 8601 duration (default: PT1H)
            time_zone: IANA time zone such as Europe/Berlin (optional)
            description: Event description (optional)
            location: Event location (optional)
            participants: Participants as objects with at least "email" (optional)
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.calendar_tools.create_event(
                calendar_id, title, start, duration, time_zone, description, location, participants
            )
        except Exception as e:
            raise tool_failure(e) from e

    async def update_calendar_event(
        event_id: str,
        title: Optional[str] = None,
        start: Optional[str] = None,
        duration: Optional[str] = None,
        time_zone: Optional[str] = None,
        description: Optional[str] = None,
        location: Optional[str] = None,
    ) -> ToolResult:
        """
        Update an existing calendar event. Only provided fields change.

        Args:
            event_id: The ID of the event to update
            title: New title (optional)
            start: New start time (optional)
            duration: New duration (optional)
            time_zone: New time zone (optional)
            description: New description (optional)
            location: New location (optional)
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.calendar_tools.update_event(
                event_id, title, start, duration, time_zone, description, location
            )
        except Exception as e:
            raise tool_failure(e) from e

    async def delete_calendar_events(event_ids: List[str]) -> ToolResult:
        """
        Delete calendar events by ID.

        Args:
            event_ids: Event IDs to delete
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.calendar_tools.delete_events(event_ids)
        except Exception as e:
            raise tool_failure(e) from e

    # === Contacts ===

    async def list_address_books() -> ToolResult:
        """Get all address books of the account."""
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.contact_tools.list_address_books()
        except Exception as e:
            raise tool_failure(e) from e

    async def list_contacts(address_book_id: Optional[str] = None, limit: int = 50) -> ToolResult:
        """
        List contacts.

        Args:
            address_book_id: Only contacts from this address book (optional)
            limit: Maximum number of contacts (default: 50)
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.contact_tools.list_contacts(address_book_id, limit)
        except Exception as e:
            raise tool_failure(e) from e

    async def search_contacts(query: str, limit: int = 20) -> ToolResult:
        """
        Search contacts by name, email, phone or address.

        Args:
            query: Search query
            limit: Maximum number of results (default: 20)
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.contact_tools.search_contacts(query, limit)
        except Exception as e:
            raise tool_failure(e) from e

    async def get_contact(contact_id: str) -> ToolResult:
        """
        Get a contact by its ID.

        Args:
            contact_id: Contact ID
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.contact_tools.get_contact(contact_id)
        except Exception as e:
            raise tool_failure(e) from e

    async def create_contact(
        address_book_id: str,
        full_name: str,
        emails: Optional[List[Union[str, Dict[str, Any]]]] = None,
        phones: Optional[List[Union[str, Dict[str, Any]]]] = None,
        addresses: Optional[List[Union[str, Dict[str, Any]]]] = None,
        organization: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ToolResult:
        """
        Create a new contact.

        Args:
            address_book_id: Address book ID from list_address_books
            full_name: Full display name
            emails: Email addresses (strings or JSContact EmailAddress objects)
            phones: Phone numbers (strings or JSContact Phone objects)
            addresses: Postal addresses (strings or JSContact Address objects)
            organization: Company name (optional)
            notes: Free-form notes (optional)
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.contact_tools.create_contact(
                address_book_id, full_name, emails, phones, addresses, organization, notes
            )
        except Exception as e:
            raise tool_failure(e) from e

    async def update_contact(
        contact_id: str,
        full_name: Optional[str] = None,
        emails: Optional[List[Union[str, Dict[str, Any]]]] = None,
        phones: Optional[List[Union[str, Dict[str, Any]]]] = None,
        addresses: Optional[List[Union[str, Dict[str, Any]]]] = None,
        organization: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ToolResult:
        """
        Update a contact. Provided lists replace the existing ones.

        Args:
            contact_id: The ID of the contact to update
            full_name: New full name (optional)
            emails: New email addresses (optional)
            phones: New phone numbers (optional)
            addresses: New postal addresses (optional)
            organization: New company name (optional)
            notes: New notes (optional)
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.contact_tools.update_contact(
                contact_id, full_name, emails, phones, addresses, organization, notes
            )
        except Exception as e:
            raise tool_failure(e) from e

    async def delete_contacts(contact_ids: List[str]) -> ToolResult:
        """
        Delete contacts by ID.

        Args:
            contact_ids: Contact IDs to delete
        """
        if not service.is_ready():
            return NOT_CONNECTED_MESSAGE
        try:
            return await service.contact_tools.delete_contacts(contact_ids)
        except Exception as e:
            raise tool_failure(e) from e

    return [
        connect_jmap,
        get_mailboxes,
        refresh_mailboxes,
        get_emails,
        get_email_by_id,
        search_emails,
        send_email,
        mark_as_read,
        mark_as_unread,
        delete_emails,
        move_emails,
        list_calendars,
        list_calendar_events,
        get_calendar_event,
        create_calendar_event,
        update_calendar_event,
        delete_calendar_events,
        list_address_books,
        list_contacts,
        search_contacts,
        get_contact,
        create_contact,
        update_contact,
        delete_contacts,
    ]


def create_server(service: JmapService, config: Optional[JmapConfig] = None) -> FastMCP:
    """
    Build the FastMCP server.

    The service auto-connects with ``config`` when the server starts and is
    closed when it stops.
    """

    @asynccontextmanager
    async def lifespan(server):
        await service.initialize(config)
        try:
            yield
        finally:
            await service.close()

    mcp = FastMCP(name=SERVER_NAME, instructions=INSTRUCTIONS, lifespan=lifespan)
    for fn in build_tools(service):
        logger.debug(f"Registering MCP tool: {fn.__name__}")
        mcp.tool(fn)
    return mcp


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="JMAP Mail/Calendar/Contacts FastMCP Server")
    parser.add_argument("--transport", choices=["stdio", "streamable-http"], default="stdio",
                        help="MCP transport (default: stdio)")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind the HTTP server to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind the HTTP server to")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")

    args = parser.parse_args(argv)

    # stdout carries the stdio JSON-RPC stream
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    service = JmapService()
    mcp = create_server(service, load_config())

    if args.transport == "stdio":
        logger.info("JMAP MCP server running on stdio")
        mcp.run(transport="stdio")
    else:
        logger.info(f"Starting JMAP MCP server on http://{args.host}:{args.port}/mcp")
        mcp.run(transport="streamable-http", host=args.host, port=args.port, path="/mcp")


if __name__ == "__main__":
    main()
