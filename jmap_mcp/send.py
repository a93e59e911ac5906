"""
Send workflow: create a draft, then submit it for delivery.

The two steps are separate batches. If submission fails the draft stays
on the server with its $draft keyword; nothing deletes it.
"""

import json
import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .errors import (
    CreateError,
    EndpointNotFoundError,
    ForbiddenError,
    RequestError,
    ResolutionError,
    SubmitError,
    UnauthorizedError,
    ValidationError,
    describe_set_error,
)

if TYPE_CHECKING:
    from .client import JmapClient
    from .config import JmapConfig
    from .mailboxes import MailboxCache

logger = logging.getLogger(__name__)


def choose_draft_mailbox(mailboxes: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Pick where the draft is stored.

    Order: role "drafts", a name containing "draft", the inbox or any
    mailbox we may add to, and finally the first mailbox.
    """
    for mb in mailboxes:
        if mb.get("role") == "drafts":
            return mb

    for mb in mailboxes:
        if "draft" in (mb.get("name") or "").lower():
            return mb

    for mb in mailboxes:
        rights = mb.get("myRights") or {}
        if mb.get("role") == "inbox":
            return mb
        if not mb.get("isReadOnly") and (rights.get("mayAddItems") or rights.get("mayCreateChild")):
            return mb

    return mailboxes[0] if mailboxes else None


def build_body(text_body: Optional[str], html_body: Optional[str]) -> Dict[str, Any]:
    """
    bodyStructure and bodyValues for a new email.

    Part ids are set without charset, which some servers reject in
    combination with partId.
    """
    if text_body and html_body:
        return {
            "bodyStructure": {
                "type": "multipart/alternative",
                "subParts": [
                    {"partId": "1", "type": "text/plain"},
                    {"partId": "2", "type": "text/html"},
                ],
            },
            "bodyValues": {
                "1": {"value": text_body},
                "2": {"value": html_body},
            },
        }
    if html_body:
        return {
            "bodyStructure": {"type": "text/html", "partId": "1"},
            "bodyValues": {"1": {"value": html_body}},
        }
    return {
        "bodyStructure": {"type": "text/plain", "partId": "1"},
        "bodyValues": {"1": {"value": text_body or ""}},
    }


def _addresses(values: Optional[List[str]]) -> List[Dict[str, str]]:
    return [{"email": v.strip()} for v in values or []]


def classify_request_error(exc: RequestError) -> RequestError:
    """Map a transport failure to a more specific error by status or message."""
    message = str(exc).lower()
    if exc.status == 404 or "not found" in message or "404" in message:
        cls, text = EndpointNotFoundError, "Email service endpoint not found. Please check your JMAP server configuration."
    elif exc.status == 401 or "unauthorized" in message or "401" in message:
        cls, text = UnauthorizedError, "Authentication failed. Please check your credentials."
    elif exc.status == 403 or "forbidden" in message or "403" in message:
        cls, text = ForbiddenError, "Insufficient permissions to send email. Please check your account permissions."
    else:
        return exc
    return cls(f"{text} ({exc})", status=exc.status, body=exc.body)


class SendWorkflow:
    """Two-phase Email/set + EmailSubmission/set send."""

    def __init__(self, client: "JmapClient", mailboxes: "MailboxCache", config: "JmapConfig"):
        self.client = client
        self.mailboxes = mailboxes
        self.config = config

    @staticmethod
    def validate(
        to: List[str],
        subject: str,
        text_body: Optional[str],
        html_body: Optional[str],
        sender: str,
        cc: Optional[List[str]] = None,
        bcc: Optional[List[str]] = None,
    ) -> None:
        """
        Check arguments before any network traffic.

        Raises:
            ValidationError: on missing recipients, subject or body, or an
                address without "@"
        """
        if not to:
            raise ValidationError("Recipients (to field) are required")
        if not subject:
            raise ValidationError("Subject is required")
        if not text_body and not html_body:
            raise ValidationError("Either textBody or htmlBody is required")

        for address in [sender, *to, *(cc or []), *(bcc or [])]:
            if "@" not in address:
                raise ValidationError(
                    f'Invalid email address: "{address}". '
                    f"Email addresses must be in the format user@domain.com"
                )

    async def send(
        self,
        to: List[str],
        subject: str,
        text_body: Optional[str] = None,
        html_body: Optional[str] = None,
        cc: Optional[List[str]] = None,
        bcc: Optional[List[str]] = None,
        in_reply_to: Optional[str] = None,
        references: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Create a draft and submit it.

        Args:
            to: Recipient addresses
            subject: Subject line
            text_body: Plain text body
            html_body: HTML body
            cc: CC addresses
            bcc: BCC addresses
            in_reply_to: Message-ID being replied to
            references: Message-IDs for the References header

        Returns:
            Dict with ``emailId``, ``submissionId`` and both raw set results

        Raises:
            ValidationError, ResolutionError, CreateError, SubmitError, RequestError
        """
        sender = self.config.sender_address
        self.validate(to, subject, text_body, html_body, sender, cc, bcc)
        logger.info(f"Sending email to {', '.join(to)} as {sender}")

        await self.mailboxes.ensure_loaded()
        target = choose_draft_mailbox(self.mailboxes.mailboxes)
        if not target:
            raise ResolutionError("No suitable mailbox found for creating draft email")
        logger.info(f"Using mailbox for draft: {target.get('name')} ({target['id']})")

        email: Dict[str, Any] = {
            "from": [{"email": sender}],
            "to": _addresses(to),
            "subject": subject,
            "keywords": {"$draft": True},
            "mailboxIds": {target["id"]: True},
        }
        if cc:
            email["cc"] = _addresses(cc)
        if bcc:
            email["bcc"] = _addresses(bcc)
        if in_reply_to:
            email["inReplyTo"] = [in_reply_to]
        if references:
            email["references"] = references
        email.update(build_body(text_body, html_body))

        try:
            create_result = await self._create_draft(email)
            draft_id = create_result["created"]["draft"]["id"]
            logger.info(f"Created draft with ID: {draft_id}")

            envelope = {
                "mailFrom": {"email": sender},
                "rcptTo": _addresses(to) + _addresses(cc) + _addresses(bcc),
            }
            submit_result = await self._submit(draft_id, envelope)
        except RequestError as e:
            raise classify_request_error(e) from e

        logger.info("Email sent successfully")
        return {
            "success": True,
            "emailId": draft_id,
            "submissionId": submit_result["created"]["send"]["id"],
            "createResponse": create_result,
            "submitResponse": submit_result,
            "message": f"Email sent successfully to {', '.join(to)}",
        }

    async def _create_draft(self, email: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug(f"Creating draft: {json.dumps(email, indent=2)}")
        result = await self.client.call("Email/set", {"create": {"draft": email}}, "createDraft")

        error = (result.get("notCreated") or {}).get("draft")
        if error:
            logger.error(f"Draft creation failed: {error}")
            raise CreateError(f"Failed to create draft: {describe_set_error(error)}")
        if not (result.get("created") or {}).get("draft"):
            logger.error(f"No draft created in response: {result}")
            raise CreateError("Draft creation failed - no created object returned")
        return result

    async def _submit(self, draft_id: str, envelope: Dict[str, Any]) -> Dict[str, Any]:
        session = await self.client.ensure_session()
        submission = {
            "emailId": draft_id,
            "identityId": self.config.identity_id or session.account_id,
            "envelope": envelope,
        }
        logger.debug(f"Submission: {json.dumps(submission, indent=2)}")
        result = await self.client.call("EmailSubmission/set", {"create": {"send": submission}}, "submitEmail")

        error = (result.get("notCreated") or {}).get("send")
        if error:
            logger.error(f"Email submission failed, draft {draft_id} left in place: {error}")
            raise SubmitError(
                f"Failed to send email: {describe_set_error(error)} "
                f"(draft {draft_id} was kept on the server)"
            )
        if not (result.get("created") or {}).get("send"):
            logger.error(f"No submission created in response: {result}")
            raise SubmitError(
                f"Email submission failed - no submission object returned "
                f"(draft {draft_id} was kept on the server)"
            )
        return result
