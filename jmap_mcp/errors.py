"""
JMAP error taxonomy.

Every failure raised by the client layer derives from JmapError so the
MCP tool shell can wrap it uniformly.
"""

from typing import Optional


class JmapError(Exception):
    """Base class for all JMAP client failures."""


class DiscoveryError(JmapError):
    """Session bootstrap via the discovery document failed."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class RequestError(JmapError):
    """A batch request to the API endpoint failed at the HTTP level."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class EndpointNotFoundError(RequestError):
    """The JMAP endpoint answered 404."""


class UnauthorizedError(RequestError):
    """The JMAP endpoint rejected our credentials (401)."""


class ForbiddenError(RequestError):
    """The account lacks permission for the operation (403)."""


class MethodError(JmapError):
    """A single method call in a batch came back as an ``error`` response."""

    def __init__(self, method: str, error: dict):
        self.method = method
        self.error_type = error.get("type", "unknown")
        self.description = error.get("description", "")
        message = f"{method} failed: {self.error_type}"
        if self.description:
            message += f" - {self.description}"
        super().__init__(message)


class ResolutionError(JmapError):
    """A mailbox label could not be mapped to a server identifier."""


class ValidationError(JmapError):
    """Tool arguments are missing or malformed; raised before any network call."""


class CreateError(JmapError):
    """The server rejected or omitted creation of an object."""


class SubmitError(JmapError):
    """The server rejected or omitted creation of an EmailSubmission."""


class UpdateError(JmapError):
    """The server rejected an update of an existing object."""


def describe_set_error(error: dict) -> str:
    """Render a JMAP SetError as ``type - description``."""
    description = error.get("description")
    if not description:
        description = str(error)
    return f"{error.get('type', 'Unknown error')} - {description}"
