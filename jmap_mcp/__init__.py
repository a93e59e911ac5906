"""JMAP MCP server: email, calendar and contacts tools over JMAP."""

__version__ = "0.2.0"
