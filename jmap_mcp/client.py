"""
JMAP Client - session discovery and batched method calls.

Provides the single transport used by the mail, calendar and contact tools:
one POST per batch to the session's apiUrl, responses returned positionally.
"""

import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .config import JmapConfig
from .errors import DiscoveryError, MethodError, RequestError

logger = logging.getLogger(__name__)

CORE_CAPABILITY = "urn:ietf:params:jmap:core"
MAIL_CAPABILITY = "urn:ietf:params:jmap:mail"
SUBMISSION_CAPABILITY = "urn:ietf:params:jmap:submission"
CALENDARS_CAPABILITY = "urn:ietf:params:jmap:calendars"
CONTACTS_CAPABILITY = "urn:ietf:params:jmap:contacts"

CAPABILITIES = [
    CORE_CAPABILITY,
    MAIL_CAPABILITY,
    SUBMISSION_CAPABILITY,
    CALENDARS_CAPABILITY,
    CONTACTS_CAPABILITY,
]

DISCOVERY_PATH = "/.well-known/jmap"

# Probed after a failed discovery, for the log only
ALTERNATIVE_DISCOVERY_PATHS = [
    "/jmap",
    "/jmap/session",
    "/.well-known/jmap-session",
]

MethodCall = List[Any]


@dataclass(frozen=True)
class JmapSession:
    """Per-account session resolved from the discovery document."""

    account_id: str
    api_url: str
    download_url: str = ""
    upload_url: str = ""
    event_source_url: str = ""
    state: str = ""
    capabilities: Dict[str, Any] = field(default_factory=dict)


def back_reference(tag: str, method: str, path: str = "/ids") -> Dict[str, str]:
    """Result reference to a field of an earlier call in the same batch."""
    return {"resultOf": tag, "name": method, "path": path}


def check_back_references(method_calls: List[MethodCall]) -> None:
    """
    Reject batches whose back-references point at unknown or later calls.

    Raises:
        ValueError: if a ``#``-prefixed argument names a tag not seen earlier
    """
    seen = set()
    for method, params, tag in method_calls:
        for key, value in params.items():
            if not key.startswith("#"):
                continue
            ref = value.get("resultOf") if isinstance(value, dict) else None
            if ref not in seen:
                raise ValueError(
                    f"{method} argument {key!r} references call {ref!r} "
                    f"which does not appear earlier in the batch"
                )
        seen.add(tag)


class JmapClient:
    """
    Async JMAP client for one account.

    The session is discovered on first use and reused until a new client is
    created. Not safe for concurrent use: calls on one instance must be
    awaited one at a time.
    """

    def __init__(self, config: JmapConfig, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the client.

        Args:
            config: Credentials and base URL
            http_client: Optional pre-built httpx client (mainly for tests)
        """
        self.config = config
        self._client = http_client or httpx.AsyncClient(timeout=config.timeout)
        self._auth_token: Optional[str] = None
        self.session: Optional[JmapSession] = None

    @property
    def account_id(self) -> Optional[str]:
        return self.session.account_id if self.session else None

    def _basic_token(self) -> str:
        raw = f"{self.config.username}:{self.config.password}".encode("utf-8")
        return base64.b64encode(raw).decode("ascii")

    def _headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Basic {token}",
            "Content-Type": "application/json",
        }

    async def get_session(self) -> JmapSession:
        """
        Fetch and store the JMAP session from the discovery document.

        Returns:
            The resolved JmapSession

        Raises:
            DiscoveryError: if discovery fails or yields no usable account
        """
        token = self._basic_token()
        session_url = f"{self.config.base_url}{DISCOVERY_PATH}"
        logger.info(f"Getting JMAP session from: {session_url}")

        try:
            response = await self._client.get(session_url, headers=self._headers(token))
        except httpx.HTTPError as e:
            raise DiscoveryError(f"JMAP discovery failed: {e}") from e

        logger.info(f"JMAP discovery response status: {response.status_code}")

        if not response.is_success:
            body = response.text
            logger.error(f"JMAP discovery failed: {response.status_code} {response.reason_phrase}")
            logger.error(f"Response body: {body}")
            await self._probe_alternatives(token)
            raise DiscoveryError(
                f"JMAP discovery failed: {response.status_code} {response.reason_phrase}. Response: {body}",
                status=response.status_code,
                body=body,
            )

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise DiscoveryError(
                f"JMAP discovery returned invalid JSON: {e}",
                status=response.status_code,
                body=response.text,
            ) from e

        logger.debug(f"Session data received: {json.dumps(data, indent=2)}")

        account_id = self._select_account_id(data)
        if not account_id:
            raise DiscoveryError(
                "JMAP discovery document lists no accounts",
                status=response.status_code,
                body=response.text,
            )
        if not data.get("apiUrl"):
            raise DiscoveryError(
                "JMAP discovery document has no apiUrl",
                status=response.status_code,
                body=response.text,
            )

        self._auth_token = token
        self.session = JmapSession(
            account_id=account_id,
            api_url=data["apiUrl"],
            download_url=data.get("downloadUrl", ""),
            upload_url=data.get("uploadUrl", ""),
            event_source_url=data.get("eventSourceUrl", ""),
            state=data.get("state", ""),
            capabilities=data.get("capabilities", {}),
        )

        logger.info(f"Using account ID: {self.session.account_id}")
        logger.info(f"API URL: {self.session.api_url}")
        return self.session

    def _select_account_id(self, data: Dict[str, Any]) -> Optional[str]:
        """Explicit override, then the primary mail account, then the first account."""
        if self.config.account_id:
            return self.config.account_id
        primary = (data.get("primaryAccounts") or {}).get(MAIL_CAPABILITY)
        if primary:
            return primary
        accounts = data.get("accounts") or {}
        return next(iter(accounts), None)

    async def _probe_alternatives(self, token: str) -> None:
        """Try well-known alternative discovery paths and log what answers."""
        for path in ALTERNATIVE_DISCOVERY_PATHS:
            alt_url = f"{self.config.base_url}{path}"
            logger.info(f"Trying alternative endpoint: {alt_url}")
            try:
                alt_response = await self._client.get(alt_url, headers=self._headers(token))
            except httpx.HTTPError as e:
                logger.warning(f"Alternative endpoint {alt_url} unreachable: {e}")
                continue
            if alt_response.is_success:
                logger.info(f"Alternative endpoint answered: {alt_url} (server may be misconfigured)")
                break
            logger.info(f"Alternative endpoint failed: {alt_response.status_code}")

    async def ensure_session(self) -> JmapSession:
        """Return the stored session, discovering it on first use."""
        if self.session is None:
            await self.get_session()
        return self.session

    async def request(self, method_calls: List[MethodCall]) -> List[MethodCall]:
        """
        Send method calls as one JMAP batch.

        Args:
            method_calls: ``[method, params, tag]`` triples in execution order

        Returns:
            The ``methodResponses`` list; response N answers call N

        Raises:
            ValueError: on a back-reference to an unknown or later call
            RequestError: on transport failure or non-2xx status
        """
        check_back_references(method_calls)
        await self.ensure_session()

        payload = {"using": CAPABILITIES, "methodCalls": method_calls}
        logger.info(f"Making JMAP request to: {self.session.api_url}")
        logger.debug(f"Method calls: {json.dumps(method_calls, indent=2)}")

        try:
            response = await self._client.post(
                self.session.api_url,
                headers=self._headers(self._auth_token),
                json=payload,
            )
        except httpx.HTTPError as e:
            raise RequestError(f"JMAP request failed: {e}") from e

        if not response.is_success:
            body = response.text
            logger.error(f"JMAP request failed: {response.status_code} {response.reason_phrase}")
            logger.error(f"Response body: {body}")
            raise RequestError(
                f"JMAP request failed: {response.status_code} {response.reason_phrase}. Response: {body}",
                status=response.status_code,
                body=body,
            )

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise RequestError(
                f"JMAP response was not valid JSON: {e}",
                status=response.status_code,
                body=response.text,
            ) from e

        logger.debug(f"JMAP response: {json.dumps(data, indent=2)}")
        return data.get("methodResponses", [])

    async def call(self, method: str, params: Dict[str, Any], tag: str) -> Dict[str, Any]:
        """
        Run a single method call and return its result object.

        The accountId is filled in from the session.

        Raises:
            MethodError: if the server answered with an ``error`` response
        """
        session = await self.ensure_session()
        responses = await self.request([[method, {"accountId": session.account_id, **params}, tag]])
        return self.result_of(responses, 0, method)

    @staticmethod
    def result_of(responses: List[MethodCall], index: int, method: str) -> Dict[str, Any]:
        """Pick the result at ``index``, raising MethodError for error responses."""
        if index >= len(responses):
            raise RequestError(f"JMAP response is missing the {method} result")
        name, result, _tag = responses[index]
        if name == "error":
            raise MethodError(method, result)
        return result

    async def aclose(self) -> None:
        """Close the underlying httpx client."""
        await self._client.aclose()
