"""
SatshotConnector — session-token connector for Satshot's XML-RPC API.

The user supplies ``username:password``; ``exchange_code`` calls ``login``
to obtain a session token and validates it with ``get_my_user_info``.
Sessions carry no expiry or refresh token, so a configurable TTL stands in
for ``expires_in``.

Every call is a POST to ``/xmlrpc.php`` with the session token in the
``idtoken`` query parameter.  Failures arrive as XML-RPC faults inside
HTTP 200 responses.
"""

from __future__ import annotations

import logging
import xmlrpc.client
from typing import Any, Dict, List, Optional
from xml.parsers.expat import ExpatError

from connectors.base import BaseConnector
from connectors.classifier import ErrorClassifier
from connectors.client import AuthenticatedClient
from connectors.errors import TokenExchangeError
from connectors.models import ProbeEndpoint, TokenGrant

logger = logging.getLogger(__name__)

SATSHOT_SERVERS: Dict[str, str] = {
    "us": "https://us.satshot.com",
    "ca": "https://ca.satshot.com",
    "mexico": "https://mexico.satshot.com",
}
XMLRPC_PATH = "/xmlrpc.php"
_XML_HEADERS = {"Content-Type": "text/xml", "Accept": "text/xml"}

# Fault strings that mean the session itself is gone.
_SESSION_MARKERS = ("session", "not logged in", "login", "authentication")


def parse_fault(body: Any) -> Optional[xmlrpc.client.Fault]:
    """Return the fault carried by an XML-RPC response body, if any."""
    if not isinstance(body, str) or "<fault>" not in body:
        return None
    try:
        xmlrpc.client.loads(body)
    except xmlrpc.client.Fault as fault:
        return fault
    except ExpatError:
        logger.debug("Satshot fault body is not well-formed XML")
    return None


class SatshotErrorClassifier(ErrorClassifier):
    scope_markers = ()
    connection_markers = ()

    def is_unauthorized(self, http_status: int, payload: Any) -> bool:
        if super().is_unauthorized(http_status, payload):
            return True
        fault = parse_fault(payload)
        if fault is None:
            return False
        if fault.faultCode in (401, 403):
            return True
        text = str(fault.faultString).lower()
        return any(marker in text for marker in _SESSION_MARKERS)

    def extract_message(self, payload: Any) -> str:
        fault = parse_fault(payload)
        if fault is not None:
            return str(fault.faultString)
        return super().extract_message(payload)


class SatshotConnector(BaseConnector):
    """Username/password session connector for Satshot."""

    def __init__(self, *, server: str = "us", session_ttl_seconds: int = 86400, **kwargs: Any):
        super().__init__(**kwargs)
        if server not in SATSHOT_SERVERS:
            raise ValueError(f"Unknown Satshot server '{server}' (expected one of {sorted(SATSHOT_SERVERS)})")
        self.server = server
        self._session_ttl_seconds = session_ttl_seconds

    @property
    def provider_name(self) -> str:
        return "satshot"

    @property
    def display_name(self) -> str:
        return "Satshot"

    @property
    def icon(self) -> str:
        return "🛰️"

    @property
    def api_base_url(self) -> str:
        return SATSHOT_SERVERS[self.server]

    @property
    def default_headers(self) -> Dict[str, str]:
        return dict(_XML_HEADERS)

    def auth_headers(self, token: str) -> Dict[str, str]:
        return {}

    def auth_params(self, token: str) -> Dict[str, str]:
        return {"idtoken": token}

    def error_classifier(self) -> ErrorClassifier:
        return SatshotErrorClassifier(self._transient_statuses)

    def payload_error(self, body: Any) -> Optional[str]:
        fault = parse_fault(body)
        if fault is not None:
            return f"Satshot fault {fault.faultCode}: {fault.faultString}"
        return None

    def probe_endpoints(self) -> List[ProbeEndpoint]:
        return [
            ProbeEndpoint(name="account", invoke=_account),
            ProbeEndpoint(name="maps", invoke=_collection("get_visible_maps")),
            ProbeEndpoint(name="regions", invoke=_collection("mapcenter_api.get_regions")),
        ]

    # ── Token contract ──────────────────────────────────────────────────

    async def exchange_code(self, code: str) -> TokenGrant:
        """Log in with ``username:password`` and validate the session."""
        username, sep, password = code.partition(":")
        if not sep or not username.strip() or not password:
            raise TokenExchangeError(400, None, "Satshot credentials must be given as 'username:password'")

        token = await self._call("login", username.strip(), password)
        if not isinstance(token, str) or not token:
            raise TokenExchangeError(200, token, "Satshot login did not return a session token")

        await self._call("get_my_user_info", token=token)
        logger.info("Satshot session validated for %s on %s server", username.strip(), self.server)
        return TokenGrant(access_token=token, expires_in=self._session_ttl_seconds)

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        raise TokenExchangeError(400, None, "Satshot sessions cannot be refreshed; log in again")

    async def revoke_token(self, access_token: str) -> bool:
        try:
            await self._call("logout", token=access_token)
        except TokenExchangeError as exc:
            logger.info("Satshot logout rejected: %s", exc)
            return False
        return True

    async def _call(self, method: str, *params: Any, token: Optional[str] = None) -> Any:
        """XML-RPC call for the token contract, outside the refresher."""
        async with self.http_client(base_url=self.api_base_url) as client:
            resp = await client.post(
                XMLRPC_PATH,
                content=xmlrpc.client.dumps(params, method),
                params=self.auth_params(token) if token else None,
                headers=_XML_HEADERS,
            )

        if resp.status_code >= 400:
            raise TokenExchangeError(
                resp.status_code, resp.text, f"Satshot {method} returned HTTP {resp.status_code}",
            )
        try:
            return decode_response(resp.text)
        except xmlrpc.client.Fault as fault:
            raise TokenExchangeError(
                resp.status_code, resp.text, f"Satshot {method} rejected: {fault.faultString}",
            ) from fault
        except ExpatError as exc:
            raise TokenExchangeError(resp.status_code, resp.text, f"Satshot {method} response is not XML-RPC") from exc


def decode_response(body: str) -> Any:
    """First value of an XML-RPC method response; raises ``Fault``."""
    values, _ = xmlrpc.client.loads(body)
    return values[0] if values else None


async def call_method(client: AuthenticatedClient, method: str, *params: Any) -> Any:
    """Authenticated XML-RPC call through the shared client."""
    body = await client.request("POST", XMLRPC_PATH, content=xmlrpc.client.dumps(params, method))
    if not isinstance(body, str):
        return None
    return decode_response(body)


def _as_items(result: Any) -> List[Any]:
    if isinstance(result, list):
        return result
    if isinstance(result, dict):
        return list(result.values())
    if result in (None, "", False):
        return []
    return [result]


async def _account(client: AuthenticatedClient) -> List[Any]:
    info = await call_method(client, "get_my_user_info")
    return [info] if info else []


def _collection(method: str):
    async def invoke(client: AuthenticatedClient) -> List[Any]:
        return _as_items(await call_method(client, method))

    return invoke
