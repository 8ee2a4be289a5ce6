"""
Per-request authenticated HTTP clients.

``ClientFactory.open(user_id, provider_id)`` yields an
``AuthenticatedClient`` bound to one user + provider.  Every request asks the
``TokenRefresher`` for a valid token first, so a long-lived tool call never
sends a stale bearer.  Nothing here is module-global.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional

import httpx

from connectors.errors import ProviderHTTPError

if TYPE_CHECKING:
    from connectors.base import BaseConnector
    from connectors.registry import ConnectorRegistry
    from connectors.token_refresher import TokenRefresher

logger = logging.getLogger(__name__)

_COLLECTION_KEYS = ("values", "data", "items", "results")


class AuthenticatedClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        connector: "BaseConnector",
        user_id: str,
        refresher: "TokenRefresher",
    ):
        self._http = http
        self.connector = connector
        self.user_id = user_id
        self._refresher = refresher
        # Per-request memo for values several probes share (e.g. org id).
        self.memo: Dict[str, Any] = {}

    @property
    def provider_id(self) -> str:
        return self.connector.provider_name

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send an authenticated request and return the decoded body."""
        token = await self._refresher.ensure_valid(self.user_id, self.provider_id)
        headers = dict(kwargs.pop("headers", None) or {})
        headers.update(self.connector.auth_headers(token))
        params = dict(kwargs.pop("params", None) or {})
        params.update(self.connector.auth_params(token))
        if params:
            kwargs["params"] = params

        resp = await self._http.request(method, path, headers=headers, **kwargs)
        body = _decode(resp)

        if resp.status_code >= 400:
            logger.debug(
                "%s %s %s → %d", self.provider_id, method, path, resp.status_code,
            )
            raise ProviderHTTPError(resp.status_code, resp.headers, body, str(resp.request.url))

        payload_error = self.connector.payload_error(body)
        if payload_error:
            raise ProviderHTTPError(resp.status_code, resp.headers, body, str(resp.request.url))
        return body

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def get_collection(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Any]:
        """GET a collection; accepts a bare array or the usual wrapper keys."""
        body = await self.get_json(path, params=params)
        return extract_collection(body)


class ClientFactory:
    """Builds per-request ``AuthenticatedClient`` instances."""

    def __init__(self, registry: "ConnectorRegistry", refresher: "TokenRefresher"):
        self._registry = registry
        self._refresher = refresher

    @asynccontextmanager
    async def open(self, user_id: str, provider_id: str) -> AsyncIterator[AuthenticatedClient]:
        connector = self._registry.require(provider_id)
        async with connector.http_client(
            base_url=connector.api_base_url,
            headers=connector.default_headers,
        ) as http:
            client = AuthenticatedClient(http, connector, user_id, self._refresher)
            try:
                yield client
            finally:
                # Shared lookups still running would outlive the http client.
                for value in client.memo.values():
                    if isinstance(value, asyncio.Future) and not value.done():
                        value.cancel()


def extract_collection(body: Any) -> List[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in _COLLECTION_KEYS:
            value = body.get(key)
            if isinstance(value, list):
                return value
        return []
    return []


def _decode(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text
