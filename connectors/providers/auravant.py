"""
AuravantConnector — bearer-token connector for Auravant.

Auravant issues extension tokens out of band; the user pastes the token and
``exchange_code`` validates it with a read call.  Tokens carry no expiry or
refresh token, so a configurable TTL stands in for ``expires_in`` and the
credential is dropped once it lapses.

Auravant reports some failures inside HTTP 200 bodies as
``{"code": <non-zero>, "msg": "..."}``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from connectors.base import BaseConnector
from connectors.classifier import ErrorClassifier
from connectors.client import AuthenticatedClient, extract_collection
from connectors.errors import TokenExchangeError
from connectors.models import ProbeEndpoint, TokenGrant

logger = logging.getLogger(__name__)


class AuravantErrorClassifier(ErrorClassifier):
    def extract_message(self, payload: Any) -> str:
        if isinstance(payload, dict) and payload.get("msg"):
            return str(payload["msg"])
        return super().extract_message(payload)


class AuravantConnector(BaseConnector):
    """Extension-token connector for Auravant."""

    def __init__(self, *, api_base_url: str, token_ttl_seconds: int = 2592000, **kwargs: Any):
        super().__init__(**kwargs)
        self._api_base_url = api_base_url.rstrip("/")
        self._token_ttl_seconds = token_ttl_seconds

    @property
    def provider_name(self) -> str:
        return "auravant"

    @property
    def display_name(self) -> str:
        return "Auravant"

    @property
    def icon(self) -> str:
        return "🌱"

    @property
    def api_base_url(self) -> str:
        return self._api_base_url

    def error_classifier(self) -> ErrorClassifier:
        return AuravantErrorClassifier(self._transient_statuses)

    def payload_error(self, body: Any) -> Optional[str]:
        if isinstance(body, dict) and body.get("code") not in (None, 0):
            return str(body.get("msg") or f"Auravant error code {body['code']}")
        return None

    def probe_endpoints(self) -> List[ProbeEndpoint]:
        return [
            ProbeEndpoint(name="fields", invoke=_collection("/fields")),
            ProbeEndpoint(name="farms", invoke=_collection("/farms")),
            ProbeEndpoint(name="herds", invoke=_collection("/livestock/herd")),
            ProbeEndpoint(name="work_orders", invoke=_collection("/work_orders")),
        ]

    async def exchange_code(self, code: str) -> TokenGrant:
        """Validate a user-supplied bearer token with a read call."""
        token = code.strip()
        async with self.http_client(base_url=self.api_base_url) as client:
            resp = await client.get(
                "/fields",
                headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
            )

        body: Any
        try:
            body = resp.json()
        except ValueError:
            body = resp.text

        error = self.payload_error(body)
        if resp.status_code >= 400 or error:
            raise TokenExchangeError(
                resp.status_code,
                body,
                f"Invalid Auravant credentials: {error or resp.reason_phrase}",
            )

        logger.info("Auravant token validated (%d fields visible)", len(extract_collection(body)))
        return TokenGrant(access_token=token, expires_in=self._token_ttl_seconds)

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        raise TokenExchangeError(400, None, "Auravant tokens cannot be refreshed; reconnect with a new token")


def _collection(path: str):
    async def invoke(client: AuthenticatedClient) -> List[Any]:
        return await client.get_collection(path)

    return invoke
