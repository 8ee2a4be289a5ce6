"""
BaseConnector — abstract interface for every farm-data provider.

A connector is the provider-specific collaborator of the lifecycle
components: it knows the token contract (exchange / refresh / revoke), the
API base URL, which read-only endpoints prove access, and how the
provider phrases its errors.  It holds configuration only — HTTP clients
are opened per call, never kept on the instance.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

import httpx

from connectors.classifier import DEFAULT_TRANSIENT_STATUSES, ErrorClassifier
from connectors.errors import TokenExchangeError
from connectors.models import ProbeEndpoint, TokenGrant

logger = logging.getLogger(__name__)


class BaseConnector(ABC):
    """Abstract base for all provider connectors."""

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
        transient_statuses: Iterable[int] = DEFAULT_TRANSIENT_STATUSES,
    ):
        self._transport = transport
        self._timeout = timeout
        self._transient_statuses = frozenset(transient_statuses)

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'johndeere', 'auravant'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable: 'John Deere Operations Center', 'Auravant'."""
        ...

    @property
    def scopes(self) -> List[str]:
        """Permission grants requested from the provider."""
        return []

    @property
    def icon(self) -> str:
        """Optional emoji / icon for UI."""
        return "🔗"

    # ── Data API ────────────────────────────────────────────────────────

    @property
    @abstractmethod
    def api_base_url(self) -> str:
        ...

    @property
    def default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    def auth_headers(self, token: str) -> Dict[str, str]:
        """Headers that carry the access token on data calls."""
        return {"Authorization": f"Bearer {token}"}

    def auth_params(self, token: str) -> Dict[str, str]:
        """Query parameters that carry the access token, for providers that want it in the URL."""
        return {}

    @abstractmethod
    def probe_endpoints(self) -> List[ProbeEndpoint]:
        """Read-only calls that together prove which data is reachable."""
        ...

    def error_classifier(self) -> ErrorClassifier:
        return ErrorClassifier(self._transient_statuses)

    def payload_error(self, body: Any) -> Optional[str]:
        """
        Return an error message when a 2xx body still signals failure.

        Most providers use status codes only; override for the ones that
        report errors inside successful responses.
        """
        return None

    def sample_data(self, endpoint_name: str) -> Optional[List[Any]]:
        """Sample records used by ``SampleDataFallback``; ``None`` if none exist."""
        return None

    # ── Token contract ──────────────────────────────────────────────────

    @abstractmethod
    async def exchange_code(self, code: str) -> TokenGrant:
        """
        Exchange an authorization code (or, for token-based providers, a
        user-supplied bearer token) for a validated token grant.
        """
        ...

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Refresh an expired access token; raise on any failure."""
        ...

    async def revoke_token(self, access_token: str) -> bool:
        """
        Revoke the token at the provider (optional).
        Returns True on success, False if provider doesn't support revocation.
        """
        return False

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """
        Return True if this connector has all required config
        (client IDs, secrets, etc.).
        """
        return True

    def http_client(self, **kwargs: Any) -> httpx.AsyncClient:
        """A fresh client; callers own it via ``async with``."""
        kwargs.setdefault("timeout", self._timeout)
        if self._transport is not None:
            kwargs.setdefault("transport", self._transport)
        return httpx.AsyncClient(**kwargs)


class OAuth2Connector(BaseConnector):
    """Connector whose tokens come from a standard OAuth2 token endpoint."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        token_url: str,
        redirect_uri: str = "",
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.redirect_uri = redirect_uri

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def exchange_code(self, code: str) -> TokenGrant:
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        if self.redirect_uri:
            form["redirect_uri"] = self.redirect_uri
        grant = await self._token_request(form)
        logger.info(
            "%s code exchange succeeded (refresh_token=%s, expires_in=%ss)",
            self.provider_name, bool(grant.refresh_token), grant.expires_in,
        )
        return grant

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            }
        )

    async def _token_request(self, form: Dict[str, str]) -> TokenGrant:
        async with self.http_client() as client:
            resp = await client.post(
                self.token_url,
                data=form,
                headers={"Accept": "application/json"},
            )

        body = _json_or_text(resp)
        if resp.status_code >= 400:
            detail = body.get("error_description") or body.get("error") if isinstance(body, dict) else body
            raise TokenExchangeError(
                resp.status_code,
                body,
                f"{self.provider_name} token endpoint returned HTTP {resp.status_code}: {detail or resp.reason_phrase}",
            )
        if not isinstance(body, dict) or "error" in body or "access_token" not in body:
            raise TokenExchangeError(resp.status_code, body, f"{self.provider_name} token response is not a token grant")

        try:
            expires_in = int(body.get("expires_in") or 3600)
        except (TypeError, ValueError) as exc:
            raise TokenExchangeError(
                resp.status_code, body, f"{self.provider_name} token response has a malformed expires_in"
            ) from exc

        return TokenGrant(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_in=expires_in,
            scopes=frozenset(str(body.get("scope") or "").split()),
        )


def _json_or_text(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text
