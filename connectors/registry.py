"""
ConnectorRegistry — the set of configured provider connectors.

Built once at startup (``from_settings``) and injected wherever a connector
is needed; there is no process-wide singleton.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

import httpx

from config.settings import Settings
from connectors.base import BaseConnector
from connectors.errors import ProviderNotConfiguredError
from connectors.providers.auravant import AuravantConnector
from connectors.providers.johndeere import JohnDeereConnector
from connectors.providers.satshot import SatshotConnector

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """Lookup of connectors by provider slug."""

    def __init__(self, connectors: Iterable[BaseConnector] = ()):
        self._all: List[BaseConnector] = list(connectors)
        self._connectors: Dict[str, BaseConnector] = {}
        for conn in self._all:
            if conn.is_configured():
                self._connectors[conn.provider_name] = conn
                logger.info(
                    "Connector registered: %s (%s)",
                    conn.display_name,
                    conn.provider_name,
                )
            else:
                logger.warning(
                    "Connector %s skipped — not configured (missing client_id/secret)",
                    conn.provider_name,
                )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ConnectorRegistry":
        """Build every known connector from application settings."""
        common = {
            "transport": transport,
            "timeout": settings.http_timeout_seconds,
            "transient_statuses": settings.transient_status_codes,
        }
        connectors: List[BaseConnector] = [
            JohnDeereConnector(
                client_id=settings.johndeere_client_id,
                client_secret=settings.johndeere_client_secret,
                token_url=settings.johndeere_token_url,
                redirect_uri=settings.johndeere_redirect_uri,
                api_base_url=settings.johndeere_api_base_url,
                **common,
            ),
        ]
        if settings.auravant_enabled:
            connectors.append(
                AuravantConnector(
                    api_base_url=settings.auravant_api_base_url,
                    token_ttl_seconds=settings.auravant_token_ttl_seconds,
                    **common,
                )
            )
        if settings.satshot_enabled:
            connectors.append(
                SatshotConnector(
                    server=settings.satshot_server,
                    session_ttl_seconds=settings.satshot_session_ttl_seconds,
                    **common,
                )
            )
        return cls(connectors)

    def get(self, provider: str) -> Optional[BaseConnector]:
        """Get a connector by provider name."""
        return self._connectors.get(provider)

    def require(self, provider: str) -> BaseConnector:
        """Like ``get`` but raises ``ProviderNotConfiguredError``."""
        connector = self._connectors.get(provider)
        if connector is None:
            raise ProviderNotConfiguredError(provider)
        return connector

    def list_providers(self) -> List[Dict[str, object]]:
        """Return info about all known connectors."""
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "icon": c.icon,
                "configured": c.is_configured(),
                "scopes": c.scopes,
            }
            for c in self._all
        ]

    def list_configured(self) -> List[str]:
        """Return names of configured connectors."""
        return list(self._connectors.keys())
