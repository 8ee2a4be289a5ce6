"""
JohnDeereConnector — OAuth2 connector for John Deere Operations Center.

Token calls always go to the production sign-in server, even when the data
API points at the sandbox.  Data endpoints are scoped to an organization;
the first organization that exposes a ``manage_connection`` link (i.e. has
approved this application) is resolved once per client and shared by every
probe.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from connectors.base import OAuth2Connector
from connectors.classifier import ErrorClassifier
from connectors.client import AuthenticatedClient
from connectors.errors import ConnectionNotEstablishedError
from connectors.models import ProbeEndpoint

logger = logging.getLogger(__name__)

_ORG_MEMO_KEY = "johndeere.organization_id"


class DeereErrorClassifier(ErrorClassifier):
    """Deere signals pending terms acceptance (RCA) through a header pair."""

    required_action_headers = ("X-Deere-Warning", "X-Deere-Terms-Location")


class JohnDeereConnector(OAuth2Connector):
    """OAuth2 connector for John Deere Operations Center."""

    def __init__(self, *, api_base_url: str, **kwargs: Any):
        super().__init__(**kwargs)
        self._api_base_url = api_base_url.rstrip("/")

    @property
    def provider_name(self) -> str:
        return "johndeere"

    @property
    def display_name(self) -> str:
        return "John Deere Operations Center"

    @property
    def scopes(self) -> List[str]:
        return ["ag1", "ag2", "ag3", "eq1", "eq2", "work1", "files", "offline_access"]

    @property
    def icon(self) -> str:
        return "🚜"

    @property
    def api_base_url(self) -> str:
        return self._api_base_url

    @property
    def default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/vnd.deere.axiom.v3+json"}

    def error_classifier(self) -> ErrorClassifier:
        return DeereErrorClassifier(self._transient_statuses)

    def probe_endpoints(self) -> List[ProbeEndpoint]:
        return [
            ProbeEndpoint(name="fields", invoke=_org_collection("fields"), required_scope="ag1"),
            ProbeEndpoint(name="equipment", invoke=_org_collection("machines"), required_scope="eq1"),
            ProbeEndpoint(name="farms", invoke=_org_collection("farms"), required_scope="ag1"),
            ProbeEndpoint(name="files", invoke=_org_collection("files"), required_scope="files"),
        ]

    def sample_data(self, endpoint_name: str) -> Optional[List[Any]]:
        return _SAMPLE_DATA.get(endpoint_name)


# ── organization-scoped calls ──────────────────────────────────────────


def _org_collection(resource: str):
    async def invoke(client: AuthenticatedClient) -> List[Any]:
        org_id = await organization_id(client)
        return await client.get_collection(f"/organizations/{org_id}/{resource}")

    invoke.__name__ = f"get_{resource}"
    return invoke


async def organization_id(client: AuthenticatedClient) -> str:
    """Resolve the connected organization once per client and share it."""
    task = client.memo.get(_ORG_MEMO_KEY)
    if task is None:
        task = asyncio.ensure_future(_resolve_organization(client))
        client.memo[_ORG_MEMO_KEY] = task
    return await asyncio.shield(task)


async def _resolve_organization(client: AuthenticatedClient) -> str:
    organizations = await client.get_collection("/organizations")
    if not organizations:
        raise ConnectionNotEstablishedError("No John Deere organization is visible to this application")

    for org in organizations:
        rels = {link.get("rel"): link.get("uri") for link in org.get("links", [])}
        if "manage_connection" in rels:
            return str(org["id"])

    connection_urls = [
        link.get("uri")
        for org in organizations
        for link in org.get("links", [])
        if link.get("rel") == "connections"
    ]
    if connection_urls:
        logger.info("John Deere organizations awaiting connection: %s", connection_urls)
        raise ConnectionNotEstablishedError(
            f"Organization connection required — approve access at {connection_urls[0]}"
        )
    # No connection metadata at all; fall back to the first organization.
    return str(organizations[0]["id"])


_SAMPLE_DATA: Dict[str, List[Dict[str, Any]]] = {
    "fields": [
        {"@type": "Field", "id": "field_001", "name": "North Field", "archived": False},
        {"@type": "Field", "id": "field_002", "name": "South Field", "archived": False},
        {"@type": "Field", "id": "field_003", "name": "East Field", "archived": False},
    ],
    "farms": [
        {"@type": "Farm", "id": "farm_001", "name": "Home Farm"},
        {"@type": "Farm", "id": "farm_002", "name": "River Bottom"},
    ],
}
