"""
ConnectionManager — the facade UI status endpoints and the tool-execution
layer talk to.

It composes the credential store, token refresher, capability prober and
state evaluator, and it is the only layer that turns outcomes into
user-facing messages.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import AsyncContextManager, List, Optional

import httpx

from config.settings import Settings
from connectors.client import AuthenticatedClient, ClientFactory
from connectors.credential_store import CredentialStore
from connectors.errors import AuthExpiredError, ProviderHTTPError, TransientError, error_for_category
from connectors.evaluator import evaluate
from connectors.fallback import FallbackPolicy, NoFallback, SampleDataFallback
from connectors.models import (
    ConnectionNotEstablished,
    ConnectionStatus,
    Credential,
    FetchResult,
    InsufficientScope,
    ProbeResult,
    RequiredCustomerAction,
    StatusReport,
    Transient,
    Unauthorized,
    Unknown,
    utcnow,
)
from connectors.prober import CapabilityProber
from connectors.registry import ConnectorRegistry
from connectors.token_refresher import Clock, TokenRefresher

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(
        self,
        registry: ConnectorRegistry,
        store: CredentialStore,
        refresher: TokenRefresher,
        prober: CapabilityProber,
        client_factory: ClientFactory,
        *,
        fallback: Optional[FallbackPolicy] = None,
        connect_timeout: float = 30.0,
        status_deadline: Optional[float] = 25.0,
        clock: Optional[Clock] = None,
    ):
        self.registry = registry
        self._store = store
        self._refresher = refresher
        self._prober = prober
        self._client_factory = client_factory
        self._fallback = fallback or NoFallback()
        self._connect_timeout = connect_timeout
        self._status_deadline = status_deadline
        self._clock = clock or utcnow

    # ── status ──────────────────────────────────────────────────────────

    async def check_status(self, user_id: str, provider_id: str) -> StatusReport:
        """
        Recompute the connection status from the stored credential and a
        fresh probe run.  Never cached.
        """
        connector = self.registry.require(provider_id)
        loop = asyncio.get_running_loop()
        started = loop.time()

        credential = await self._store.get(user_id, provider_id)
        if credential is None:
            return self._report(provider_id, ConnectionStatus.DISCONNECTED)

        try:
            await self._refresher.ensure_valid(user_id, provider_id)
        except AuthExpiredError as exc:
            logger.info("Status %s/%s: %s", provider_id, user_id, exc)
            return self._report(provider_id, ConnectionStatus.AUTH_REQUIRED)

        remaining = None
        if self._status_deadline is not None:
            remaining = max(0.0, self._status_deadline - (loop.time() - started))

        results = await self._prober.probe(
            user_id, provider_id, connector.probe_endpoints(), deadline=remaining,
        )
        for result in results:
            if isinstance(result.error_category, Unknown):
                logger.error(
                    "Unclassified %s error for user %s on %s: %s",
                    provider_id, user_id, result.endpoint_name, result.error_message,
                )

        status = evaluate(True, results)
        logger.info("Status %s/%s → %s", provider_id, user_id, status.value)
        return self._report(provider_id, status, results)

    # ── connect / disconnect ────────────────────────────────────────────

    async def connect(self, user_id: str, provider_id: str, auth_code: str) -> StatusReport:
        """
        Exchange ``auth_code`` for tokens, persist the credential and return
        the status observed by a first probe run.

        The exchange is bounded by ``connect_timeout``; on expiry it is
        cancelled and ``TransientError`` is raised.
        """
        connector = self.registry.require(provider_id)
        try:
            grant = await asyncio.wait_for(
                connector.exchange_code(auth_code), timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TransientError(
                f"{connector.display_name} token exchange timed out after {self._connect_timeout}s"
            ) from exc
        except httpx.TransportError as exc:
            raise TransientError(f"{connector.display_name} token endpoint unreachable: {exc}") from exc

        now = self._clock()
        credential = Credential(
            user_id=user_id,
            provider_id=provider_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            scopes=grant.scopes,
            expires_at=now + timedelta(seconds=grant.expires_in),
            updated_at=now,
        )
        async with self._refresher.locked(user_id, provider_id):
            await self._store.upsert(credential)
        logger.info("Connected %s for user %s", provider_id, user_id)
        return await self.check_status(user_id, provider_id)

    async def disconnect(self, user_id: str, provider_id: str) -> None:
        """Revoke (best-effort) and delete the credential. Idempotent."""
        connector = self.registry.get(provider_id)
        credential = await self._store.get(user_id, provider_id)
        if credential is not None and connector is not None:
            try:
                await connector.revoke_token(credential.access_token)
            except Exception:
                logger.warning("%s token revocation failed for user %s", provider_id, user_id, exc_info=True)

        async with self._refresher.locked(user_id, provider_id):
            await self._store.delete(user_id, provider_id)
        logger.info("Disconnected %s for user %s", provider_id, user_id)

    # ── tool-layer data access ──────────────────────────────────────────

    def open_client(self, user_id: str, provider_id: str) -> AsyncContextManager[AuthenticatedClient]:
        """Per-request authenticated client for tool code."""
        return self._client_factory.open(user_id, provider_id)

    async def fetch(self, user_id: str, provider_id: str, endpoint_name: str) -> FetchResult:
        """
        Read one data collection for the tool layer.

        Failures raise the typed error for their category unless the
        injected fallback policy substitutes sample data, in which case the
        result is flagged ``fallback_used``.
        """
        connector = self.registry.require(provider_id)
        endpoint = next((ep for ep in connector.probe_endpoints() if ep.name == endpoint_name), None)
        if endpoint is None:
            raise ValueError(f"{provider_id} has no data endpoint '{endpoint_name}'")

        async with self.open_client(user_id, provider_id) as client:
            try:
                items = await endpoint.invoke(client)
            except ProviderHTTPError as exc:
                category = connector.error_classifier().classify(exc.status_code, exc.headers, exc.body)
                substitute = self._fallback.resolve(connector, endpoint_name, exc.status_code, category)
                if substitute is not None:
                    return FetchResult(
                        endpoint_name=endpoint_name,
                        items=substitute,
                        fallback_used=True,
                        error_category=category,
                    )
                if isinstance(category, Unknown):
                    logger.error(
                        "Unclassified %s error for user %s on %s: HTTP %d %r",
                        provider_id, user_id, endpoint_name, exc.status_code, exc.body,
                    )
                raise error_for_category(category, user_id, provider_id) from exc
            except httpx.TransportError as exc:
                raise TransientError(f"{connector.display_name} unreachable: {exc}") from exc

        return FetchResult(endpoint_name=endpoint_name, items=list(items or []))

    # ── user-facing text ────────────────────────────────────────────────

    def describe(self, provider_id: str, status: ConnectionStatus, results: List[ProbeResult]) -> str:
        connector = self.registry.get(provider_id)
        name = connector.display_name if connector else provider_id

        if status is ConnectionStatus.DISCONNECTED:
            return f"{name} is not connected. Connect your account to use its data."
        if status is ConnectionStatus.AUTH_REQUIRED:
            return f"Your {name} authorization has expired. Please reconnect your account."

        total = len(results)
        ok = [r.endpoint_name for r in results if r.success]
        if status is ConnectionStatus.CONNECTED:
            lead = f"Connected to {name}."
            if total:
                lead += f" All {total} data types are accessible."
            return lead
        if status is ConnectionStatus.PARTIALLY_CONNECTED:
            lead = (
                f"Connected to {name}, but only {len(ok)} of {total} data types are "
                f"accessible ({', '.join(ok)})."
            )
        else:
            lead = f"Connected to {name}, but no data is accessible yet."

        hints = _remediation_hints(results)
        return " ".join([lead, *hints])

    def _report(
        self,
        provider_id: str,
        status: ConnectionStatus,
        results: Optional[List[ProbeResult]] = None,
    ) -> StatusReport:
        results = results or []
        return StatusReport(
            provider_id=provider_id,
            status=status,
            probe_results=results,
            remediation_links=remediation_links(results),
            message=self.describe(provider_id, status, results),
            checked_at=self._clock(),
        )


def remediation_links(results: List[ProbeResult]) -> List[str]:
    """Deduplicated required-action URLs, in first-seen order."""
    links: List[str] = []
    for result in results:
        category = result.error_category
        if isinstance(category, RequiredCustomerAction) and category.url not in links:
            links.append(category.url)
    return links


def _remediation_hints(results: List[ProbeResult]) -> List[str]:
    categories = [r.error_category for r in results if r.error_category is not None]
    hints: List[str] = []

    links = remediation_links(results)
    if links:
        hints.append("Complete the required action at: " + ", ".join(links) + ".")

    missing = set()
    scope_problem = False
    for category in categories:
        if isinstance(category, InsufficientScope):
            scope_problem = True
            missing.update(category.missing)
    if scope_problem:
        detail = f" (missing: {', '.join(sorted(missing))})" if missing else ""
        hints.append(f"Reconnect with broader permissions{detail}.")

    if any(isinstance(c, ConnectionNotEstablished) for c in categories):
        hints.append("Link your organization to this application in the provider's connections page.")
    if any(isinstance(c, Unauthorized) for c in categories):
        hints.append("The provider rejected the access token; reconnect if this persists.")
    if any(isinstance(c, Transient) for c in categories):
        hints.append("Some data sources are temporarily unavailable; try again shortly.")
    if any(isinstance(c, Unknown) for c in categories):
        hints.append("Some data sources returned an unexpected error.")
    return hints


def build_connection_manager(
    settings: Settings,
    store: CredentialStore,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    fallback: Optional[FallbackPolicy] = None,
) -> ConnectionManager:
    """Wire every component from application settings."""
    registry = ConnectorRegistry.from_settings(settings, transport=transport)
    refresher = TokenRefresher(store, registry, skew_seconds=settings.token_refresh_skew_seconds)
    client_factory = ClientFactory(registry, refresher)
    prober = CapabilityProber(
        refresher,
        client_factory,
        registry,
        per_call_timeout=settings.probe_timeout_seconds,
        max_concurrency=settings.probe_max_concurrency,
    )
    if fallback is None:
        fallback = SampleDataFallback() if settings.sample_data_fallback else NoFallback()
    return ConnectionManager(
        registry,
        store,
        refresher,
        prober,
        client_factory,
        fallback=fallback,
        connect_timeout=settings.connect_timeout_seconds,
        status_deadline=settings.status_deadline_seconds,
    )
