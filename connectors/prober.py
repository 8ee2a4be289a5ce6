"""
CapabilityProber — fan out read-only probe calls and collect every outcome.

Each endpoint runs in its own isolated failure domain: a failure, timeout
or cancellation of one probe never aborts or delays its siblings.  The
prober never raises and never retries — every per-endpoint problem becomes
a ``ProbeResult`` with a classified ``error_category``.  The returned list
always has one result per endpoint, in input order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, List, Optional, Sequence

import httpx

from connectors.errors import AuthExpiredError, ConnectionNotEstablishedError, ProviderHTTPError
from connectors.models import (
    ConnectionNotEstablished,
    ProbeEndpoint,
    ProbeResult,
    Transient,
    Unauthorized,
    Unknown,
)

if TYPE_CHECKING:
    from connectors.client import AuthenticatedClient, ClientFactory
    from connectors.registry import ConnectorRegistry
    from connectors.token_refresher import TokenRefresher

logger = logging.getLogger(__name__)


class CapabilityProber:
    def __init__(
        self,
        refresher: "TokenRefresher",
        client_factory: "ClientFactory",
        registry: "ConnectorRegistry",
        *,
        per_call_timeout: float = 10.0,
        max_concurrency: int = 8,
    ):
        self._refresher = refresher
        self._client_factory = client_factory
        self._registry = registry
        self._per_call_timeout = per_call_timeout
        self._max_concurrency = max(1, max_concurrency)

    async def probe(
        self,
        user_id: str,
        provider_id: str,
        endpoints: Sequence[ProbeEndpoint],
        deadline: Optional[float] = None,
    ) -> List[ProbeResult]:
        """
        Run every endpoint concurrently and return one result per endpoint.

        Parameters
        ----------
        deadline : overall budget in seconds; probes still pending when it
                   elapses are cancelled and recorded as ``Transient``.
        """
        if not endpoints:
            return []

        try:
            await self._refresher.ensure_valid(user_id, provider_id)
        except AuthExpiredError as exc:
            logger.info("Probe skipped for %s/%s: %s", provider_id, user_id, exc)
            return [
                ProbeResult(
                    endpoint_name=ep.name,
                    success=False,
                    error_category=Unauthorized(),
                    error_message=str(exc),
                )
                for ep in endpoints
            ]

        semaphore = asyncio.Semaphore(self._max_concurrency)
        async with self._client_factory.open(user_id, provider_id) as client:
            tasks = [
                asyncio.ensure_future(self._run_one(client, ep, semaphore))
                for ep in endpoints
            ]
            done, pending = await asyncio.wait(tasks, timeout=deadline)
            for task in pending:
                task.cancel()
            if pending:
                # Let cancelled probes unwind before the client closes.
                await asyncio.gather(*pending, return_exceptions=True)

        results: List[ProbeResult] = []
        for ep, task in zip(endpoints, tasks):
            if task in pending:
                logger.warning("Probe %s/%s missed the status deadline", provider_id, ep.name)
                results.append(_failed(ep.name, Transient(), "status deadline exceeded"))
            elif task.cancelled():
                logger.warning("Probe %s/%s was cancelled", provider_id, ep.name)
                results.append(_failed(ep.name, Transient(), "cancelled"))
            elif task.exception() is not None:
                exc = task.exception()
                logger.error("Probe %s/%s aborted: %r", provider_id, ep.name, exc)
                results.append(_failed(ep.name, Unknown(message=repr(exc)), repr(exc)))
            else:
                results.append(task.result())

        ok = sum(1 for r in results if r.success)
        logger.info(
            "Probed %s for user %s: %d/%d endpoints reachable",
            provider_id, user_id, ok, len(results),
        )
        return results

    async def _run_one(
        self,
        client: "AuthenticatedClient",
        endpoint: ProbeEndpoint,
        semaphore: asyncio.Semaphore,
    ) -> ProbeResult:
        """Invoke one endpoint; every failure is converted into data."""
        name = endpoint.name
        try:
            async with semaphore:
                items = await asyncio.wait_for(endpoint.invoke(client), timeout=self._per_call_timeout)
        except asyncio.TimeoutError:
            logger.warning("Probe %s/%s timed out after %.1fs", client.provider_id, name, self._per_call_timeout)
            return ProbeResult(
                endpoint_name=name,
                success=False,
                error_category=Transient(),
                error_message=f"timed out after {self._per_call_timeout}s",
            )
        except ProviderHTTPError as exc:
            classifier = self._registry.require(client.provider_id).error_classifier()
            category = classifier.classify(exc.status_code, exc.headers, exc.body)
            logger.info(
                "Probe %s/%s failed: HTTP %d → %s", client.provider_id, name, exc.status_code, category.kind.value,
            )
            return ProbeResult(
                endpoint_name=name,
                success=False,
                error_category=category,
                error_message=str(exc),
            )
        except AuthExpiredError as exc:
            return ProbeResult(
                endpoint_name=name,
                success=False,
                error_category=Unauthorized(),
                error_message=str(exc),
            )
        except ConnectionNotEstablishedError as exc:
            return ProbeResult(
                endpoint_name=name,
                success=False,
                error_category=ConnectionNotEstablished(),
                error_message=str(exc),
            )
        except httpx.TransportError as exc:
            logger.warning("Probe %s/%s transport error: %s", client.provider_id, name, exc)
            return ProbeResult(
                endpoint_name=name,
                success=False,
                error_category=Transient(),
                error_message=str(exc),
            )
        except Exception as exc:
            logger.error("Probe %s/%s raised unexpectedly", client.provider_id, name, exc_info=True)
            return ProbeResult(
                endpoint_name=name,
                success=False,
                error_category=Unknown(message=str(exc)),
                error_message=str(exc),
            )

        return ProbeResult(endpoint_name=name, success=True, item_count=len(items or []))


def _failed(endpoint_name: str, category, message: str) -> ProbeResult:
    return ProbeResult(endpoint_name=endpoint_name, success=False, error_category=category, error_message=message)
