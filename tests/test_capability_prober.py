"""
Tests for CapabilityProber — fan-out, isolation, timeouts, deadline.
"""

import asyncio

import httpx
import pytest

from connectors.client import ClientFactory
from connectors.errors import ConnectionNotEstablishedError, ProviderHTTPError
from connectors.models import (
    ConnectionNotEstablished,
    ProbeEndpoint,
    Transient,
    Unauthorized,
    Unknown,
)
from connectors.prober import CapabilityProber
from connectors.registry import ConnectorRegistry
from connectors.token_refresher import TokenRefresher
from fakes import fixed_clock, make_credential, raising, returning, sleeping


def _prober(store, connector, per_call_timeout=1.0, max_concurrency=8):
    registry = ConnectorRegistry([connector])
    refresher = TokenRefresher(store, registry, clock=fixed_clock)
    return CapabilityProber(
        refresher,
        ClientFactory(registry, refresher),
        registry,
        per_call_timeout=per_call_timeout,
        max_concurrency=max_concurrency,
    )


class TestProbeResults:
    @pytest.mark.asyncio
    async def test_no_endpoints(self, store, connector):
        await store.upsert(make_credential())
        assert await _prober(store, connector).probe("user-1", "fakefarm", []) == []

    @pytest.mark.asyncio
    async def test_one_result_per_endpoint_in_input_order(self, store, connector):
        await store.upsert(make_credential())
        endpoints = [
            ProbeEndpoint(name="fields", invoke=returning([1, 2, 3])),
            ProbeEndpoint(name="farms", invoke=raising(ProviderHTTPError(503, {}, None))),
            ProbeEndpoint(name="equipment", invoke=sleeping(0.02, [1])),
            ProbeEndpoint(name="files", invoke=returning([])),
        ]
        results = await _prober(store, connector).probe("user-1", "fakefarm", endpoints)

        assert [r.endpoint_name for r in results] == ["fields", "farms", "equipment", "files"]
        assert [r.success for r in results] == [True, False, True, True]
        assert results[0].item_count == 3
        assert results[3].item_count == 0
        assert isinstance(results[1].error_category, Transient)

    @pytest.mark.asyncio
    async def test_http_failures_are_classified(self, store, connector):
        await store.upsert(make_credential())
        endpoints = [
            ProbeEndpoint(name="a", invoke=raising(ProviderHTTPError(401, {}, ""))),
            ProbeEndpoint(name="b", invoke=raising(ProviderHTTPError(403, {}, {"message": "Access denied"}))),
            ProbeEndpoint(name="c", invoke=raising(ProviderHTTPError(400, {}, {"message": "bad request"}))),
        ]
        results = await _prober(store, connector).probe("user-1", "fakefarm", endpoints)

        assert isinstance(results[0].error_category, Unauthorized)
        assert isinstance(results[1].error_category, ConnectionNotEstablished)
        assert results[2].error_category == Unknown(message="bad request")
        assert all(r.error_message for r in results)

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_unknown(self, store, connector):
        await store.upsert(make_credential())
        endpoints = [
            ProbeEndpoint(name="broken", invoke=raising(KeyError("id"))),
            ProbeEndpoint(name="fine", invoke=returning([1])),
        ]
        results = await _prober(store, connector).probe("user-1", "fakefarm", endpoints)

        assert isinstance(results[0].error_category, Unknown)
        assert results[1].success

    @pytest.mark.asyncio
    async def test_transport_and_connection_errors(self, store, connector):
        await store.upsert(make_credential())
        endpoints = [
            ProbeEndpoint(name="net", invoke=raising(httpx.ConnectError("refused"))),
            ProbeEndpoint(name="org", invoke=raising(ConnectionNotEstablishedError())),
        ]
        results = await _prober(store, connector).probe("user-1", "fakefarm", endpoints)

        assert isinstance(results[0].error_category, Transient)
        assert isinstance(results[1].error_category, ConnectionNotEstablished)

    @pytest.mark.asyncio
    async def test_missing_credential_marks_every_probe_unauthorized(self, store, connector):
        calls = []

        async def invoke(client):
            calls.append(1)
            return []

        endpoints = [ProbeEndpoint(name=n, invoke=invoke) for n in ("a", "b")]
        results = await _prober(store, connector).probe("user-1", "fakefarm", endpoints)

        assert [type(r.error_category) for r in results] == [Unauthorized, Unauthorized]
        assert calls == []


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_per_call_timeout_is_isolated(self, store, connector):
        await store.upsert(make_credential())
        endpoints = [
            ProbeEndpoint(name="slow", invoke=sleeping(5)),
            ProbeEndpoint(name="fast", invoke=returning([1, 2])),
        ]
        results = await _prober(store, connector, per_call_timeout=0.05).probe(
            "user-1", "fakefarm", endpoints,
        )

        assert isinstance(results[0].error_category, Transient)
        assert results[1].success and results[1].item_count == 2

    @pytest.mark.asyncio
    async def test_deadline_cancels_pending_probes(self, store, connector):
        await store.upsert(make_credential())
        endpoints = [
            ProbeEndpoint(name="stuck", invoke=sleeping(5)),
            ProbeEndpoint(name="quick", invoke=returning([1])),
        ]
        loop = asyncio.get_running_loop()
        started = loop.time()
        results = await _prober(store, connector, per_call_timeout=10).probe(
            "user-1", "fakefarm", endpoints, deadline=0.1,
        )

        assert loop.time() - started < 2
        assert results[0].error_message == "status deadline exceeded"
        assert isinstance(results[0].error_category, Transient)
        assert results[1].success

    @pytest.mark.asyncio
    async def test_cancelled_endpoint_is_not_reported_as_deadline(self, store, connector, caplog):
        await store.upsert(make_credential())
        endpoints = [
            ProbeEndpoint(name="cancelled", invoke=raising(asyncio.CancelledError())),
            ProbeEndpoint(name="quick", invoke=returning([1])),
        ]
        with caplog.at_level("WARNING", logger="connectors.prober"):
            results = await _prober(store, connector).probe(
                "user-1", "fakefarm", endpoints, deadline=5,
            )

        assert results[0].success is False
        assert results[0].error_message == "cancelled"
        assert isinstance(results[0].error_category, Transient)
        assert results[1].success
        assert "missed the status deadline" not in caplog.text


class TestConcurrency:
    @staticmethod
    def _tracking_endpoints(n, peak):
        active = {"now": 0}

        async def invoke(client):
            active["now"] += 1
            peak.append(active["now"])
            await asyncio.sleep(0.02)
            active["now"] -= 1
            return []

        return [ProbeEndpoint(name=f"ep{i}", invoke=invoke) for i in range(n)]

    @pytest.mark.asyncio
    async def test_probes_run_concurrently(self, store, connector):
        await store.upsert(make_credential())
        peak = []
        await _prober(store, connector).probe("user-1", "fakefarm", self._tracking_endpoints(4, peak))
        assert max(peak) == 4

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, store, connector):
        await store.upsert(make_credential())
        peak = []
        results = await _prober(store, connector, max_concurrency=2).probe(
            "user-1", "fakefarm", self._tracking_endpoints(6, peak),
        )
        assert max(peak) == 2
        assert all(r.success for r in results)
