"""
Tests for the pure connection-state evaluation.
"""

import pytest

from connectors.evaluator import evaluate
from connectors.models import ConnectionStatus, ProbeResult, Transient, Unknown


def _results(*outcomes):
    return [
        ProbeResult(
            endpoint_name=f"ep{i}",
            success=ok,
            item_count=1 if ok else 0,
            error_category=None if ok else Transient(),
        )
        for i, ok in enumerate(outcomes)
    ]


class TestEvaluate:
    @pytest.mark.parametrize("outcomes", [(), (True,), (False, False), (True, False)])
    def test_invalid_credential_is_disconnected(self, outcomes):
        assert evaluate(False, _results(*outcomes)) is ConnectionStatus.DISCONNECTED

    def test_no_endpoints_is_connected(self):
        assert evaluate(True, []) is ConnectionStatus.CONNECTED

    def test_all_succeed(self):
        assert evaluate(True, _results(True, True, True)) is ConnectionStatus.CONNECTED

    def test_none_succeed(self):
        assert evaluate(True, _results(False, False)) is ConnectionStatus.CONNECTION_REQUIRED

    def test_some_succeed(self):
        assert evaluate(True, _results(True, False, True, False)) is ConnectionStatus.PARTIALLY_CONNECTED

    def test_failure_category_does_not_matter(self):
        results = [
            ProbeResult(endpoint_name="a", success=False, error_category=Unknown(message="boom")),
            ProbeResult(endpoint_name="b", success=False, error_category=Transient()),
        ]
        assert evaluate(True, results) is ConnectionStatus.CONNECTION_REQUIRED

    def test_deterministic(self):
        results = _results(True, False)
        assert {evaluate(True, results) for _ in range(5)} == {ConnectionStatus.PARTIALLY_CONNECTED}
