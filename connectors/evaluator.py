"""
Connection state evaluation — pure mapping from (credential validity,
probe results) to a ``ConnectionStatus``.
"""

from __future__ import annotations

from typing import Sequence

from connectors.models import ConnectionStatus, ProbeResult


def evaluate(has_valid_credential: bool, results: Sequence[ProbeResult]) -> ConnectionStatus:
    """
    Transition table::

        credential  results              status
        ─────────   ──────────────────   ───────────────────
        invalid     anything             DISCONNECTED
        valid       none configured      CONNECTED (vacuous)
        valid       0 of N succeed       CONNECTION_REQUIRED
        valid       0 < k < N succeed    PARTIALLY_CONNECTED
        valid       N of N succeed       CONNECTED

    ``AUTH_REQUIRED`` is decided by the caller, which knows whether a
    credential existed before the refresh failed.
    """
    if not has_valid_credential:
        return ConnectionStatus.DISCONNECTED

    total = len(results)
    if total == 0:
        return ConnectionStatus.CONNECTED

    succeeded = sum(1 for r in results if r.success)
    if succeeded == total:
        return ConnectionStatus.CONNECTED
    if succeeded == 0:
        return ConnectionStatus.CONNECTION_REQUIRED
    return ConnectionStatus.PARTIALLY_CONNECTED
