"""
Fallback policies for the tool-layer data fetch.

When a provider refuses a data call, a policy may substitute sample records
instead of surfacing the error.  The choice is explicit and injectable, and
``SampleDataFallback`` records every substitution so callers (and tests) can
tell real data from stand-ins.  Capability probes never consult a policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, FrozenSet, List, Optional, Protocol

from connectors.models import ConnectionNotEstablished, ErrorCategory, InsufficientScope, Unknown

if TYPE_CHECKING:
    from connectors.base import BaseConnector

logger = logging.getLogger(__name__)


class FallbackPolicy(Protocol):
    def resolve(
        self,
        connector: "BaseConnector",
        endpoint_name: str,
        status_code: Optional[int],
        category: ErrorCategory,
    ) -> Optional[List[Any]]:
        """Return substitute items, or ``None`` to surface the error."""
        ...


class NoFallback:
    """Never substitute — every failure reaches the caller."""

    def resolve(self, connector, endpoint_name, status_code, category) -> Optional[List[Any]]:
        return None


@dataclass
class FallbackEvent:
    provider_id: str
    endpoint_name: str
    status_code: Optional[int]
    category: ErrorCategory


@dataclass
class SampleDataFallback:
    """
    Substitute the connector's sample records for permission-style failures
    (403/404 by default).
    """

    status_codes: FrozenSet[int] = frozenset({403, 404})
    events: List[FallbackEvent] = field(default_factory=list)

    def resolve(
        self,
        connector: "BaseConnector",
        endpoint_name: str,
        status_code: Optional[int],
        category: ErrorCategory,
    ) -> Optional[List[Any]]:
        if status_code not in self.status_codes:
            return None
        if not isinstance(category, (InsufficientScope, ConnectionNotEstablished, Unknown)):
            return None
        samples = connector.sample_data(endpoint_name)
        if samples is None:
            return None

        self.events.append(
            FallbackEvent(connector.provider_name, endpoint_name, status_code, category)
        )
        logger.warning(
            "%s %s refused (HTTP %s) — serving %d sample records",
            connector.provider_name, endpoint_name, status_code, len(samples),
        )
        return list(samples)

    @property
    def applied(self) -> bool:
        return bool(self.events)
