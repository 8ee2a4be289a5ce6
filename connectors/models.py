"""
Pydantic schemas shared by the connection lifecycle components.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Awaitable, Callable, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════════
# Credentials
# ═══════════════════════════════════════════════════════════════════════════════


class Credential(BaseModel):
    """
    Persisted per-(user, provider) token set.

    Immutable: refreshes produce a new instance via ``model_copy`` and the
    store replaces the whole record.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    provider_id: str
    access_token: str
    refresh_token: Optional[str] = None
    scopes: FrozenSet[str] = frozenset()
    expires_at: datetime
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token)


class TokenGrant(BaseModel):
    """Parsed token-endpoint response."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600
    scopes: FrozenSet[str] = frozenset()


# ═══════════════════════════════════════════════════════════════════════════════
# Error categories: closed tagged union on ``kind``
# ═══════════════════════════════════════════════════════════════════════════════


class ErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    REQUIRED_CUSTOMER_ACTION = "required_customer_action"
    INSUFFICIENT_SCOPE = "insufficient_scope"
    CONNECTION_NOT_ESTABLISHED = "connection_not_established"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


class _Category(BaseModel):
    model_config = ConfigDict(frozen=True)


class Unauthorized(_Category):
    kind: Literal[ErrorKind.UNAUTHORIZED] = ErrorKind.UNAUTHORIZED


class RequiredCustomerAction(_Category):
    kind: Literal[ErrorKind.REQUIRED_CUSTOMER_ACTION] = ErrorKind.REQUIRED_CUSTOMER_ACTION
    url: str


class InsufficientScope(_Category):
    kind: Literal[ErrorKind.INSUFFICIENT_SCOPE] = ErrorKind.INSUFFICIENT_SCOPE
    missing: FrozenSet[str] = frozenset()


class ConnectionNotEstablished(_Category):
    kind: Literal[ErrorKind.CONNECTION_NOT_ESTABLISHED] = ErrorKind.CONNECTION_NOT_ESTABLISHED


class Transient(_Category):
    kind: Literal[ErrorKind.TRANSIENT] = ErrorKind.TRANSIENT


class Unknown(_Category):
    kind: Literal[ErrorKind.UNKNOWN] = ErrorKind.UNKNOWN
    message: str = ""


ErrorCategory = Annotated[
    Union[
        Unauthorized,
        RequiredCustomerAction,
        InsufficientScope,
        ConnectionNotEstablished,
        Transient,
        Unknown,
    ],
    Field(discriminator="kind"),
]


# ═══════════════════════════════════════════════════════════════════════════════
# Probes & status
# ═══════════════════════════════════════════════════════════════════════════════


class ProbeEndpoint(BaseModel):
    """One read-only capability call, configured per provider."""

    model_config = ConfigDict(frozen=True)

    name: str
    invoke: Callable[[Any], Awaitable[List[Any]]]
    required_scope: Optional[str] = None   # informational only


class ProbeResult(BaseModel):
    endpoint_name: str
    success: bool
    item_count: int = 0
    error_category: Optional[ErrorCategory] = None
    error_message: Optional[str] = None


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    AUTH_REQUIRED = "auth_required"
    CONNECTION_REQUIRED = "connection_required"
    PARTIALLY_CONNECTED = "partially_connected"
    CONNECTED = "connected"


class StatusReport(BaseModel):
    """What ``ConnectionManager.check_status`` hands to the UI / tool layer."""

    provider_id: str
    status: ConnectionStatus
    probe_results: List[ProbeResult] = Field(default_factory=list)
    remediation_links: List[str] = Field(default_factory=list)
    message: str = ""
    checked_at: datetime = Field(default_factory=utcnow)


class FetchResult(BaseModel):
    endpoint_name: str
    items: List[Any] = Field(default_factory=list)
    fallback_used: bool = False
    error_category: Optional[ErrorCategory] = None
