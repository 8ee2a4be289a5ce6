"""
Exception taxonomy for provider connections.

``ProviderHTTPError`` is the raw failure coming back from a provider call;
``ErrorClassifier`` turns it into an ``ErrorCategory`` and
``error_for_category`` maps that back onto the typed exceptions below when
a caller needs to raise rather than report.
"""

from __future__ import annotations

from typing import Any, FrozenSet, Iterable, Mapping, Optional

from connectors.models import (
    ConnectionNotEstablished,
    ErrorCategory,
    InsufficientScope,
    RequiredCustomerAction,
    Transient,
    Unauthorized,
)


class ConnectorError(Exception):
    """Base class for every connection-lifecycle error."""


class AuthExpiredError(ConnectorError):
    """No credential, or the stored one can no longer be refreshed."""

    def __init__(self, user_id: str, provider_id: str, reason: str = "no valid credential"):
        self.user_id = user_id
        self.provider_id = provider_id
        self.reason = reason
        super().__init__(f"{provider_id} authorization expired for user {user_id}: {reason}")


class RequiredCustomerActionError(ConnectorError):
    def __init__(self, url: str):
        self.url = url
        super().__init__(f"Required customer action pending: {url}")


class InsufficientScopeError(ConnectorError):
    def __init__(self, missing: Iterable[str] = ()):
        self.missing: FrozenSet[str] = frozenset(missing)
        detail = ", ".join(sorted(self.missing)) or "unspecified"
        super().__init__(f"Token is missing required scopes: {detail}")


class ConnectionNotEstablishedError(ConnectorError):
    def __init__(self, message: str = "No connection between application and organization"):
        super().__init__(message)


class TransientError(ConnectorError):
    """Safe to retry on the next call; never retried inside one."""


class UnknownProviderError(ConnectorError):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ProviderNotConfiguredError(ConnectorError):
    def __init__(self, provider_id: str):
        self.provider_id = provider_id
        super().__init__(f"Provider '{provider_id}' not found or not configured")


class ProviderHTTPError(ConnectorError):
    """A provider call came back with an error status (or error payload)."""

    def __init__(
        self,
        status_code: int,
        headers: Optional[Mapping[str, str]] = None,
        body: Any = None,
        url: str = "",
    ):
        self.status_code = status_code
        self.headers = dict(headers or {})
        self.body = body
        self.url = url
        super().__init__(f"HTTP {status_code} from {url or 'provider'}")


class TokenExchangeError(ConnectorError):
    """The token endpoint rejected a code exchange or refresh."""

    def __init__(self, status_code: int, body: Any = None, message: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Token endpoint returned HTTP {status_code}")


def error_for_category(
    category: ErrorCategory,
    user_id: str = "",
    provider_id: str = "",
) -> ConnectorError:
    """Build the typed exception matching a classified failure."""
    if isinstance(category, RequiredCustomerAction):
        return RequiredCustomerActionError(category.url)
    if isinstance(category, InsufficientScope):
        return InsufficientScopeError(category.missing)
    if isinstance(category, ConnectionNotEstablished):
        return ConnectionNotEstablishedError()
    if isinstance(category, Transient):
        return TransientError("Provider temporarily unavailable")
    if isinstance(category, Unauthorized):
        return AuthExpiredError(user_id, provider_id, "provider rejected the access token")
    return UnknownProviderError(getattr(category, "message", "") or "Unknown provider error")
