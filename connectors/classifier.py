"""
ErrorClassifier — maps a raw provider failure onto an ``ErrorCategory``.

Rules are applied in a fixed priority order (see ``classify``).  Providers
plug in by overriding the hooks, never by branching elsewhere:

  • ``required_action_url``  — header pair signalling a consent step
  • ``missing_scopes``       — body says the token lacks a permission
  • ``connection_missing``   — body says caller and org are not linked
  • ``is_unauthorized``      — the token itself was rejected
  • ``extract_message``      — where the human message lives in the body
"""

from __future__ import annotations

import json
import logging
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Tuple

from connectors.models import (
    ConnectionNotEstablished,
    ErrorCategory,
    InsufficientScope,
    RequiredCustomerAction,
    Transient,
    Unauthorized,
    Unknown,
)

logger = logging.getLogger(__name__)

DEFAULT_TRANSIENT_STATUSES: FrozenSet[int] = frozenset({429, 502, 503, 504})


class ErrorClassifier:
    """Generic classifier; subclasses only override the hooks."""

    # (warning header, remediation-URL header); ``None`` disables rule 1
    required_action_headers: Optional[Tuple[str, str]] = None
    scope_markers: Tuple[str, ...] = ("proper access", "scope", "insufficient_scope")
    connection_markers: Tuple[str, ...] = ("access denied", "connection")

    def __init__(self, transient_statuses: Iterable[int] = DEFAULT_TRANSIENT_STATUSES):
        self.transient_statuses = frozenset(transient_statuses)

    # ── public entry point ──────────────────────────────────────────────

    def classify(
        self,
        http_status: int,
        headers: Optional[Mapping[str, str]],
        body: Any,
    ) -> ErrorCategory:
        """
        Classify one failed response.

        Priority: required customer action → insufficient scope →
        connection not established → unauthorized (401) → transient status → unknown.
        Body rules are skipped for 5xx responses, whose bodies describe
        the provider's own failure rather than the caller's access.
        """
        lowered = {str(k).lower(): str(v) for k, v in (headers or {}).items()}
        payload = self._normalize_body(body)

        url = self.required_action_url(lowered)
        if url:
            return RequiredCustomerAction(url=url)

        if http_status < 500:
            missing = self.missing_scopes(http_status, payload)
            if missing is not None:
                return InsufficientScope(missing=missing)

            if self.connection_missing(http_status, payload):
                return ConnectionNotEstablished()

        if self.is_unauthorized(http_status, payload):
            return Unauthorized()

        if http_status in self.transient_statuses:
            return Transient()

        message = self.extract_message(payload) or f"HTTP {http_status}"
        return Unknown(message=message)

    # ── hooks ───────────────────────────────────────────────────────────

    def required_action_url(self, headers: Mapping[str, str]) -> Optional[str]:
        """Return the remediation URL when both headers of the pair are present."""
        if not self.required_action_headers:
            return None
        warning_header, location_header = self.required_action_headers
        warning = headers.get(warning_header.lower())
        location = headers.get(location_header.lower())
        if warning and location:
            return location
        return None

    def missing_scopes(self, http_status: int, payload: Any) -> Optional[FrozenSet[str]]:
        """
        Return the missing scopes (possibly empty) when the body reports a
        permission problem, or ``None`` when it does not.
        """
        message = self.extract_message(payload).lower()
        error_code = ""
        if isinstance(payload, dict):
            error_code = str(payload.get("error", "")).lower()

        if error_code != "insufficient_scope" and not any(m in message for m in self.scope_markers):
            return None

        if not isinstance(payload, dict):
            return frozenset()
        required = _as_set(payload.get("required_scopes"))
        current = _as_set(payload.get("current_scopes"))
        return frozenset(required - current) if current else frozenset(required)

    def is_unauthorized(self, http_status: int, payload: Any) -> bool:
        return http_status == 401

    def connection_missing(self, http_status: int, payload: Any) -> bool:
        message = self.extract_message(payload).lower()
        return any(marker in message for marker in self.connection_markers)

    def extract_message(self, payload: Any) -> str:
        if isinstance(payload, dict):
            for key in ("message", "error_description", "msg", "error"):
                value = payload.get(key)
                if value:
                    return str(value)
            return ""
        if payload is None:
            return ""
        return str(payload)

    # ── helpers ─────────────────────────────────────────────────────────

    @staticmethod
    def _normalize_body(body: Any) -> Any:
        if isinstance(body, (bytes, bytearray)):
            body = body.decode("utf-8", errors="replace")
        if isinstance(body, str):
            text = body.strip()
            if text.startswith("{") or text.startswith("["):
                try:
                    return json.loads(text)
                except ValueError:
                    logger.debug("Error body is not valid JSON; classifying as text")
            return text
        return body


def _as_set(value: Any) -> FrozenSet[str]:
    if not value:
        return frozenset()
    if isinstance(value, str):
        return frozenset(value.replace(",", " ").split())
    return frozenset(str(v) for v in value)
