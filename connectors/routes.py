"""
Connector API routes — provider list, status, connect, disconnect.

Route prefix: /api/v1/connectors
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from auth.dependencies import get_connection_manager, get_current_user_id
from connectors.errors import ProviderNotConfiguredError, TokenExchangeError, TransientError
from connectors.manager import ConnectionManager
from connectors.models import StatusReport

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])


class ConnectRequest(BaseModel):
    auth_code: str = Field(..., min_length=1, description="OAuth authorization code or provider bearer token")


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(
    manager: ConnectionManager = Depends(get_connection_manager),
) -> List[Dict[str, Any]]:
    """
    List all known providers and their configuration status.
    No auth required — used by frontend to show available connectors.
    """
    return manager.registry.list_providers()


@router.get("/{provider}/status", response_model=StatusReport)
async def connection_status(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    manager: ConnectionManager = Depends(get_connection_manager),
) -> StatusReport:
    """Recompute the connection status (credential check + live probes)."""
    try:
        return await manager.check_status(user_id, provider)
    except ProviderNotConfiguredError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(exc))


@router.post("/{provider}/connect", response_model=StatusReport)
async def connect(
    provider: str,
    req: ConnectRequest,
    user_id: str = Depends(get_current_user_id),
    manager: ConnectionManager = Depends(get_connection_manager),
) -> StatusReport:
    """Exchange the authorization code for tokens and report the new status."""
    try:
        return await manager.connect(user_id, provider, req.auth_code)
    except ProviderNotConfiguredError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(exc))
    except TokenExchangeError as exc:
        logger.error("Token exchange failed for %s/%s: %s", provider, user_id, exc)
        raise HTTPException(status.HTTP_400_BAD_REQUEST, f"Connection failed: {exc}")
    except TransientError as exc:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))


@router.post("/{provider}/disconnect")
async def disconnect(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    manager: ConnectionManager = Depends(get_connection_manager),
) -> Dict[str, str]:
    """Revoke and delete the stored credential. Safe to repeat."""
    await manager.disconnect(user_id, provider)
    return {"status": "disconnected", "provider": provider}
