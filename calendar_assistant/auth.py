"""Authentication dependencies for the HTTP API.

Three guards, each a shared secret read from settings:

  - require_api_key()        admin routes: ``X-API-Key`` header or Bearer token
  - require_action_token()   clickable action links: ``?token=`` or ``X-Action-Token``
  - require_summary_token()  public summary: ``?token=``

Behavior matrix (same for all three):
  secret set + matching credential   → allow
  secret set + wrong/missing         → 401 Unauthorized
  secret empty + DEBUG=true          → allow (local dev convenience)
  secret empty + DEBUG=false         → 403 Forbidden (locked in production)
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, Header, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from calendar_assistant.config import Settings

log = logging.getLogger("calendar_assistant.auth")

_bearer_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _check_secret(
    expected: str, supplied: str | None, settings: Settings, name: str, detail: str
) -> None:
    if not expected:
        if settings.debug:
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"{name} not configured. Set {name} in .env.",
        )

    # Bytes, since compare_digest refuses non-ASCII str.
    if not supplied or not secrets.compare_digest(
        supplied.encode("utf-8"), expected.encode("utf-8")
    ):
        log.warning("Rejected request with invalid %s", name)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_api_key(
    settings: Settings = Depends(get_settings),
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    x_api_key: str | None = Header(default=None),
) -> None:
    """FastAPI dependency: protect admin endpoints with the API key."""
    supplied = x_api_key or (credentials.credentials if credentials else None)
    _check_secret(settings.api_key, supplied, settings, "API_KEY", "Unauthorized")


async def require_action_token(
    settings: Settings = Depends(get_settings),
    token: str = Query(default=""),
    x_action_token: str = Header(default=""),
) -> None:
    """FastAPI dependency: protect one-click action links."""
    supplied = token or x_action_token.strip()
    _check_secret(
        settings.action_token, supplied, settings, "ACTION_TOKEN", "Unauthorized action"
    )


async def require_summary_token(
    settings: Settings = Depends(get_settings),
    token: str = Query(default=""),
) -> None:
    """FastAPI dependency: protect the public next-week summary."""
    _check_secret(settings.summary_token, token, settings, "SUMMARY_TOKEN", "Unauthorized")
