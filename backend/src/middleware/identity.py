"""
Caller identity dependencies.

Authentication happens upstream (reverse proxy / SSO); requests arrive
with the verified identity in headers:

- X-User-Id: stable user identifier (required for mutating endpoints)
- X-User-Email: user e-mail (recorded in audit entries)
- X-User-Role: optional role (viewer, requester, approver, admin)

When no role header is present, users of the configured admin domain are
admins and everybody else is a requester.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from backend.src.config.settings import AppSettings, get_settings
from backend.src.services.permissions import Actor, resolve_role
from backend.src.utils.logging_config import get_logger


logger = get_logger("api")


async def get_optional_actor(
    x_user_id: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    settings: AppSettings = Depends(get_settings),
) -> Optional[Actor]:
    """
    Build the caller Actor from headers, or None for anonymous requests.
    """
    if not x_user_id or not x_user_id.strip():
        return None
    role = resolve_role(x_user_role, x_user_email, settings.admin_domain)
    return Actor(user_id=x_user_id.strip(), email=x_user_email, role=role)


async def get_actor(actor: Optional[Actor] = Depends(get_optional_actor)) -> Actor:
    """
    Require a caller identity.

    Raises:
        HTTPException: 401 if the X-User-Id header is missing
    """
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Caller identity required (X-User-Id header)",
        )
    return actor
