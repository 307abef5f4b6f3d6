"""Authentication dependencies shared by the payment routers."""
from __future__ import annotations

import os
from typing import Any, Optional

from fastapi import Cookie, Depends, Header, HTTPException, status

from ... import app_context

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
ADMIN_ROLES = {"admin"}


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
    authorization: Optional[str] = Header(None),
) -> Any:
    return app_context.get_current_user(session_token=session_token, authorization=authorization)


def _get_optional_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
    authorization: Optional[str] = Header(None),
) -> Optional[Any]:
    return app_context.get_optional_current_user(
        session_token=session_token, authorization=authorization
    )


def is_admin(user: Any) -> bool:
    return getattr(user, "role", None) in ADMIN_ROLES


def require_admin(current_user=Depends(_get_current_user)) -> Any:
    if not is_admin(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")
    return current_user


__all__ = ["_get_current_user", "_get_optional_current_user", "is_admin", "require_admin"]
