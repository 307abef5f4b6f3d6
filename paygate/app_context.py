"""Late-bound hooks that let the payment routers reach the host application.

``paygate.main`` owns the database settings and the session token format; the
domain packages only need a connection factory and the two user resolvers, so
they look them up here instead of importing ``main`` (which would be circular).
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

_hooks: Dict[str, Callable[..., Any]] = {}

_REQUIRED_HOOKS = ("get_conn", "get_current_user", "get_optional_current_user")


def configure(
    *,
    get_conn: Callable[[], Any],
    get_current_user: Callable[..., Any],
    get_optional_current_user: Callable[..., Optional[Any]],
) -> None:
    _hooks.update(
        get_conn=get_conn,
        get_current_user=get_current_user,
        get_optional_current_user=get_optional_current_user,
    )


def is_configured() -> bool:
    return all(name in _hooks for name in _REQUIRED_HOOKS)


def _hook(name: str) -> Callable[..., Any]:
    try:
        return _hooks[name]
    except KeyError:
        raise RuntimeError(f"Application context has not been configured yet: {name}") from None


def get_conn() -> Any:
    return _hook("get_conn")()


def get_current_user(*, session_token: Optional[str], authorization: Optional[str]) -> Any:
    return _hook("get_current_user")(session_token, authorization)


def get_optional_current_user(
    *, session_token: Optional[str], authorization: Optional[str]
) -> Optional[Any]:
    return _hook("get_optional_current_user")(session_token, authorization)
