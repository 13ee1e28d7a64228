"""
Session Guard Decorators.

Factories that produce decorators gating callables behind a portal's
session.

Usage::

    from portal.guards import require_session

    admin_guard = require_session(admin_session)

    @admin_guard
    def deactivate(external_id: str) -> None:
        ...
"""

from __future__ import annotations

from functools import wraps
from typing import Callable, ParamSpec, TypeVar

from portal.auth import SessionManager
from portal.errors import AuthenticationRequiredError

P = ParamSpec("P")
R = TypeVar("R")


def require_session(session: SessionManager) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Return a decorator that enforces a fully authenticated *session*.

    A session waiting for its password change does not pass: the
    principal has to finish rotation first.

    Args:
        session: The portal's ``SessionManager``.

    Returns:
        A decorator suitable for wrapping service-layer callables.
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            if not session.is_authenticated:
                raise AuthenticationRequiredError(
                    f"Sign in to the {session.portal} portal before "
                    "performing this action."
                )
            return func(*args, **kwargs)

        return wrapper

    return decorator
