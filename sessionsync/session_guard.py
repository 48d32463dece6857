"""
Session Guard Decorator.

Provides a factory that produces a decorator for gating async
application callables behind a resolved session.

Usage::

    from sessionsync.session_guard import require_session

    guard = require_session(controller.reader)

    @guard
    async def load_dashboard() -> Dashboard:
        return ...
"""

from __future__ import annotations

from functools import wraps
from typing import Awaitable, Callable, ParamSpec, TypeVar

from sessionsync.session_store import SessionReader

P = ParamSpec("P")
R = TypeVar("R")


class AuthenticationError(RuntimeError):
    """Raised when a guarded callable runs without a resolved session."""


def require_session(
    reader: SessionReader,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Return a decorator that enforces a resolved session via *reader*.

    The check happens on every call, against the snapshot current at
    that moment.  A session that is authenticated but has no profile
    (still resolving) does not pass.

    Args:
        reader: Read-only view of the session store.

    Returns:
        A decorator suitable for wrapping coroutine functions.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            state = reader.get()
            if not state.authenticated or state.user is None:
                raise AuthenticationError(
                    "Authentication required. Please sign in before "
                    "performing this action."
                )
            return await func(*args, **kwargs)

        return wrapper

    return decorator
