"""
Base Service Class.

Minimal base class standardizing the logger pattern for session
services.  Services extend this and add their own collaborators via
``__init__``.
"""

from __future__ import annotations

from sessionsync.logger import StructuredLogger


class BaseService:
    """Base class for all session services.

    Provides the injected logger and an event-tagged logging helper so
    every session transition can be filtered by its ``event`` field in
    the JSON output.
    """

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger

    def _log_event(
        self,
        level: int,
        event: str,
        msg: str,
        *args: object,
        **fields: object,
    ) -> None:
        """Log *msg* at *level* with ``event`` and *fields* as structured extras."""
        self._logger.logger.log(level, msg, *args, extra={"event": event, **fields})
