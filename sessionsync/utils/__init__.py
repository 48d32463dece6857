"""Shared utility functions and models for the SessionSync engine.

Convenience re-exports so that consumers can import directly from
``sessionsync.utils`` while full absolute imports remain supported.
"""

from sessionsync.utils.audit import AuditEvent, log_audit_event

__all__ = [
    "AuditEvent",
    "log_audit_event",
]
