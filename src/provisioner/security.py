"""Secret hygiene and security audit events.

SECURITY INVARIANTS:
1. The account key never appears in log output or exception messages
2. Every permission grant or rotation is logged as a structured audit event
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

# Shown in place of redacted values
REDACTED = "***"

_ACCOUNT_KEY_PATTERN = re.compile(r"(AccountKey=)[^;]*", re.IGNORECASE)


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Mask a secret, keeping a short prefix for correlation.

    Args:
        value: The secret to mask.
        visible: Number of leading characters to keep.

    Returns:
        Masked representation, or REDACTED for short/empty values.
    """
    if not value or len(value) <= visible * 2:
        return REDACTED
    return value[:visible] + REDACTED


def redact_connection_string(connection_string: str) -> str:
    """Replace the AccountKey segment of a connection string."""
    return _ACCOUNT_KEY_PATTERN.sub(lambda m: m.group(1) + REDACTED, connection_string or "")


def log_security_audit_event(
    event_type: str,
    database: str,
    user_name: str,
    resource_link: str | None = None,
    action: str | None = None,
    result: str | None = None,
    permission_mode: str | None = None,
) -> None:
    """Log a security-relevant audit event.

    Args:
        event_type: Type of security event (permission_grant, permission_lookup, ...).
        database: Database holding the user.
        user_name: User the event concerns.
        resource_link: Resource the permission is scoped to.
        action: Action being performed (create, replace, none).
        result: Result of the action (success, not_found, unchanged).
        permission_mode: Access level involved.
    """
    logger.info(
        f"Security audit: {event_type}",
        extra={
            "security_audit": True,
            "event_type": event_type,
            "database": database,
            "user": user_name,
            "resource_link": resource_link,
            "action": action,
            "result": result,
            "permission_mode": permission_mode,
        },
    )
