"""
Security event recording.

Verification failures and CORS rejections are recorded in a bounded
in-memory ring buffer so a merchant (or an operator) can see recent
rejected traffic for their store. Recording also logs; critical events
are logged at error level.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventType:
    INVALID_WEBHOOK = "invalid_webhook"
    AUTH_FAILURE = "auth_failure"
    CORS_REJECTED = "cors_rejected"


class Severity:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SecurityEvent:
    type: str
    severity: str
    tenant_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)


class SecurityEventLog:
    """
    Ring buffer of recent security events.

    Args:
        max_events: Buffer size; the oldest events are dropped first
        clock: Returns the current UTC datetime
    """

    def __init__(self, max_events: int = 1000, clock: Callable[[], datetime] = _utcnow):
        self._events: Deque[SecurityEvent] = deque(maxlen=max_events)
        self._clock = clock

    def __len__(self) -> int:
        return len(self._events)

    def record(
        self,
        event_type: str,
        severity: str,
        tenant_id: Optional[str] = None,
        **details: Any,
    ) -> SecurityEvent:
        event = SecurityEvent(
            type=event_type,
            severity=severity,
            tenant_id=tenant_id,
            details=details,
            timestamp=self._clock(),
        )
        self._events.append(event)

        level = logging.ERROR if severity == Severity.CRITICAL else logging.WARNING
        logger.log(
            level,
            "Security event: %s",
            event_type,
            extra={"tenant_id": tenant_id, "severity": severity, "details": details},
        )
        return event

    def recent(self, tenant_id: Optional[str] = None, hours: int = 24) -> List[SecurityEvent]:
        """Events newer than ``hours``, newest first, optionally for one tenant."""
        cutoff = self._clock() - timedelta(hours=hours)
        return [
            event
            for event in reversed(self._events)
            if event.timestamp >= cutoff and (tenant_id is None or event.tenant_id == tenant_id)
        ]

    def metrics(self, tenant_id: Optional[str] = None, hours: int = 24) -> Dict[str, int]:
        events = self.recent(tenant_id, hours)
        return {
            "total": len(events),
            "invalidWebhooks": sum(1 for e in events if e.type == EventType.INVALID_WEBHOOK),
            "authFailures": sum(1 for e in events if e.type == EventType.AUTH_FAILURE),
            "corsRejections": sum(1 for e in events if e.type == EventType.CORS_REJECTED),
            "critical": sum(1 for e in events if e.severity == Severity.CRITICAL),
        }
