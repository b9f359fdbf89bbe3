"""
Value types shared by the health, alerting and dashboard layers.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple


class HealthStatus(Enum):
    """Health status levels, ordered by severity."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    HealthStatus.UNKNOWN: -1,
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


def worst_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Most severe status; UNKNOWN when there is nothing to compare."""
    return max(statuses, key=lambda s: s.severity, default=HealthStatus.UNKNOWN)


class AlertLevel(Enum):
    WARNING = "warning"
    CRITICAL = "critical"


AlertKey = Tuple[str, str]


@dataclass(frozen=True)
class AlertDescriptor:
    """
    A threshold breach to raise as an alert.

    component and metric together form the alert key: at most one active
    alert exists per key.
    """

    component: str
    metric: str
    level: AlertLevel
    message: str
    value: Optional[float] = None
    threshold: Optional[float] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> AlertKey:
        return (self.component, self.metric)

    def to_dict(self) -> dict:
        return {
            "component": self.component,
            "metric": self.metric,
            "level": self.level.value,
            "message": self.message,
            "value": self.value,
            "threshold": self.threshold,
            "details": dict(self.details),
        }
