"""
Telemetry event models.

Producers (the API client wrapper, the auto-labeling classifier, the CLI)
hand the collector either a mapping or one of the payload models below.
Payloads are validated per category, then wrapped in an immutable
MetricEvent carrying the arrival time.

camelCase keys are accepted alongside snake_case, so producers emitting
``{"issueId": ..., "processingTime": ...}`` validate the same as
``{"issue_id": ..., "processing_time_ms": ...}``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .exceptions import EventValidationError

# Every component takes a clock so time windows can be driven from tests
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MetricCategory(Enum):
    """Telemetry categories."""

    AUTO_LABELING = "autoLabeling"
    API_USAGE = "apiUsage"
    PERFORMANCE = "performance"
    USER_ENGAGEMENT = "userEngagement"
    ERROR = "error"
    SYSTEM = "system"


class ErrorSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _ms_field(name: str, camel: str, **kwargs: Any) -> Any:
    # Producers send durations as e.g. "processingTime" (ms) without a suffix
    return Field(
        validation_alias=AliasChoices(name, camel, to_camel(name)),
        **kwargs,
    )


class EventPayload(BaseModel):
    """Base for all category payloads."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class AutoLabelingEvent(EventPayload):
    """One classifier run against an issue."""

    issue_id: Union[int, str]
    processing_time_ms: float = _ms_field("processing_time_ms", "processingTime", ge=0)
    accuracy: Optional[float] = Field(default=None, ge=0, le=1)
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    labels_applied: List[str] = Field(default_factory=list)
    components_detected: List[str] = Field(default_factory=list)
    priority_detected: Optional[str] = None
    security_detected: bool = False
    manual_override: bool = False


class ApiUsageEvent(EventPayload):
    """One call made through the API client wrapper."""

    endpoint: str = Field(min_length=1)
    response_time_ms: float = _ms_field("response_time_ms", "responseTime", ge=0)
    method: str = "GET"
    status_code: Optional[int] = None
    rate_limit_remaining: Optional[int] = None
    rate_limit_reset: Optional[datetime] = None
    success: bool = True
    error_type: Optional[str] = None
    retry_count: int = 0


class PerformanceEvent(EventPayload):
    """Duration of an internal operation."""

    operation: str = Field(min_length=1)
    duration_ms: float = _ms_field("duration_ms", "duration", ge=0)
    success: bool = True
    concurrent_operations: int = 1
    error_type: Optional[str] = None
    memory_rss_bytes: Optional[int] = None


class UserEngagementEvent(EventPayload):
    """Template usage, label edits and similar user actions."""

    type: str = Field(min_length=1)
    user_id: Union[int, str]
    repository: Optional[str] = None
    template: Optional[str] = None
    completed_fields: Optional[int] = None
    time_to_complete_seconds: Optional[float] = _ms_field(
        "time_to_complete_seconds", "timeToComplete", default=None, ge=0
    )
    satisfaction: Optional[int] = Field(default=None, ge=1, le=5)


class ErrorEvent(EventPayload):
    """An error reported by any component."""

    component: str = Field(min_length=1)
    error_type: str = Field(min_length=1)
    error_message: str
    stack: Optional[str] = None
    severity: ErrorSeverity = ErrorSeverity.ERROR
    context: Dict[str, Any] = Field(default_factory=dict)


class SystemEvent(EventPayload):
    """Lifecycle markers and free-form gauges."""

    metric: str = Field(min_length=1)
    value: Optional[Any] = None
    unit: Optional[str] = None
    tags: Dict[str, str] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


PAYLOAD_MODELS: Dict[MetricCategory, Type[EventPayload]] = {
    MetricCategory.AUTO_LABELING: AutoLabelingEvent,
    MetricCategory.API_USAGE: ApiUsageEvent,
    MetricCategory.PERFORMANCE: PerformanceEvent,
    MetricCategory.USER_ENGAGEMENT: UserEngagementEvent,
    MetricCategory.ERROR: ErrorEvent,
    MetricCategory.SYSTEM: SystemEvent,
}


def parse_payload(
    category: MetricCategory,
    event: Union[EventPayload, Mapping[str, Any]],
) -> EventPayload:
    """
    Validate a producer event for a category.

    Args:
        category: Category the event is tracked under
        event: Payload model instance or raw mapping

    Returns:
        Validated, frozen payload model

    Raises:
        EventValidationError: Required fields missing or out of range
    """
    model = PAYLOAD_MODELS[category]
    if isinstance(event, model):
        return event
    if isinstance(event, EventPayload):
        raise EventValidationError(
            category.value,
            f"expected {model.__name__}, got {type(event).__name__}",
        )
    if not isinstance(event, Mapping):
        raise EventValidationError(category.value, "event must be a mapping")

    try:
        return model.model_validate(dict(event))
    except ValidationError as e:
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) or "event"
            for err in e.errors()
        )
        raise EventValidationError(category.value, f"bad or missing fields: {fields}") from e


@dataclass(frozen=True)
class MetricEvent:
    """One recorded telemetry event. Never mutated after recording."""

    category: MetricCategory
    timestamp: datetime
    payload: EventPayload

    def to_dict(self) -> Dict[str, Any]:
        data = self.payload.model_dump(mode="json")
        data["category"] = self.category.value
        data["timestamp"] = self.timestamp.isoformat()
        return data
