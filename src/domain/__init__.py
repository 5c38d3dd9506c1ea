"""
Domain events for the benefit rules platform.

Events are published on an in-process EventBus; handlers log them,
record them for the audit feed, or trigger follow-up work.
"""

from .events import (
    EventType,
    DomainEvent,
    RuleCreated,
    RuleApproved,
    RuleSuperseded,
    MappingProposed,
    MappingApproved,
    MappingRejected,
    ReverificationQueued,
    ReverificationCompleted,
    EvaluationRunCompleted,
)
from .event_bus import (
    EventBus,
    LoggingEventHandler,
    RecordingEventHandler,
    get_event_bus,
    publish_event,
)

__all__ = [
    "EventType",
    "DomainEvent",
    "RuleCreated",
    "RuleApproved",
    "RuleSuperseded",
    "MappingProposed",
    "MappingApproved",
    "MappingRejected",
    "ReverificationQueued",
    "ReverificationCompleted",
    "EvaluationRunCompleted",
    "EventBus",
    "LoggingEventHandler",
    "RecordingEventHandler",
    "get_event_bus",
    "publish_event",
]
