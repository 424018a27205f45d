"""Trafficlens — Insight Event Registry.

Defines the canonical set of insight event types and how each one is stored.
Daily anomaly events are upserted per (user, date, type, key); weekly insight
events are cleared and regenerated in bulk on every detection run.
"""

from enum import Enum
from typing import Dict


class EventType(str, Enum):
    """Every event type a detector can emit."""

    SPIKE = "spike"
    DROP = "drop"
    MILESTONE = "milestone"
    STREAK = "streak"
    WEEKLY_MOMENTUM = "weekly_momentum"
    QUALITY_TRAFFIC = "quality_traffic"
    REFERRER_MILESTONE = "referrer_milestone"
    GROWTH_ACCELERATION = "growth_acceleration"
    REFERRER_RISK = "referrer_risk"


class EventCadence(str, Enum):
    """How an event type's rows are maintained."""

    DAILY = "daily"  # Upserted, one row per (user, date, type, key)
    WEEKLY = "weekly"  # Deleted and regenerated for the look-back window


class EventDefinition:
    """Describes a single event type."""

    def __init__(
        self, event_type: EventType, cadence: EventCadence, unit: str = "", description: str = ""
    ):
        self.event_type = event_type
        self.cadence = cadence
        self.unit = unit
        self.description = description

    def __repr__(self) -> str:
        return f"<Event {self.event_type.value} ({self.cadence.value})>"


# ─────────────────────────────────────────────
# EVENT TYPES: canonical registry
# ─────────────────────────────────────────────

EVENT_TYPES: Dict[EventType, EventDefinition] = {
    # Daily anomalies
    EventType.SPIKE: EventDefinition(
        EventType.SPIKE, EventCadence.DAILY, "visitors", "Day-over-day jump above 50%"
    ),
    EventType.DROP: EventDefinition(
        EventType.DROP, EventCadence.DAILY, "visitors", "Day-over-day fall below 70%"
    ),
    EventType.MILESTONE: EventDefinition(
        EventType.MILESTONE, EventCadence.DAILY, "visitors", "Daily visitors crossed a threshold"
    ),
    EventType.STREAK: EventDefinition(
        EventType.STREAK, EventCadence.DAILY, "days", "Consecutive days of growth"
    ),
    # Weekly insights
    EventType.WEEKLY_MOMENTUM: EventDefinition(
        EventType.WEEKLY_MOMENTUM, EventCadence.WEEKLY, "%", "Week-over-week visitor change"
    ),
    EventType.QUALITY_TRAFFIC: EventDefinition(
        EventType.QUALITY_TRAFFIC, EventCadence.WEEKLY, "score", "High-engagement week"
    ),
    EventType.REFERRER_MILESTONE: EventDefinition(
        EventType.REFERRER_MILESTONE, EventCadence.WEEKLY, "%", "Referrer dominated a week"
    ),
    EventType.GROWTH_ACCELERATION: EventDefinition(
        EventType.GROWTH_ACCELERATION, EventCadence.WEEKLY, "%", "Weekly growth is speeding up"
    ),
    EventType.REFERRER_RISK: EventDefinition(
        EventType.REFERRER_RISK, EventCadence.WEEKLY, "%", "Over-reliance on one referrer"
    ),
}


# ─────────────────────────────────────────────
# HELPERS
# ─────────────────────────────────────────────


def get_event(event_type: str) -> EventDefinition | None:
    """Look up an event definition by its string value."""
    try:
        return EVENT_TYPES.get(EventType(event_type))
    except ValueError:
        return None


def event_types_by_cadence(cadence: EventCadence) -> list[str]:
    """Return the string values of all event types with a given cadence."""
    return [e.value for e, d in EVENT_TYPES.items() if d.cadence == cadence]


WEEKLY_EVENT_TYPES = event_types_by_cadence(EventCadence.WEEKLY)
