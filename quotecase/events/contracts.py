from __future__ import annotations

from typing import Any

ACTOR_TYPES = {"ai", "system", "operator"}

TIMELINE_EVENTS = {
    "fact_added",
    "fact_superseded",
    "fact_insert_failed",
    "fact_injected_manual",
    "fact_retracted",
    "assumption_injected",
    "hs_resolved",
    "gap_identified",
    "gap_resolved",
    "flow_classified",
    "status_changed",
    "puzzle_built",
}


def is_valid_event_type(event_type: str) -> bool:
    return event_type in TIMELINE_EVENTS


EVENT_REQUIRED_KEYS: dict[str, set[str]] = {
    "fact_added": {"fact_key", "source_type"},
    "fact_superseded": {"fact_key", "source_type"},
    "fact_insert_failed": {"fact_key", "error"},
    "fact_injected_manual": {"fact_key", "value"},
    "fact_retracted": {"fact_key", "reason"},
    "assumption_injected": {"fact_key", "flow", "rationale"},
    "hs_resolved": {"input", "code"},
    "gap_identified": {"gap_key", "is_blocking"},
    "gap_resolved": {"gap_key", "reason"},
    "flow_classified": {"request_type", "trace"},
    "status_changed": {"from", "to"},
    "puzzle_built": {"facts_added", "facts_updated", "completeness_pct"},
}


def validate_event_payload(event_type: str, payload: dict[str, Any]) -> None:
    if not is_valid_event_type(event_type):
        raise ValueError(f"Unsupported event type: {event_type}")

    required = EVENT_REQUIRED_KEYS.get(event_type)
    if not required:
        return

    missing = sorted(k for k in required if k not in payload)
    if missing:
        raise ValueError(f"Event payload missing required keys for {event_type}: {missing}")


def validate_actor_type(actor_type: str) -> None:
    if actor_type not in ACTOR_TYPES:
        raise ValueError(f"Unsupported actor type: {actor_type}")
