from __future__ import annotations

import json
import logging
from typing import Any

from quotecase.domain.models import TimelineEvent
from quotecase.events.contracts import validate_actor_type, validate_event_payload


logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str, ensure_ascii=False)


class TimelineRecorder:
    """Writes case timeline events. Storage failures are logged, never raised."""

    def __init__(self, repo: Any) -> None:
        self.repo = repo

    def record(
        self,
        case_id: str,
        event_type: str,
        event_data: dict[str, Any],
        *,
        actor_type: str = "system",
        related_fact_id: str | None = None,
        related_gap_id: str | None = None,
        previous_value: Any = None,
        new_value: Any = None,
    ) -> dict[str, Any] | None:
        validate_event_payload(event_type, event_data)
        validate_actor_type(actor_type)
        event = TimelineEvent(
            case_id=case_id,
            event_type=event_type,
            event_data=event_data,
            actor_type=actor_type,
            related_fact_id=related_fact_id,
            related_gap_id=related_gap_id,
            previous_value=_as_text(previous_value),
            new_value=_as_text(new_value),
        )
        try:
            return self.repo.create_timeline_event(event)
        except Exception as exc:
            logger.warning("Timeline event %s for case %s not recorded: %s", event_type, case_id, exc)
            return None
