from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterator, Literal, Union
from uuid import uuid4

from quotecase.domain.authority import SupersedeOutcome
from quotecase.domain.states import GapStatus, SourceType


ValueType = Literal["text", "number", "json", "date"]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class TextValue:
    value: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True)
class NumberValue:
    value: float
    kind: Literal["number"] = "number"


@dataclass(frozen=True)
class JsonValue:
    value: Any
    kind: Literal["json"] = "json"


@dataclass(frozen=True)
class DateValue:
    value: date
    kind: Literal["date"] = "date"


FactValue = Union[TextValue, NumberValue, JsonValue, DateValue]


def make_value(raw: Any, value_type: str) -> FactValue:
    kind = str(value_type or "text").lower()
    if kind == "number":
        if isinstance(raw, bool):
            raise ValueError("boolean is not a number")
        return NumberValue(float(raw))
    if kind == "json":
        if isinstance(raw, str):
            raw = json.loads(raw)
        return JsonValue(raw)
    if kind == "date":
        if isinstance(raw, datetime):
            return DateValue(raw.date())
        if isinstance(raw, date):
            return DateValue(raw)
        return DateValue(date.fromisoformat(str(raw).strip()[:10]))
    if kind == "text":
        text = str(raw).strip()
        if not text:
            raise ValueError("empty text value")
        return TextValue(text)
    raise ValueError(f"Unsupported value type: {value_type}")


def value_to_columns(value: FactValue) -> dict[str, Any]:
    columns: dict[str, Any] = {
        "value_text": None,
        "value_number": None,
        "value_json": None,
        "value_date": None,
    }
    if isinstance(value, TextValue):
        columns["value_text"] = value.value
    elif isinstance(value, NumberValue):
        columns["value_number"] = value.value
    elif isinstance(value, JsonValue):
        columns["value_json"] = value.value
    elif isinstance(value, DateValue):
        columns["value_date"] = value.value.isoformat()
    return columns


def value_from_columns(row: dict[str, Any]) -> FactValue:
    if row.get("value_json") is not None:
        return make_value(row["value_json"], "json")
    if row.get("value_number") is not None:
        return make_value(row["value_number"], "number")
    if row.get("value_date") is not None:
        return make_value(row["value_date"], "date")
    return TextValue(str(row.get("value_text") or ""))


def plain(value: FactValue) -> Any:
    if isinstance(value, DateValue):
        return value.value.isoformat()
    return value.value


@dataclass(frozen=True)
class CandidateFact:
    """A fact proposed by a producer, not yet written to the store."""

    key: str
    category: str
    value: FactValue
    source_type: SourceType
    confidence: float
    excerpt: str = ""
    source_reference: str | None = None


@dataclass(frozen=True)
class SupersedeResult:
    fact_id: str | None
    outcome: SupersedeOutcome
    previous_fact_id: str | None = None
    previous_value: Any = None


@dataclass
class Fact:
    case_id: str
    key: str
    category: str
    value: FactValue
    source_type: SourceType
    confidence: float
    source_reference: str | None = None
    excerpt: str = ""
    is_current: bool = True
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: str = field(default_factory=utc_now)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "case_id": self.case_id,
            "fact_key": self.key,
            "fact_category": self.category,
            **value_to_columns(self.value),
            "source_type": self.source_type.value,
            "source_reference": self.source_reference,
            "source_excerpt": self.excerpt,
            "confidence": self.confidence,
            "is_current": self.is_current,
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Fact":
        return cls(
            id=str(row["id"]),
            case_id=str(row["case_id"]),
            key=str(row["fact_key"]),
            category=str(row.get("fact_category") or ""),
            value=value_from_columns(row),
            source_type=SourceType(row["source_type"]),
            source_reference=row.get("source_reference"),
            excerpt=str(row.get("source_excerpt") or ""),
            confidence=float(row.get("confidence") or 0.0),
            is_current=bool(row.get("is_current", True)),
            created_at=str(row.get("created_at") or utc_now()),
        )


class FactSnapshot:
    """Read-only view of the current facts of one case, keyed by fact key."""

    def __init__(self, facts: dict[str, Fact] | None = None) -> None:
        self._facts = dict(facts or {})

    def __contains__(self, key: object) -> bool:
        return key in self._facts

    def __iter__(self) -> Iterator[str]:
        return iter(self._facts)

    def __len__(self) -> int:
        return len(self._facts)

    def get(self, key: str) -> Fact | None:
        return self._facts.get(key)

    def value(self, key: str) -> Any:
        fact = self._facts.get(key)
        return plain(fact.value) if fact else None

    def text(self, key: str) -> str:
        raw = self.value(key)
        return str(raw).strip() if isinstance(raw, (str, int, float)) else ""

    def number(self, key: str) -> float | None:
        fact = self._facts.get(key)
        if fact and isinstance(fact.value, NumberValue):
            return fact.value.value
        return None

    def containers(self) -> list[dict[str, Any]]:
        raw = self.value("cargo.containers")
        return [c for c in raw if isinstance(c, dict)] if isinstance(raw, list) else []

    def source(self, key: str) -> SourceType | None:
        fact = self._facts.get(key)
        return fact.source_type if fact else None

    def without_assumptions(self) -> "FactSnapshot":
        return FactSnapshot(
            {k: f for k, f in self._facts.items() if f.source_type != SourceType.AI_ASSUMPTION}
        )

    def as_dict(self) -> dict[str, dict[str, Any]]:
        return {
            key: {"value": plain(fact.value), "source": fact.source_type.value, "confidence": fact.confidence}
            for key, fact in sorted(self._facts.items())
        }


@dataclass
class Gap:
    case_id: str
    key: str
    category: str
    question_fr: str
    question_en: str
    priority: str
    is_blocking: bool
    origin: str = "schema"
    hint: dict[str, Any] | None = None
    status: GapStatus = GapStatus.OPEN
    resolved_by_fact_id: str | None = None
    resolved_reason: str | None = None
    resolved_at: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: str = field(default_factory=utc_now)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "case_id": self.case_id,
            "gap_key": self.key,
            "gap_category": self.category,
            "question_fr": self.question_fr,
            "question_en": self.question_en,
            "priority": self.priority,
            "is_blocking": self.is_blocking,
            "origin": self.origin,
            "hint": self.hint,
            "status": self.status.value,
            "resolved_by_fact_id": self.resolved_by_fact_id,
            "resolved_reason": self.resolved_reason,
            "resolved_at": self.resolved_at,
            "created_at": self.created_at,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Gap":
        return cls(
            id=str(row["id"]),
            case_id=str(row["case_id"]),
            key=str(row["gap_key"]),
            category=str(row.get("gap_category") or ""),
            question_fr=str(row.get("question_fr") or ""),
            question_en=str(row.get("question_en") or ""),
            priority=str(row.get("priority") or "medium"),
            is_blocking=bool(row.get("is_blocking", False)),
            origin=str(row.get("origin") or "schema"),
            hint=row.get("hint"),
            status=GapStatus(row.get("status") or GapStatus.OPEN.value),
            resolved_by_fact_id=row.get("resolved_by_fact_id"),
            resolved_reason=row.get("resolved_reason"),
            resolved_at=row.get("resolved_at"),
            created_at=str(row.get("created_at") or utc_now()),
        )


@dataclass
class TimelineEvent:
    case_id: str
    event_type: str
    event_data: dict[str, Any]
    actor_type: str = "system"
    related_fact_id: str | None = None
    related_gap_id: str | None = None
    previous_value: str | None = None
    new_value: str | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: str = field(default_factory=utc_now)
