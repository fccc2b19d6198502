from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from quotecase.contracts.payloads import FACT_KEY_PATTERN
from quotecase.domain.models import Fact, Gap, plain


PassOutcome = Literal["complete", "partial"]
ValueType = Literal["text", "number", "json", "date"]


class FactError(BaseModel):
    key: str
    error: str
    is_critical: bool = False


class BuildPuzzleResult(BaseModel):
    case_id: str
    outcome: PassOutcome
    new_status: str
    request_type: str
    facts_added: int = Field(ge=0)
    facts_updated: int = Field(ge=0)
    facts_skipped: int = Field(ge=0)
    gaps_identified: int = Field(ge=0)
    completeness_pct: int = Field(ge=0, le=100)
    ready_to_price: bool
    fact_errors: list[FactError] = Field(default_factory=list)
    oracle_engine: str

    @model_validator(mode="after")
    def _partial_when_critical(self) -> "BuildPuzzleResult":
        if any(e.is_critical for e in self.fact_errors) and self.outcome != "partial":
            raise ValueError("critical fact errors require a partial outcome")
        return self


class BuildPuzzleRequest(BaseModel):
    force_refresh: bool = False


class SetFactRequest(BaseModel):
    key: str = Field(pattern=FACT_KEY_PATTERN)
    value: Any
    value_type: ValueType = "text"


class StatusTransitionRequest(BaseModel):
    target: str


class FactOut(BaseModel):
    id: str
    key: str
    category: str
    value: Any
    source_type: str
    confidence: float
    source_reference: str | None = None
    excerpt: str = ""
    is_current: bool
    created_at: str

    @classmethod
    def from_fact(cls, fact: Fact) -> "FactOut":
        return cls(
            id=fact.id,
            key=fact.key,
            category=fact.category,
            value=plain(fact.value),
            source_type=fact.source_type.value,
            confidence=fact.confidence,
            source_reference=fact.source_reference,
            excerpt=fact.excerpt,
            is_current=fact.is_current,
            created_at=fact.created_at,
        )


class GapOut(BaseModel):
    id: str
    key: str
    category: str
    question_fr: str
    question_en: str
    priority: str
    is_blocking: bool
    origin: str
    hint: dict[str, Any] | None = None
    status: str

    @classmethod
    def from_gap(cls, gap: Gap) -> "GapOut":
        return cls(
            id=gap.id,
            key=gap.key,
            category=gap.category,
            question_fr=gap.question_fr,
            question_en=gap.question_en,
            priority=gap.priority,
            is_blocking=gap.is_blocking,
            origin=gap.origin,
            hint=gap.hint,
            status=gap.status.value,
        )
