from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from quotecase.domain.authority import PROTECTED_SOURCES, SupersedeOutcome
from quotecase.domain.models import CandidateFact, FactSnapshot, SupersedeResult, make_value, plain
from quotecase.domain.states import SourceType
from quotecase.errors import RepositoryError
from quotecase.pipeline.flow_classifier import (
    AIR_IMPORT,
    BREAKBULK_PROJECT,
    EXPORT_FLOW,
    SEA_BREAKBULK_IMPORT,
    SEA_FCL_IMPORT,
)
from quotecase.pipeline.reference_data import TRANSIT_HUBS


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssumptionRule:
    key: str
    value: Any
    value_type: str
    confidence: float
    rationale: str


def _rule(key: str, value: Any, value_type: str, confidence: float, rationale: str) -> AssumptionRule:
    return AssumptionRule(key, value, value_type, confidence, rationale)


_IMPORT_COMMON = (
    _rule("pricing.currency", "XOF", "text", 0.5, "Local imports are quoted in XOF"),
    _rule("pricing.vat_rate", 18.0, "number", 0.5, "Standard Senegalese VAT applies to import services"),
)


def _transit_rules(hub: str) -> tuple[AssumptionRule, ...]:
    return (
        _rule("service.package", f"TRANSIT_{hub}_STANDARD", "text", 0.4, f"Default transit package via Dakar to {hub}"),
        _rule("routing.destination_port", "Dakar", "text", 0.5, "Transit cargo is discharged at Dakar"),
        _rule("customs.regime", "TRANSIT", "text", 0.6, "Cargo moves under transit customs regime"),
        _rule("pricing.currency", "XOF", "text", 0.5, "Transit services are quoted in XOF"),
        _rule("pricing.vat_rate", 0.0, "number", 0.5, "Transit services are VAT exempt"),
    )


ASSUMPTION_RULES: Mapping[str, tuple[AssumptionRule, ...]] = MappingProxyType(
    {
        SEA_FCL_IMPORT: (
            _rule("service.package", "IMPORT_FCL_STANDARD", "text", 0.4, "Default full-container import package"),
            _rule("routing.destination_port", "Dakar", "text", 0.5, "Containerized imports discharge at Dakar"),
            *_IMPORT_COMMON,
        ),
        SEA_BREAKBULK_IMPORT: (
            _rule("service.package", "IMPORT_BREAKBULK_STANDARD", "text", 0.4, "Default conventional cargo import package"),
            _rule("routing.destination_port", "Dakar", "text", 0.5, "Breakbulk imports discharge at Dakar"),
            *_IMPORT_COMMON,
        ),
        AIR_IMPORT: (
            _rule("service.package", "IMPORT_AIR_STANDARD", "text", 0.4, "Default air import package"),
            _rule("routing.destination_airport", "DSS", "text", 0.5, "Air imports land at Dakar Blaise Diagne"),
            *_IMPORT_COMMON,
        ),
        BREAKBULK_PROJECT: (
            _rule("service.package", "PROJECT_CARGO_SURVEY", "text", 0.4, "Heavy or oversized cargo needs a project survey"),
            _rule("routing.destination_port", "Dakar", "text", 0.4, "Project cargo discharges at Dakar"),
            _rule("pricing.currency", "EUR", "text", 0.4, "Project cargo is quoted in EUR"),
        ),
        EXPORT_FLOW: (
            _rule("service.package", "EXPORT_STANDARD", "text", 0.4, "Default export package"),
            _rule("routing.origin_port", "Dakar", "text", 0.5, "Exports load at Dakar"),
            _rule("pricing.currency", "XOF", "text", 0.5, "Export services are quoted in XOF"),
            _rule("pricing.vat_rate", 0.0, "number", 0.5, "Export services are zero-rated"),
        ),
        **{f"TRANSIT_{hub}": _transit_rules(hub) for hub in TRANSIT_HUBS},
    }
)


@dataclass
class AssumptionOutcome:
    flow: str
    injected: list[tuple[AssumptionRule, SupersedeResult]] = field(default_factory=list)
    protected: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)


class AssumptionEngine:
    def __init__(self, repo: Any) -> None:
        self.repo = repo

    def rules_for(self, flow: str) -> tuple[AssumptionRule, ...]:
        return ASSUMPTION_RULES.get(flow, ())

    def apply(self, case_id: str, flow: str, snapshot: FactSnapshot) -> AssumptionOutcome:
        outcome = AssumptionOutcome(flow=flow)
        for rule in self.rules_for(flow):
            value = make_value(rule.value, rule.value_type)
            current = snapshot.get(rule.key)
            if current and current.source_type in PROTECTED_SOURCES:
                outcome.protected.append(rule.key)
                continue
            if current and plain(current.value) == plain(value):
                outcome.unchanged.append(rule.key)
                continue

            candidate = CandidateFact(
                key=rule.key,
                category=rule.key.split(".", 1)[0],
                value=value,
                source_type=SourceType.AI_ASSUMPTION,
                confidence=rule.confidence,
                excerpt=rule.rationale,
            )
            try:
                result = self.repo.supersede_fact(case_id, candidate)
            except RepositoryError as exc:
                logger.error("Assumption %s failed to persist for case %s: %s", rule.key, case_id, exc)
                outcome.errors.append((rule.key, str(exc)))
                continue

            if result.outcome in (SupersedeOutcome.INSERTED, SupersedeOutcome.SUPERSEDED):
                logger.info(
                    "Assumption injected case=%s flow=%s %s=%r (%s)",
                    case_id,
                    flow,
                    rule.key,
                    rule.value,
                    rule.rationale,
                )
                outcome.injected.append((rule, result))
            else:
                outcome.unchanged.append(rule.key)
        return outcome
