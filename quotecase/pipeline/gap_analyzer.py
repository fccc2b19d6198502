from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from quotecase.domain.models import FactSnapshot, Gap
from quotecase.domain.states import SourceType
from quotecase.pipeline.flow_classifier import (
    AIR_IMPORT,
    BREAKBULK_PROJECT,
    EXPORT_FLOW,
    SEA_BREAKBULK_IMPORT,
    SEA_FCL_IMPORT,
    UNKNOWN,
)
from quotecase.pipeline.hs_resolver import HS_FACT_KEY, HS_GAP_ORIGIN
from quotecase.pipeline.reference_data import TRANSIT_HUBS


SCHEMA_GAP_ORIGIN = "schema"
REASON_FACT_PROVIDED = "fact_provided"
REASON_NOT_REQUIRED = "not required for this flow"
REASON_HS_RESOLVED = "hs_code_resolved"


@dataclass(frozen=True)
class GapQuestion:
    fr: str
    en: str
    priority: str


GAP_QUESTIONS: Mapping[str, GapQuestion] = MappingProxyType(
    {
        "routing.incoterm": GapQuestion(
            "Quel Incoterm souhaitez-vous ? (FOB, CFR, CIF, DAP, DDP...)",
            "Which Incoterm do you prefer? (FOB, CFR, CIF, DAP, DDP...)",
            "critical",
        ),
        "routing.destination_city": GapQuestion(
            "Quelle est la ville de livraison finale ?",
            "What is the final delivery city?",
            "critical",
        ),
        "routing.destination_port": GapQuestion(
            "Quel est le port de destination ?",
            "What is the destination port?",
            "high",
        ),
        "routing.origin_port": GapQuestion(
            "Quel est le port de chargement (POL) ?",
            "What is the port of loading (POL)?",
            "critical",
        ),
        "routing.origin_airport": GapQuestion(
            "Quel est l'aéroport de départ ?",
            "What is the departure airport?",
            "critical",
        ),
        "cargo.containers": GapQuestion(
            "Combien de conteneurs et de quel type ? (ex: 2x40HC)",
            "How many containers and which type? (e.g. 2x40HC)",
            "critical",
        ),
        "cargo.weight_kg": GapQuestion(
            "Quel est le poids brut total (kg) ?",
            "What is the total gross weight (kg)?",
            "high",
        ),
        "cargo.volume_cbm": GapQuestion(
            "Quel est le volume total (m³) ?",
            "What is the total volume (cbm)?",
            "high",
        ),
        "cargo.value": GapQuestion(
            "Quelle est la valeur de la marchandise ?",
            "What is the value of the goods?",
            "high",
        ),
        "cargo.description": GapQuestion(
            "Pouvez-vous décrire la marchandise ?",
            "Can you describe the goods?",
            "medium",
        ),
        "cargo.pieces_count": GapQuestion(
            "Combien de colis ?",
            "How many pieces?",
            "high",
        ),
        "contacts.client_email": GapQuestion(
            "Quelle est l'adresse email du client ?",
            "What is the client's email address?",
            "medium",
        ),
        "timing.loading_date": GapQuestion(
            "Quelle est la date de chargement prévue ?",
            "What is the planned loading date?",
            "medium",
        ),
    }
)


def question_for(key: str) -> GapQuestion:
    return GAP_QUESTIONS.get(
        key,
        GapQuestion(f"Information manquante: {key}", f"Missing information: {key}", "medium"),
    )


@dataclass(frozen=True)
class MandatoryFact:
    key: str
    blocking: bool


def _m(key: str, blocking: bool = True) -> MandatoryFact:
    return MandatoryFact(key, blocking)


def _transit_schema() -> tuple[MandatoryFact, ...]:
    return (
        _m("routing.destination_city"),
        _m("cargo.description"),
        _m("cargo.weight_kg"),
        _m("routing.origin_port", False),
        _m("contacts.client_email", False),
    )


MANDATORY_FACTS: Mapping[str, tuple[MandatoryFact, ...]] = MappingProxyType(
    {
        SEA_FCL_IMPORT: (
            _m("routing.origin_port"),
            _m("routing.destination_city"),
            _m("routing.incoterm"),
            _m("cargo.description", False),
            _m("cargo.containers"),
            _m("contacts.client_email", False),
        ),
        AIR_IMPORT: (
            _m("routing.origin_airport"),
            _m("routing.destination_city"),
            _m("routing.incoterm"),
            _m("cargo.description", False),
            _m("cargo.weight_kg"),
            _m("cargo.pieces_count", False),
            _m("cargo.value", False),
            _m("contacts.client_email", False),
        ),
        SEA_BREAKBULK_IMPORT: (
            _m("routing.origin_port"),
            _m("routing.destination_city"),
            _m("routing.incoterm"),
            _m("cargo.description"),
            _m("cargo.weight_kg"),
            _m("cargo.volume_cbm", False),
            _m("contacts.client_email", False),
        ),
        BREAKBULK_PROJECT: (
            _m("routing.origin_port"),
            _m("routing.destination_city"),
            _m("cargo.description"),
            _m("cargo.weight_kg"),
            _m("cargo.volume_cbm"),
            _m("cargo.pieces_count", False),
            _m("contacts.client_email", False),
        ),
        EXPORT_FLOW: (
            _m("routing.destination_port"),
            _m("cargo.description"),
            _m("cargo.weight_kg"),
            _m("timing.loading_date", False),
            _m("contacts.client_email", False),
        ),
        UNKNOWN: (
            _m("routing.destination_city"),
            _m("cargo.description"),
            _m("contacts.client_email", False),
        ),
        **{f"TRANSIT_{hub}": _transit_schema() for hub in TRANSIT_HUBS},
    }
)


def mandatory_keys(request_type: str) -> frozenset[str]:
    return frozenset(m.key for m in MANDATORY_FACTS.get(request_type, ()))


def completeness_pct(mandatory_count: int, open_gap_count: int) -> int:
    if mandatory_count <= 0:
        return 0
    ratio = max(0, mandatory_count - open_gap_count) / mandatory_count * 100
    return int(math.floor(ratio + 0.5))


@dataclass
class GapAnalysis:
    request_type: str
    mandatory_count: int
    open_gaps: list[Gap]
    created: list[Gap] = field(default_factory=list)
    resolved: list[Gap] = field(default_factory=list)

    @property
    def open_blocking(self) -> int:
        return sum(1 for g in self.open_gaps if g.is_blocking)

    @property
    def completeness(self) -> int:
        return completeness_pct(self.mandatory_count, len(self.open_gaps))


class GapAnalyzer:
    def __init__(self, repo: Any) -> None:
        self.repo = repo

    def _new_gap(self, case_id: str, item: MandatoryFact) -> Gap:
        question = question_for(item.key)
        return Gap(
            case_id=case_id,
            key=item.key,
            category=item.key.split(".", 1)[0],
            question_fr=question.fr,
            question_en=question.en,
            priority=question.priority,
            is_blocking=item.blocking,
            origin=SCHEMA_GAP_ORIGIN,
        )

    def analyze(self, case_id: str, request_type: str, snapshot: FactSnapshot) -> GapAnalysis:
        schema = MANDATORY_FACTS.get(request_type, ())
        required = {m.key for m in schema}
        open_by_key = {g.key: g for g in self.repo.list_open_gaps(case_id)}
        created: list[Gap] = []
        resolved: list[Gap] = []

        for item in schema:
            fact = snapshot.get(item.key)
            qualifying = fact is not None and fact.source_type != SourceType.AI_ASSUMPTION
            gap = open_by_key.pop(item.key, None)
            if qualifying and gap:
                resolved.append(self.repo.resolve_gap(gap.id, resolved_by_fact_id=fact.id, reason=REASON_FACT_PROVIDED))
            elif not qualifying and gap is None:
                gap, was_created = self.repo.open_gap(self._new_gap(case_id, item))
                if was_created:
                    created.append(gap)
            elif gap is not None and gap.is_blocking != item.blocking:
                # Blocking subsets differ per flow; the open gap follows the current one.
                self.repo.set_gap_blocking(gap.id, item.blocking)

        # Gaps left here are not part of the current schema.
        for key, gap in open_by_key.items():
            if gap.origin == SCHEMA_GAP_ORIGIN and key not in required:
                resolved.append(self.repo.resolve_gap(gap.id, resolved_by_fact_id=None, reason=REASON_NOT_REQUIRED))
            elif gap.origin == HS_GAP_ORIGIN:
                fact = snapshot.get(HS_FACT_KEY)
                if fact is not None and fact.source_type != SourceType.AI_ASSUMPTION:
                    resolved.append(self.repo.resolve_gap(gap.id, resolved_by_fact_id=fact.id, reason=REASON_HS_RESOLVED))

        return GapAnalysis(
            request_type=request_type,
            mandatory_count=len(schema),
            open_gaps=self.repo.list_open_gaps(case_id),
            created=created,
            resolved=resolved,
        )
