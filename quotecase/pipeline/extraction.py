from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from pydantic import ValidationError

from quotecase.contracts.payloads import OracleFactPayload
from quotecase.domain.models import CandidateFact, JsonValue, TextValue, make_value
from quotecase.domain.states import SourceType
from quotecase.errors import OracleUnavailable
from quotecase.pipeline.reference_data import INCOTERMS
from quotecase.pipeline.regex_extractor import (
    RegexFactExtractor,
    clean_destination_city,
    detect_mode,
    parse_containers,
    pick_incoterm,
)


logger = logging.getLogger(__name__)

AIRPORT_KEYS = ("routing.origin_airport", "routing.destination_airport")


class FactOracle(Protocol):
    enabled: bool

    def extract_facts(self, thread_text: str, attachment_text: str = "") -> list[dict[str, Any]]:
        ...


@dataclass
class ExtractionOutcome:
    candidates: list[CandidateFact]
    engine: str
    transport_mode: str | None = None
    skipped: list[str] = field(default_factory=list)


def _to_candidate(item: OracleFactPayload, source_reference: str | None) -> CandidateFact:
    return CandidateFact(
        key=item.key,
        category=item.resolved_category(),
        value=make_value(item.value, item.value_type),
        source_type=SourceType.AI_ASSUMPTION if item.is_assumption else SourceType.AI_EXTRACTION,
        confidence=item.confidence,
        excerpt=item.source_excerpt[:500],
        source_reference=source_reference,
    )


@dataclass
class FactExtractionModule:
    oracle: FactOracle | None = None
    fallback: RegexFactExtractor = field(default_factory=RegexFactExtractor)

    def _raw_facts(self, thread_text: str, attachment_text: str) -> tuple[list[dict[str, Any]], str]:
        if self.oracle is None or not self.oracle.enabled:
            return self.fallback.extract_facts(thread_text, attachment_text), "regex"
        try:
            return self.oracle.extract_facts(thread_text, attachment_text), "groq"
        except OracleUnavailable as exc:
            logger.warning("Extraction oracle unavailable, using regex extractor: %s", exc)
            return self.fallback.extract_facts(thread_text, attachment_text), "regex_fallback"

    def extract(
        self,
        thread_text: str,
        attachment_text: str = "",
        *,
        source_reference: str | None = None,
    ) -> ExtractionOutcome:
        raw, engine = self._raw_facts(thread_text, attachment_text)

        candidates: dict[str, CandidateFact] = {}
        skipped: list[str] = []
        for item in raw:
            try:
                payload = OracleFactPayload.model_validate(item)
                candidate = _to_candidate(payload, source_reference)
            except (ValidationError, ValueError, TypeError) as exc:
                key = item.get("key") if isinstance(item, dict) else None
                logger.info("Skipping invalid extracted fact %s: %s", key, exc)
                skipped.append(str(key))
                continue
            # First proposal per key wins within one extraction.
            candidates.setdefault(candidate.key, candidate)

        full_text = f"{thread_text}\n{attachment_text}".strip()
        mode = self._apply_post_rules(candidates, full_text, source_reference)
        return ExtractionOutcome(list(candidates.values()), engine, mode, skipped)

    def _apply_post_rules(
        self,
        candidates: dict[str, CandidateFact],
        text: str,
        source_reference: str | None,
    ) -> str | None:
        containers_fact = candidates.get("cargo.containers")
        containers = containers_fact.value.value if containers_fact and isinstance(containers_fact.value, JsonValue) else None
        if not containers:
            containers = parse_containers(text)
            if containers:
                candidates["cargo.containers"] = CandidateFact(
                    key="cargo.containers",
                    category="cargo",
                    value=JsonValue(containers),
                    source_type=SourceType.AI_EXTRACTION,
                    confidence=0.85,
                    excerpt="container pattern",
                    source_reference=source_reference,
                )

        mode, pair = detect_mode(text, containers if isinstance(containers, list) else None)
        candidates.pop("routing.transport_mode", None)
        if mode != "AIR":
            for key in AIRPORT_KEYS:
                candidates.pop(key, None)
        elif pair:
            for key, code in zip(AIRPORT_KEYS, pair):
                candidates.setdefault(
                    key,
                    CandidateFact(
                        key=key,
                        category="routing",
                        value=TextValue(code),
                        source_type=SourceType.AI_EXTRACTION,
                        confidence=0.7,
                        excerpt=f"{pair[0]}-{pair[1]}",
                        source_reference=source_reference,
                    ),
                )
        if mode:
            candidates["routing.transport_mode"] = CandidateFact(
                key="routing.transport_mode",
                category="routing",
                value=TextValue(mode),
                source_type=SourceType.AI_EXTRACTION,
                confidence=0.9,
                excerpt="mode arbitration",
                source_reference=source_reference,
            )

        incoterm = pick_incoterm(text)
        current = candidates.get("routing.incoterm")
        if incoterm and current:
            candidates[current.key] = replace(current, value=TextValue(incoterm), excerpt=incoterm)
        elif incoterm:
            candidates["routing.incoterm"] = CandidateFact(
                key="routing.incoterm",
                category="routing",
                value=TextValue(incoterm),
                source_type=SourceType.AI_EXTRACTION,
                confidence=0.85,
                excerpt=incoterm,
                source_reference=source_reference,
            )
        elif current:
            proposed = str(current.value.value).strip().upper()
            if proposed in INCOTERMS:
                candidates[current.key] = replace(current, value=TextValue(proposed))
            else:
                candidates.pop(current.key)

        city = candidates.get("routing.destination_city")
        if city:
            cleaned = clean_destination_city(str(city.value.value))
            if cleaned:
                candidates[city.key] = replace(city, value=TextValue(cleaned))
            else:
                logger.info("Discarded destination city candidate %r", city.value.value)
                candidates.pop(city.key)

        return mode
