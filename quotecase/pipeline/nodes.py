from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from quotecase.config import settings
from quotecase.domain.authority import SupersedeOutcome, weakest_source
from quotecase.domain.models import CandidateFact, NumberValue, SupersedeResult, TextValue, plain
from quotecase.domain.states import SourceType
from quotecase.errors import RepositoryError
from quotecase.events.timeline import TimelineRecorder
from quotecase.pipeline.assumptions import AssumptionEngine
from quotecase.pipeline.attachment_mapper import AttachmentFactMapper
from quotecase.pipeline.contacts import KnownContactMatcher
from quotecase.pipeline.correspondence import extract_plain_text
from quotecase.pipeline.extraction import FactExtractionModule, FactOracle
from quotecase.pipeline.flow_classifier import classify_flow
from quotecase.pipeline.gap_analyzer import GapAnalyzer, mandatory_keys
from quotecase.pipeline.hs_resolver import HS_FACT_KEY, HsCodeResolver, HsResolution
from quotecase.pipeline.reference_data import CHARGEABLE_WEIGHT_RULE, VOLUMETRIC_FACTOR


logger = logging.getLogger(__name__)

AI_SOURCES = frozenset({SourceType.AI_EXTRACTION, SourceType.AI_ASSUMPTION})
WRITTEN = (SupersedeOutcome.INSERTED, SupersedeOutcome.SUPERSEDED)


def _digest(*parts: Any) -> str:
    payload = json.dumps(parts, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def input_fingerprint(emails: list[dict[str, Any]], attachments: list[dict[str, Any]]) -> str:
    # Content is part of the key so late attachment extraction counts as new input.
    items = [f"e:{e['id']}:{_digest(e.get('body_text'), e.get('body_html'))}" for e in emails]
    items += [f"a:{a['id']}:{_digest(a.get('extracted_text'), a.get('extracted_data'))}" for a in attachments]
    return hashlib.sha256("|".join(sorted(items)).encode("utf-8")).hexdigest()


def _actor_for(source: SourceType) -> str:
    if source == SourceType.MANUAL_INPUT:
        return "operator"
    return "ai" if source in AI_SOURCES else "system"


@dataclass
class PassLedger:
    """Write counters and per-fact failures accumulated over one pass."""

    facts_added: int = 0
    facts_updated: int = 0
    facts_skipped: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def count(self, outcome: SupersedeOutcome) -> None:
        if outcome == SupersedeOutcome.INSERTED:
            self.facts_added += 1
        elif outcome == SupersedeOutcome.SUPERSEDED:
            self.facts_updated += 1
        else:
            self.facts_skipped += 1

    def fail(self, key: str, error: str) -> None:
        self.errors.append({"key": key, "error": error, "is_critical": False})

    def mark_critical(self, keys: frozenset[str]) -> int:
        for item in self.errors:
            item["is_critical"] = item["key"] in keys
        return sum(1 for item in self.errors if item["is_critical"])


class PipelineNodes:
    def __init__(self, repo: Any, oracle: FactOracle | None = None) -> None:
        self.repo = repo
        self.timeline = TimelineRecorder(repo)
        self.extraction_module = FactExtractionModule(oracle=oracle)
        self.attachment_mapper = AttachmentFactMapper()
        self.contact_matcher = KnownContactMatcher(repo)
        self.hs_resolver = HsCodeResolver(repo)
        self.assumption_engine = AssumptionEngine(repo)
        self.gap_analyzer = GapAnalyzer(repo)

    # Guards

    @staticmethod
    def needs_extraction(ctx: dict[str, Any]) -> bool:
        return bool(ctx["load_correspondence"]["refresh"])

    # Nodes

    def load_correspondence(self, ctx: dict[str, Any]) -> dict[str, Any]:
        case = ctx["case"]
        emails = self.repo.list_emails(str(case.get("thread_id") or ""))
        if not emails:
            raise ValueError(f"Case {case['id']} has no correspondence to analyse")
        attachments = self.repo.list_attachments([str(e["id"]) for e in emails])

        blocks = []
        for email in emails:
            body = extract_plain_text(email.get("body_text") or email.get("body_html") or "")
            blocks.append(
                f"From: {email.get('from_address') or ''}\n"
                f"Subject: {email.get('subject') or ''}\n"
                f"Date: {email.get('sent_at') or ''}\n\n{body}"
            )

        attachment_blocks = []
        for att in attachments:
            text = str(att.get("extracted_text") or "").strip()
            if text:
                name = att.get("filename") or att.get("file_name") or "attachment"
                attachment_blocks.append(f"[{name}]\n{text[: settings.body_max_chars]}")

        fingerprint = input_fingerprint(emails, attachments)
        refresh = bool(ctx.get("force_refresh")) or fingerprint != case.get("input_fingerprint")
        if not refresh:
            logger.info("Case %s input unchanged since last pass, skipping extraction", case["id"])

        return {
            "emails": emails,
            "attachments": attachments,
            "thread_text": "\n\n---\n\n".join(blocks),
            "attachment_text": "\n\n".join(attachment_blocks),
            "source_reference": str(emails[-1]["id"]),
            "has_attachment_content": any(a.get("extracted_text") or a.get("extracted_data") for a in attachments),
            "fingerprint": fingerprint,
            "refresh": refresh,
        }

    def extract_facts(self, ctx: dict[str, Any]) -> dict[str, Any]:
        loaded = ctx["load_correspondence"]
        outcome = self.extraction_module.extract(
            loaded["thread_text"],
            loaded["attachment_text"],
            source_reference=loaded["source_reference"],
        )
        return {
            "candidates": outcome.candidates,
            "engine": outcome.engine,
            "transport_mode": outcome.transport_mode,
            "invalid": outcome.skipped,
        }

    def map_attachments(self, ctx: dict[str, Any]) -> dict[str, Any]:
        return {"candidates": self.attachment_mapper.map_attachments(ctx["load_correspondence"]["attachments"])}

    def match_contacts(self, ctx: dict[str, Any]) -> dict[str, Any]:
        return {"candidates": self.contact_matcher.match(ctx["load_correspondence"]["emails"])}

    def persist_facts(self, ctx: dict[str, Any]) -> dict[str, Any]:
        case_id = ctx["case_id"]
        ledger: PassLedger = ctx["ledger"]
        # Stronger producers first so weaker ones land as no-ops.
        ordered = [
            *ctx["map_attachments"]["candidates"],
            *ctx["match_contacts"]["candidates"],
            *ctx["extract_facts"]["candidates"],
        ]
        current = self.repo.get_current_facts(case_id)
        written = 0
        hs_inputs: list[CandidateFact] = []
        for candidate in ordered:
            if candidate.key == HS_FACT_KEY:
                hs_inputs.append(candidate)
                continue
            guessed = candidate.source_type == SourceType.AI_ASSUMPTION
            if guessed and current.source(candidate.key) == SourceType.AI_ASSUMPTION:
                # A current assumption is only replaced by the rule engine or by real evidence.
                ledger.count(SupersedeOutcome.UNCHANGED)
                continue
            result = self._write(case_id, candidate, ledger)
            if result and result.outcome in WRITTEN:
                written += 1

        return {"written": written, "hs_status": self._persist_hs(case_id, hs_inputs, ledger)}

    def revalidate_hs(self, ctx: dict[str, Any]) -> dict[str, Any]:
        case_id = ctx["case_id"]
        ledger: PassLedger = ctx["ledger"]
        fact = self.repo.get_current_facts(case_id).get(HS_FACT_KEY)
        if fact is None or fact.source_type == SourceType.MANUAL_INPUT:
            return {"status": "skipped"}

        raw = plain(fact.value)
        if self.hs_resolver.is_exact_match(raw):
            return {"status": "exact"}

        resolution = self.hs_resolver.resolve(raw)
        if resolution.resolved:
            self._store_hs(case_id, resolution, fact.source_reference, ledger)
            return {"status": "resolved", "code": resolution.code}

        try:
            retracted_id = self.repo.retract_fact(case_id, HS_FACT_KEY)
        except RepositoryError as exc:
            logger.error("HS code retraction failed for case %s: %s", case_id, exc)
            ledger.fail(HS_FACT_KEY, str(exc))
            return {"status": "error"}
        if retracted_id:
            logger.info("Retracted unresolvable HS code %r on case %s", raw, case_id)
            self.timeline.record(
                case_id,
                "fact_retracted",
                {"fact_key": HS_FACT_KEY, "reason": resolution.status},
                related_fact_id=retracted_id,
                previous_value=raw,
            )
        self._open_hs_gap(case_id, resolution)
        return {"status": resolution.status}

    def derive_chargeable_weight(self, ctx: dict[str, Any]) -> dict[str, Any]:
        case_id = ctx["case_id"]
        snapshot = self.repo.get_current_facts(case_id)
        weight = snapshot.get("cargo.weight_kg")
        volume = snapshot.get("cargo.volume_cbm")
        if not (weight and volume and isinstance(weight.value, NumberValue) and isinstance(volume.value, NumberValue)):
            return {"chargeable_weight_kg": None}

        chargeable = round(max(weight.value.value, volume.value.value * VOLUMETRIC_FACTOR), 2)
        source = weakest_source(weight.source_type, volume.source_type)
        confidence = min(weight.confidence, volume.confidence)
        excerpt = f"max({weight.value.value:g} kg, {volume.value.value:g} cbm x {VOLUMETRIC_FACTOR})"
        for candidate in (
            CandidateFact("cargo.chargeable_weight_kg", "cargo", NumberValue(chargeable), source, confidence, excerpt),
            CandidateFact("cargo.chargeable_weight_rule", "cargo", TextValue(CHARGEABLE_WEIGHT_RULE), source, confidence, excerpt),
        ):
            self._write(case_id, candidate, ctx["ledger"])
        return {"chargeable_weight_kg": chargeable, "source_type": source.value}

    def classify_flow(self, ctx: dict[str, Any]) -> dict[str, Any]:
        case = ctx["case"]
        snapshot = self.repo.get_current_facts(ctx["case_id"])
        classification = classify_flow(snapshot, ctx["load_correspondence"]["has_attachment_content"])
        logger.info(
            "Case %s classified as %s (assumptions: %s)",
            case["id"],
            classification.request_type,
            classification.assumption_flow,
        )
        if classification.request_type != case.get("request_type"):
            self.timeline.record(
                case["id"],
                "flow_classified",
                {
                    "request_type": classification.request_type,
                    "assumption_flow": classification.assumption_flow,
                    "trace": list(classification.trace),
                },
                previous_value=case.get("request_type"),
                new_value=classification.request_type,
            )
        return {"classification": classification, "snapshot": snapshot}

    def inject_assumptions(self, ctx: dict[str, Any]) -> dict[str, Any]:
        case_id = ctx["case_id"]
        ledger: PassLedger = ctx["ledger"]
        classified = ctx["classify_flow"]
        flow = classified["classification"].assumption_flow
        outcome = self.assumption_engine.apply(case_id, flow, classified["snapshot"])

        for rule, result in outcome.injected:
            ledger.count(result.outcome)
            self.timeline.record(
                case_id,
                "assumption_injected",
                {"fact_key": rule.key, "flow": flow, "rationale": rule.rationale, "confidence": rule.confidence},
                actor_type="ai",
                related_fact_id=result.fact_id,
                previous_value=result.previous_value,
                new_value=rule.value,
            )
        for key, error in outcome.errors:
            ledger.fail(key, error)
            self.timeline.record(case_id, "fact_insert_failed", {"fact_key": key, "error": error})
        ledger.facts_skipped += len(outcome.unchanged) + len(outcome.protected)

        return {
            "flow": flow,
            "injected": [rule.key for rule, _ in outcome.injected],
            "protected": outcome.protected,
        }

    def analyze_gaps(self, ctx: dict[str, Any]) -> dict[str, Any]:
        case_id = ctx["case_id"]
        ledger: PassLedger = ctx["ledger"]
        request_type = ctx["classify_flow"]["classification"].request_type
        snapshot = self.repo.get_current_facts(case_id)
        analysis = self.gap_analyzer.analyze(case_id, request_type, snapshot)

        for gap in analysis.created:
            self.timeline.record(
                case_id,
                "gap_identified",
                {"gap_key": gap.key, "is_blocking": gap.is_blocking, "priority": gap.priority},
                related_gap_id=gap.id,
            )
        for gap in analysis.resolved:
            self.timeline.record(
                case_id,
                "gap_resolved",
                {"gap_key": gap.key, "reason": gap.resolved_reason},
                related_gap_id=gap.id,
                related_fact_id=gap.resolved_by_fact_id,
            )

        return {
            "analysis": analysis,
            "snapshot": snapshot,
            "critical_errors": ledger.mark_critical(mandatory_keys(request_type)),
        }

    # Helpers

    def _write(self, case_id: str, candidate: CandidateFact, ledger: PassLedger) -> SupersedeResult | None:
        try:
            result = self.repo.supersede_fact(case_id, candidate)
        except RepositoryError as exc:
            logger.error("Fact %s failed to persist for case %s: %s", candidate.key, case_id, exc)
            ledger.fail(candidate.key, str(exc))
            self.timeline.record(case_id, "fact_insert_failed", {"fact_key": candidate.key, "error": str(exc)})
            return None

        ledger.count(result.outcome)
        if result.outcome in WRITTEN:
            event_type = "fact_added" if result.outcome == SupersedeOutcome.INSERTED else "fact_superseded"
            self.timeline.record(
                case_id,
                event_type,
                {
                    "fact_key": candidate.key,
                    "source_type": candidate.source_type.value,
                    "confidence": candidate.confidence,
                },
                actor_type=_actor_for(candidate.source_type),
                related_fact_id=result.fact_id,
                previous_value=result.previous_value,
                new_value=plain(candidate.value),
            )
        return result

    def _store_hs(
        self,
        case_id: str,
        resolution: HsResolution,
        source_reference: str | None,
        ledger: PassLedger,
    ) -> None:
        result = self._write(case_id, self.hs_resolver.to_candidate(resolution, source_reference), ledger)
        if result and result.outcome in WRITTEN:
            self.timeline.record(
                case_id,
                "hs_resolved",
                {"input": resolution.raw, "code": resolution.code, "confidence": resolution.confidence},
                related_fact_id=result.fact_id,
            )

    def _open_hs_gap(self, case_id: str, resolution: HsResolution) -> None:
        gap, created = self.repo.open_gap(self.hs_resolver.to_gap(case_id, resolution))
        if created:
            self.timeline.record(
                case_id,
                "gap_identified",
                {"gap_key": gap.key, "is_blocking": gap.is_blocking, "priority": gap.priority},
                related_gap_id=gap.id,
            )

    def _persist_hs(self, case_id: str, candidates: list[CandidateFact], ledger: PassLedger) -> str | None:
        if not candidates:
            return None

        failures: list[HsResolution] = []
        for candidate in candidates:
            resolution = self.hs_resolver.resolve(plain(candidate.value))
            if resolution.resolved:
                self._store_hs(case_id, resolution, candidate.source_reference, ledger)
                return resolution.status
            failures.append(resolution)

        ledger.facts_skipped += len(failures)
        first_failure = failures[0]
        current = self.repo.get_current_facts(case_id).get(HS_FACT_KEY)
        if current and current.source_type in (SourceType.MANUAL_INPUT, SourceType.HS_RESOLUTION):
            # A settled code already exists; a vaguer mention does not reopen it.
            return "settled"
        logger.info("HS code %r is %s for case %s", first_failure.raw, first_failure.status, case_id)
        self._open_hs_gap(case_id, first_failure)
        return first_failure.status
