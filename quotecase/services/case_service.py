from __future__ import annotations

import logging
import re
from typing import Any

from quotecase.contracts.payloads import FACT_KEY_PATTERN
from quotecase.contracts.schemas import BuildPuzzleResult, FactError
from quotecase.domain.models import CandidateFact, Fact, FactSnapshot, Gap, SupersedeResult, make_value, plain, utc_now
from quotecase.domain.state_machine import StateMachine
from quotecase.domain.states import CaseStatus, SourceType
from quotecase.errors import AuthError, CaseNotFound
from quotecase.infra import QuoteRepository, build_repository
from quotecase.infra.groq_adapter import GroqAdapter
from quotecase.pipeline.dag import DAG, Node
from quotecase.pipeline.extraction import FactOracle
from quotecase.pipeline.nodes import PassLedger, PipelineNodes


logger = logging.getLogger(__name__)


class CaseService:
    def __init__(self, repo: QuoteRepository | None = None, oracle: FactOracle | None = None) -> None:
        if repo is None:
            repo, _, message = build_repository()
            if message:
                logger.warning(message)
        self.repo = repo
        self.sm = StateMachine()
        self.nodes = PipelineNodes(repo, oracle if oracle is not None else GroqAdapter())
        self.timeline = self.nodes.timeline
        refresh = PipelineNodes.needs_extraction
        self.dag = DAG(
            [
                Node("load_correspondence", self.nodes.load_correspondence, []),
                Node("extract_facts", self.nodes.extract_facts, ["load_correspondence"], when=refresh),
                Node("map_attachments", self.nodes.map_attachments, ["load_correspondence"], when=refresh),
                Node("match_contacts", self.nodes.match_contacts, ["load_correspondence"], when=refresh),
                Node("persist_facts", self.nodes.persist_facts, ["extract_facts", "map_attachments", "match_contacts"], when=refresh),
                Node("revalidate_hs", self.nodes.revalidate_hs, ["persist_facts"]),
                Node("derive_chargeable_weight", self.nodes.derive_chargeable_weight, ["revalidate_hs"]),
                Node("classify_flow", self.nodes.classify_flow, ["derive_chargeable_weight"]),
                Node("inject_assumptions", self.nodes.inject_assumptions, ["classify_flow"]),
                Node("analyze_gaps", self.nodes.analyze_gaps, ["inject_assumptions"]),
            ]
        )

    def build_case_puzzle(self, case_id: str, user_id: str, force_refresh: bool = False) -> BuildPuzzleResult:
        case = self._authorize(case_id, user_id)
        ledger = PassLedger()
        ctx = self.dag.run(
            {
                "case": case,
                "case_id": case_id,
                "user_id": user_id,
                "force_refresh": force_refresh,
                "ledger": ledger,
            }
        )

        analysis = ctx["analyze_gaps"]["analysis"]
        snapshot: FactSnapshot = ctx["analyze_gaps"]["snapshot"]
        critical = ctx["analyze_gaps"]["critical_errors"]
        current = CaseStatus(case.get("status") or CaseStatus.NEW.value)
        new_status = self.sm.derive(
            current,
            open_gaps=len(analysis.open_gaps),
            open_blocking_gaps=analysis.open_blocking,
            current_facts=len(snapshot),
            critical_errors=critical,
        )

        updates: dict[str, Any] = {
            "request_type": analysis.request_type,
            "facts_count": len(snapshot),
            "gaps_count": len(analysis.open_gaps),
            "puzzle_completeness": analysis.completeness,
            "last_activity_at": utc_now(),
        }
        # Failed writes must be retried on the next pass, so the input is only
        # marked as analysed once every fact landed.
        if not ledger.errors:
            updates["input_fingerprint"] = ctx["load_correspondence"]["fingerprint"]
        if new_status != current:
            updates["status"] = new_status.value
        self.repo.update_case(case_id, updates)

        if new_status != current:
            self.timeline.record(
                case_id,
                "status_changed",
                {"from": current.value, "to": new_status.value, "reason": "puzzle_analysis"},
                previous_value=current.value,
                new_value=new_status.value,
            )

        extraction = ctx["extract_facts"]
        result = BuildPuzzleResult(
            case_id=case_id,
            outcome="partial" if critical else "complete",
            new_status=new_status.value,
            request_type=analysis.request_type,
            facts_added=ledger.facts_added,
            facts_updated=ledger.facts_updated,
            facts_skipped=ledger.facts_skipped,
            gaps_identified=len(analysis.created),
            completeness_pct=analysis.completeness,
            ready_to_price=new_status == CaseStatus.READY_TO_PRICE,
            fact_errors=[FactError(**item) for item in ledger.errors],
            oracle_engine="skipped" if extraction.get("skipped") else extraction["engine"],
        )
        self.timeline.record(
            case_id,
            "puzzle_built",
            {
                "facts_added": result.facts_added,
                "facts_updated": result.facts_updated,
                "facts_skipped": result.facts_skipped,
                "completeness_pct": result.completeness_pct,
                "oracle_engine": result.oracle_engine,
                "execution_order": ctx["execution_order"],
            },
        )
        logger.info(
            "Built puzzle for case %s: %d added, %d updated, %d skipped, %d gaps, %d%% complete, status %s",
            case_id,
            result.facts_added,
            result.facts_updated,
            result.facts_skipped,
            result.gaps_identified,
            result.completeness_pct,
            result.new_status,
        )
        return result

    def set_case_fact(
        self,
        case_id: str,
        user_id: str,
        key: str,
        value: Any,
        value_type: str = "text",
    ) -> SupersedeResult:
        self._authorize(case_id, user_id)
        if not re.match(FACT_KEY_PATTERN, key or ""):
            raise ValueError(f"Invalid fact key: {key!r}")
        try:
            fact_value = make_value(value, value_type)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid {value_type} value for {key}: {exc}") from exc

        candidate = CandidateFact(
            key=key,
            category=key.split(".", 1)[0],
            value=fact_value,
            source_type=SourceType.MANUAL_INPUT,
            confidence=1.0,
            excerpt=f"set by operator {user_id}",
            source_reference=user_id,
        )
        result = self.repo.supersede_fact(case_id, candidate)
        self.timeline.record(
            case_id,
            "fact_injected_manual",
            {"fact_key": key, "value": plain(fact_value), "outcome": result.outcome.value},
            actor_type="operator",
            related_fact_id=result.fact_id,
            previous_value=result.previous_value,
            new_value=plain(fact_value),
        )
        self.repo.update_case(
            case_id,
            {"facts_count": len(self.repo.get_current_facts(case_id)), "last_activity_at": utc_now()},
        )
        return result

    def get_case_facts(self, case_id: str, user_id: str) -> FactSnapshot:
        self._authorize(case_id, user_id)
        return self.repo.get_current_facts(case_id)

    def list_open_gaps(self, case_id: str, user_id: str) -> list[Gap]:
        self._authorize(case_id, user_id)
        return self.repo.list_open_gaps(case_id)

    def list_fact_history(self, case_id: str, user_id: str, key: str) -> list[Fact]:
        self._authorize(case_id, user_id)
        return self.repo.list_fact_history(case_id, key)

    def list_timeline(self, case_id: str, user_id: str) -> list[dict[str, Any]]:
        self._authorize(case_id, user_id)
        return self.repo.list_timeline_events(case_id)

    def transition_status(self, case_id: str, user_id: str, target: str) -> dict[str, Any]:
        case = self._authorize(case_id, user_id)
        try:
            wanted = CaseStatus(str(target).upper())
        except ValueError as exc:
            raise ValueError(f"Unknown case status: {target}") from exc

        current = CaseStatus(case.get("status") or CaseStatus.NEW.value)
        nxt = self.sm.transition(current, wanted)
        if nxt == current:
            return case
        updated = self.repo.update_case(case_id, {"status": nxt.value, "last_activity_at": utc_now()})
        self.timeline.record(
            case_id,
            "status_changed",
            {"from": current.value, "to": nxt.value, "reason": "operator"},
            actor_type="operator",
            previous_value=current.value,
            new_value=nxt.value,
        )
        return updated

    def _authorize(self, case_id: str, user_id: str) -> dict[str, Any]:
        case = self.repo.get_case(case_id)
        if not case:
            raise CaseNotFound(f"Case not found: {case_id}")
        owners = {str(case.get("created_by") or ""), str(case.get("assigned_to") or "")} - {""}
        if not user_id or str(user_id) not in owners:
            raise AuthError("User is not allowed to access this case")
        return case
