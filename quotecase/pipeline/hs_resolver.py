from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Literal

from quotecase.domain.models import CandidateFact, Gap, TextValue
from quotecase.domain.states import SourceType


HS_FACT_KEY = "cargo.hs_code"
HS_GAP_ORIGIN = "hs_resolver"
MAX_CANDIDATES = 5

CONFIDENCE_EXACT = 1.0
CONFIDENCE_PREFIX = 0.98

ResolutionStatus = Literal["unique", "ambiguous", "not_found"]


def hs_digits(raw: Any) -> str:
    return re.sub(r"\D", "", str(raw or ""))


@dataclass(frozen=True)
class HsResolution:
    raw: str
    status: ResolutionStatus
    code: str | None = None
    confidence: float = 0.0
    candidates: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    @property
    def resolved(self) -> bool:
        return self.status == "unique"


class HsCodeResolver:
    """Resolves free-form commodity codes against the national nomenclature."""

    def __init__(self, repo: Any) -> None:
        self.repo = repo

    def resolve(self, raw: Any) -> HsResolution:
        text = str(raw or "").strip()
        digits = hs_digits(text)
        if len(digits) < 4:
            return HsResolution(text, "not_found")

        if len(digits) >= 10:
            exact = self.repo.find_hs_exact(digits[:10])
            if exact:
                return HsResolution(text, "unique", str(exact["code"]), CONFIDENCE_EXACT, (exact,))

        prefix = digits[: min(6, len(digits))]
        hits = self.repo.find_hs_by_prefix(prefix, limit=MAX_CANDIDATES + 1)
        if not hits:
            return HsResolution(text, "not_found")
        if len(hits) == 1:
            return HsResolution(text, "unique", str(hits[0]["code"]), CONFIDENCE_PREFIX, tuple(hits))
        return HsResolution(text, "ambiguous", candidates=tuple(hits[:MAX_CANDIDATES]))

    def is_exact_match(self, raw: Any) -> bool:
        digits = hs_digits(raw)
        return len(digits) == 10 and self.repo.find_hs_exact(digits) is not None

    def to_candidate(self, resolution: HsResolution, source_reference: str | None = None) -> CandidateFact:
        if not resolution.resolved or not resolution.code:
            raise ValueError(f"HS code {resolution.raw!r} is {resolution.status}, nothing to store")
        description = str(resolution.candidates[0].get("description") or "") if resolution.candidates else ""
        return CandidateFact(
            key=HS_FACT_KEY,
            category="cargo",
            value=TextValue(resolution.code),
            source_type=SourceType.HS_RESOLUTION,
            confidence=resolution.confidence,
            excerpt=f"{resolution.raw} -> {resolution.code} {description}".strip(),
            source_reference=source_reference,
        )

    def to_gap(self, case_id: str, resolution: HsResolution) -> Gap:
        codes = ", ".join(str(c["code"]) for c in resolution.candidates)
        if resolution.status == "ambiguous":
            question_fr = f"Le code SH '{resolution.raw}' correspond à plusieurs positions ({codes}). Laquelle retenir ?"
            question_en = f"HS code '{resolution.raw}' matches several tariff lines ({codes}). Which one applies?"
        else:
            question_fr = f"Le code SH '{resolution.raw}' est introuvable dans la nomenclature. Merci de le confirmer."
            question_en = f"HS code '{resolution.raw}' was not found in the nomenclature. Please confirm it."
        return Gap(
            case_id=case_id,
            key=HS_FACT_KEY,
            category="cargo",
            question_fr=question_fr,
            question_en=question_en,
            priority="high",
            is_blocking=True,
            origin=HS_GAP_ORIGIN,
            hint={
                "input": resolution.raw,
                "status": resolution.status,
                "candidates": [
                    {"code": str(c["code"]), "description": str(c.get("description") or "")}
                    for c in resolution.candidates
                ],
            },
        )
