from __future__ import annotations

from quotecase.domain.states import ALLOWED_TRANSITIONS, FROZEN_STATUSES, CaseStatus
from quotecase.errors import InvalidTransitionError


class StateMachine:
    def is_frozen(self, current: CaseStatus) -> bool:
        return current in FROZEN_STATUSES

    def derive(
        self,
        current: CaseStatus,
        *,
        open_gaps: int,
        open_blocking_gaps: int,
        current_facts: int,
        critical_errors: int = 0,
    ) -> CaseStatus:
        # Frozen cases keep recording facts and gaps but never move on their own.
        if self.is_frozen(current):
            return current
        if critical_errors > 0:
            return CaseStatus.FACTS_PARTIAL
        if open_blocking_gaps == 0 and current_facts > 0:
            return CaseStatus.READY_TO_PRICE
        if open_gaps > 0:
            return CaseStatus.NEED_INFO
        return CaseStatus.FACTS_PARTIAL

    def transition(self, current: CaseStatus, target: CaseStatus) -> CaseStatus:
        if current == target:
            return current
        allowed = ALLOWED_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidTransitionError(f"Invalid transition {current.value} -> {target.value}")
        return target
