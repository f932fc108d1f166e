"""Legal workflow phase transitions and the role that acts in each phase."""

from typing import Optional

from ..clients.router import ClientRole
from ..plans.models import WorkflowPhase

P = WorkflowPhase

# Moving to IDLE (abort) and re-entering the current phase are always allowed.
# A resumed idle plan may return to any non-terminal phase.
ALLOWED_TRANSITIONS: dict[WorkflowPhase, frozenset[WorkflowPhase]] = {
	P.IDLE: frozenset({P.PLANNING, P.PLAN_REVIEW, P.IMPLEMENTING, P.REVIEWING, P.REVISION}),
	P.PLANNING: frozenset({P.PLAN_REVIEW, P.IMPLEMENTING}),
	P.PLAN_REVIEW: frozenset({P.IMPLEMENTING, P.PLANNING}),
	P.IMPLEMENTING: frozenset({P.REVIEWING}),
	P.REVIEWING: frozenset({P.COMPLETE, P.REVISION}),
	P.REVISION: frozenset({P.IMPLEMENTING, P.REVIEWING}),
	P.COMPLETE: frozenset(),
}

PHASE_ROLES: dict[WorkflowPhase, Optional[ClientRole]] = {
	P.IDLE: None,
	P.PLANNING: ClientRole.PLANNER,
	P.PLAN_REVIEW: ClientRole.PLANNER,
	P.IMPLEMENTING: ClientRole.CODER,
	P.REVIEWING: ClientRole.REVIEWER,
	P.REVISION: ClientRole.CODER,
	P.COMPLETE: None,
}


def is_transition_allowed(from_phase: WorkflowPhase, to_phase: WorkflowPhase) -> bool:
	if to_phase == from_phase or to_phase == P.IDLE:
		return True
	return to_phase in ALLOWED_TRANSITIONS[from_phase]


def role_for_phase(phase: WorkflowPhase) -> Optional[ClientRole]:
	return PHASE_ROLES[phase]
