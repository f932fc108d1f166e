"""
Workflow events and a synchronous event bus.

Listeners are called in subscription order. A listener that raises is
logged and skipped; the remaining listeners still receive the event and
the emitting caller never sees the exception.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Union

from ..plans.models import (
	ExecutionPlan,
	ReviewResult,
	RevisionEntry,
	TaskDefinition,
	TaskResult,
	WorkflowPhase,
)

logger = logging.getLogger(__name__)


@dataclass
class PhaseChanged:
	from_phase: WorkflowPhase
	to_phase: WorkflowPhase
	type: str = field(default="phase_changed", init=False)


@dataclass
class TaskStarted:
	task: TaskDefinition
	type: str = field(default="task_started", init=False)


@dataclass
class TaskCompleted:
	task: TaskDefinition
	result: TaskResult
	type: str = field(default="task_completed", init=False)


@dataclass
class TaskFailed:
	task: TaskDefinition
	error: str
	type: str = field(default="task_failed", init=False)


@dataclass
class ReviewCompleted:
	result: ReviewResult
	type: str = field(default="review_completed", init=False)


@dataclass
class RevisionRequested:
	revision: RevisionEntry
	type: str = field(default="revision_requested", init=False)


@dataclass
class WorkflowCompleted:
	plan: ExecutionPlan
	type: str = field(default="workflow_completed", init=False)


@dataclass
class WorkflowAborted:
	reason: str
	type: str = field(default="workflow_aborted", init=False)


WorkflowEvent = Union[
	PhaseChanged,
	TaskStarted,
	TaskCompleted,
	TaskFailed,
	ReviewCompleted,
	RevisionRequested,
	WorkflowCompleted,
	WorkflowAborted,
]

EventCallback = Callable[[WorkflowEvent], None]


class EventBus:
	"""Synchronous publish/subscribe for workflow events."""

	def __init__(self):
		self._listeners: dict[int, EventCallback] = {}
		self._next_id = 0

	def subscribe(self, callback: EventCallback) -> Callable[[], None]:
		"""
		Register a listener.

		Returns:
			A function that removes the listener; calling it twice is harmless
		"""
		listener_id = self._next_id
		self._next_id += 1
		self._listeners[listener_id] = callback

		def unsubscribe():
			self._listeners.pop(listener_id, None)

		return unsubscribe

	def emit(self, event: WorkflowEvent) -> None:
		"""Deliver an event to every current listener."""
		# Copy so listeners may unsubscribe while being notified
		for listener in list(self._listeners.values()):
			try:
				listener(event)
			except Exception:
				logger.exception(f"Error in workflow event listener for {event.type}")

	@property
	def listener_count(self) -> int:
		return len(self._listeners)
