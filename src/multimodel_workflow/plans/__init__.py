"""Plans module - Execution plan model, task graph, and persistence."""

from .graph import (
	DependencyCycleError,
	calculate_progress,
	can_execute_task,
	find_dependency_cycle,
	get_next_task,
	topological_order,
)
from .models import (
	ExecutionPlan,
	PlanContext,
	ReviewResult,
	RevisionEntry,
	TaskDefinition,
	TaskResult,
	TaskStatus,
	WorkflowConfig,
	WorkflowPhase,
	create_plan,
	create_task,
)
from .store import PersistenceGateway, WorkflowStore

__all__ = [
	"ExecutionPlan",
	"PlanContext",
	"ReviewResult",
	"RevisionEntry",
	"TaskDefinition",
	"TaskResult",
	"TaskStatus",
	"WorkflowConfig",
	"WorkflowPhase",
	"create_plan",
	"create_task",
	"DependencyCycleError",
	"calculate_progress",
	"can_execute_task",
	"find_dependency_cycle",
	"get_next_task",
	"topological_order",
	"PersistenceGateway",
	"WorkflowStore",
]
