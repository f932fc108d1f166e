"""
Task graph - dependency resolution over a plan's tasks.

A task is runnable when it is pending and every dependency resolves to a
completed task in the same plan. A dependency ID that does not exist in
the plan is never satisfied, so such a task never runs.
"""

from collections import deque
from typing import Optional

from .models import ExecutionPlan, TaskDefinition, TaskStatus


class DependencyCycleError(ValueError):
	"""Raised when a task list contains circular dependencies."""

	def __init__(self, cycle: list[str]):
		self.cycle = cycle
		super().__init__(f"Circular task dependencies: {' -> '.join(cycle)}")


def can_execute_task(task: TaskDefinition, all_tasks: list[TaskDefinition]) -> bool:
	"""Check if a task can be executed (pending, all dependencies completed)."""
	if task.status != TaskStatus.PENDING:
		return False

	by_id = {t.id: t for t in all_tasks}
	for dep_id in task.dependencies:
		dep = by_id.get(dep_id)
		if dep is None or dep.status != TaskStatus.COMPLETED:
			return False

	return True


def get_next_task(plan: ExecutionPlan) -> Optional[TaskDefinition]:
	"""Return the first runnable task in list order, or None."""
	for task in plan.tasks:
		if can_execute_task(task, plan.tasks):
			return task
	return None


def calculate_progress(plan: ExecutionPlan) -> dict:
	"""Calculate task progress for a plan."""
	total = len(plan.tasks)
	completed = len([t for t in plan.tasks if t.status == TaskStatus.COMPLETED])
	failed = len([t for t in plan.tasks if t.status == TaskStatus.FAILED])

	return {
		"completed": completed,
		"failed": failed,
		"total": total,
		"percentage": round(completed / total * 100) if total > 0 else 0,
	}


def find_dependency_cycle(tasks: list[TaskDefinition]) -> Optional[list[str]]:
	"""
	Find one dependency cycle among the tasks.

	Unknown dependency IDs are skipped: they are unmet, not cyclic.

	Returns:
		The cycle as a list of task IDs with the first ID repeated at the
		end (e.g. ["a", "b", "a"]), or None if the graph is acyclic.
	"""
	edges = {t.id: [d for d in t.dependencies] for t in tasks}
	white, grey, black = 0, 1, 2
	colour = {task_id: white for task_id in edges}

	for root in edges:
		if colour[root] != white:
			continue

		# Iterative DFS; the path stack doubles as the grey set
		path: list[str] = [root]
		iterators = [iter(edges[root])]
		colour[root] = grey

		while iterators:
			dep = next(iterators[-1], None)
			if dep is None:
				colour[path.pop()] = black
				iterators.pop()
				continue
			if dep not in colour:
				continue
			if colour[dep] == grey:
				start = path.index(dep)
				return path[start:] + [dep]
			if colour[dep] == white:
				colour[dep] = grey
				path.append(dep)
				iterators.append(iter(edges[dep]))

	return None


def topological_order(tasks: list[TaskDefinition]) -> list[str]:
	"""
	Order task IDs so every task follows its dependencies (Kahn's algorithm).

	Ties are broken by the task's position in the list. Unknown
	dependency IDs are ignored.

	Raises:
		DependencyCycleError: If the dependencies contain a cycle
	"""
	position = {t.id: i for i, t in enumerate(tasks)}
	in_degree = {t.id: 0 for t in tasks}
	dependents: dict[str, list[str]] = {t.id: [] for t in tasks}

	for task in tasks:
		for dep in set(task.dependencies):
			if dep in in_degree and dep != task.id:
				in_degree[task.id] += 1
				dependents[dep].append(task.id)
			elif dep == task.id:
				raise DependencyCycleError([task.id, task.id])

	ready = deque(sorted((tid for tid, deg in in_degree.items() if deg == 0), key=position.get))
	order: list[str] = []

	while ready:
		current = ready.popleft()
		order.append(current)
		released = []
		for child in dependents[current]:
			in_degree[child] -= 1
			if in_degree[child] == 0:
				released.append(child)
		for child in sorted(released, key=position.get):
			ready.append(child)

	if len(order) != len(in_degree):
		cycle = find_dependency_cycle(tasks)
		raise DependencyCycleError(cycle or [t for t in in_degree if t not in order])

	return order
