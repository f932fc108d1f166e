"""
Workflow Store - SQLite-backed persistence for execution plans.

Features:
- One row per plan, the plan itself stored as JSON
- Listing with summaries, newest first
- Active-workflow lookup for resume
- Cleanup of old completed workflows
- Export/import of single plans as JSON files
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, Protocol

import aiosqlite
from pydantic import ValidationError

from .models import ExecutionPlan, TaskStatus, WorkflowPhase, WorkflowSummary

logger = logging.getLogger(__name__)


class PersistenceGateway(Protocol):
	"""What the phase controller needs from a plan store."""

	async def save_workflow(self, plan: ExecutionPlan) -> None: ...

	async def load_workflow(self, plan_id: str) -> Optional[ExecutionPlan]: ...

	async def list_workflows(self) -> list[WorkflowSummary]: ...

	async def delete_workflow(self, plan_id: str) -> bool: ...


class WorkflowStore:
	"""
	SQLite-backed workflow storage.

	Usage:
		store = WorkflowStore("data/workflows.db")
		await store.init()

		await store.save_workflow(plan)
		plan = await store.load_workflow(plan.id)
	"""

	def __init__(self, db_path: str):
		"""Initialize the workflow store."""
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self):
		"""Initialize the database schema."""
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS workflows (
				id TEXT PRIMARY KEY,
				phase TEXT NOT NULL,
				original_request TEXT NOT NULL,
				data TEXT NOT NULL,
				created_at TEXT NOT NULL,
				updated_at TEXT NOT NULL
			)
		""")

		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_workflows_phase ON workflows(phase)
		""")

		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_workflows_updated ON workflows(updated_at)
		""")

		await self._db.commit()
		logger.info(f"Workflow store initialized: {self.db_path}")

	async def close(self):
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def save_workflow(self, plan: ExecutionPlan) -> None:
		"""
		Insert or replace a plan.

		Stamps updated_at on the plan before writing it.
		"""
		if not self._db:
			await self.init()

		plan.touch()

		await self._db.execute(
			"""
			INSERT INTO workflows (id, phase, original_request, data, created_at, updated_at)
			VALUES (?, ?, ?, ?, ?, ?)
			ON CONFLICT(id) DO UPDATE SET
				phase = excluded.phase,
				original_request = excluded.original_request,
				data = excluded.data,
				updated_at = excluded.updated_at
			""",
			(
				plan.id,
				plan.phase.value,
				plan.original_request,
				plan.model_dump_json(),
				plan.created_at,
				plan.updated_at,
			)
		)

		await self._db.commit()
		logger.debug(f"Saved workflow {plan.id} (phase={plan.phase.value}, tasks={len(plan.tasks)})")

	async def load_workflow(self, plan_id: str) -> Optional[ExecutionPlan]:
		"""
		Load a plan by ID.

		Returns:
			ExecutionPlan, or None if not found or the stored data is unreadable
		"""
		if not self._db:
			await self.init()

		async with self._db.execute(
			"SELECT data FROM workflows WHERE id = ?",
			(plan_id,)
		) as cursor:
			row = await cursor.fetchone()

		if not row:
			logger.debug(f"Workflow not found: {plan_id}")
			return None

		try:
			return ExecutionPlan.model_validate_json(row["data"])
		except ValidationError as e:
			logger.error(f"Failed to load workflow {plan_id}: {e}")
			return None

	async def list_workflows(self) -> list[WorkflowSummary]:
		"""List all saved workflows, newest first."""
		if not self._db:
			await self.init()

		async with self._db.execute(
			"SELECT id, data FROM workflows ORDER BY updated_at DESC"
		) as cursor:
			rows = await cursor.fetchall()

		summaries = []
		for row in rows:
			try:
				plan = ExecutionPlan.model_validate_json(row["data"])
			except ValidationError as e:
				logger.warning(f"Could not read workflow {row['id']}: {e}")
				continue

			summaries.append(WorkflowSummary(
				id=plan.id,
				original_request=plan.original_request[:100],
				phase=plan.phase,
				created_at=plan.created_at,
				updated_at=plan.updated_at,
				task_count=len(plan.tasks),
				completed_tasks=len([t for t in plan.tasks if t.status == TaskStatus.COMPLETED]),
				size_bytes=len(row["data"].encode("utf-8")),
			))

		return summaries

	async def list_active_workflows(self) -> list[WorkflowSummary]:
		"""List workflows that are neither idle nor complete."""
		return [
			s for s in await self.list_workflows()
			if s.phase not in (WorkflowPhase.IDLE, WorkflowPhase.COMPLETE)
		]

	async def get_most_recent_active_workflow(self) -> Optional[ExecutionPlan]:
		"""Load the most recently updated active workflow."""
		active = await self.list_active_workflows()
		if not active:
			return None
		return await self.load_workflow(active[0].id)

	async def workflow_exists(self, plan_id: str) -> bool:
		if not self._db:
			await self.init()

		async with self._db.execute(
			"SELECT 1 FROM workflows WHERE id = ?",
			(plan_id,)
		) as cursor:
			return await cursor.fetchone() is not None

	async def delete_workflow(self, plan_id: str) -> bool:
		"""
		Delete a plan.

		Returns:
			True if a plan was deleted
		"""
		if not self._db:
			await self.init()

		cursor = await self._db.execute("DELETE FROM workflows WHERE id = ?", (plan_id,))
		await self._db.commit()

		deleted = cursor.rowcount > 0
		if deleted:
			logger.info(f"Deleted workflow {plan_id}")
		return deleted

	async def cleanup_old_workflows(self, max_age_days: int = 30) -> int:
		"""
		Delete completed workflows not updated within max_age_days.

		Returns:
			Number of workflows deleted
		"""
		cutoff = (datetime.now() - timedelta(days=max_age_days)).isoformat()
		deleted_count = 0

		for summary in await self.list_workflows():
			if summary.phase == WorkflowPhase.COMPLETE and summary.updated_at < cutoff:
				if await self.delete_workflow(summary.id):
					deleted_count += 1

		if deleted_count > 0:
			logger.info(f"Cleaned up {deleted_count} workflows older than {max_age_days} days")

		return deleted_count

	async def export_workflow(self, plan_id: str, export_path: str) -> None:
		"""Write a stored plan to a standalone JSON file."""
		plan = await self.load_workflow(plan_id)
		if not plan:
			raise ValueError(f"Workflow '{plan_id}' not found")

		Path(export_path).write_text(plan.model_dump_json(indent=2), encoding="utf-8")

	async def import_workflow(self, import_path: str) -> ExecutionPlan:
		"""Load a plan from a JSON file and save it to the store."""
		content = Path(import_path).read_text(encoding="utf-8")
		try:
			plan = ExecutionPlan.model_validate_json(content)
		except ValidationError as e:
			raise ValueError(f"Invalid workflow file format: {e}") from e

		await self.save_workflow(plan)
		return plan
