"""Async Batch Task Orchestrator: long batches run in the background and are polled."""

from __future__ import annotations

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence

from . import logger
from .engine import FallbackEngine
from .errors import short_message
from .models import AsyncTask, ItemResult, TaskStatus, TriggerType


class TaskOrchestrator:
	"""Runs batches of operations on a thread pool.

	`submit` returns a task id immediately. A task record changes exactly
	twice: it is created as running and later moved to completed or failed.
	Terminal tasks stay queryable for the retention window, then they are
	garbage-collected.
	"""

	def __init__(
		self,
		engine: FallbackEngine,
		max_workers: int = 2,
		retention_minutes: int = 30,
		now: Optional[Callable[[], datetime]] = None,
	) -> None:
		self._engine = engine
		self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='punchpilot-batch')
		self._retention = timedelta(minutes=retention_minutes)
		self._now = now or datetime.now
		self._tasks: dict[str, AsyncTask] = {}
		self._abandoned: set[str] = set()
		self._lock = threading.Lock()

	def submit(self, operations: Sequence[Any]) -> str:
		"""Start a batch in the background and return its task id."""
		self.gc()
		task = AsyncTask(id=uuid.uuid4().hex, created_at=self._now(), total=len(operations))
		with self._lock:
			self._tasks[task.id] = task
		logger.info('📦 Batch %s submitted (%d items)', task.id[:8], len(operations))
		self._pool.submit(self._run, task.id, list(operations))
		return task.id

	def _run(self, task_id: str, operations: list[Any]) -> None:
		results: list[ItemResult] = []
		try:
			for index, operation in enumerate(operations):
				if self._is_abandoned(task_id):
					logger.info('Batch %s abandoned after %d/%d items', task_id[:8], index, len(operations))
					self._finish(
						task_id,
						TaskStatus.FAILED,
						results,
						f'abandoned after {index} of {len(operations)} items',
					)
					return
				outcome = self._engine.execute(operation, trigger=TriggerType.BATCH)
				results.append(
					ItemResult(
						index=index,
						label=operation.label,
						success=outcome.success,
						tier_used=outcome.tier_used,
						error=outcome.error,
					)
				)
		except Exception as e:
			logger.exception('Batch %s crashed', task_id[:8])
			self._finish(task_id, TaskStatus.FAILED, results, short_message(e))
			return

		self._finish(task_id, TaskStatus.COMPLETED, results, None)
		succeeded = sum(1 for r in results if r.success)
		logger.success(
			'✓ Batch %s finished: %d succeeded, %d failed',
			task_id[:8],
			succeeded,
			len(results) - succeeded,
		)

	def _finish(
		self, task_id: str, status: TaskStatus, results: list[ItemResult], error: Optional[str]
	) -> None:
		with self._lock:
			task = self._tasks.get(task_id)
			if task is None:
				return
			self._tasks[task_id] = task.model_copy(
				update={
					'status': status,
					'finished_at': self._now(),
					'results': results,
					'error': error,
				}
			)
			self._abandoned.discard(task_id)

	def _is_abandoned(self, task_id: str) -> bool:
		with self._lock:
			return task_id in self._abandoned

	def status(self, task_id: str) -> Optional[AsyncTask]:
		"""Snapshot of a task, or None if unknown or already collected."""
		self.gc()
		with self._lock:
			task = self._tasks.get(task_id)
			return task.model_copy(deep=True) if task else None

	def abandon(self, task_id: str) -> bool:
		"""Ask a running task to stop before its next item.

		An item already in flight (e.g. a browser form) runs to its own timeout.

		Returns:
			True if the task was running and will stop.
		"""
		with self._lock:
			task = self._tasks.get(task_id)
			if task is None or task.status != TaskStatus.RUNNING:
				return False
			self._abandoned.add(task_id)
		logger.info('Batch %s abandon requested', task_id[:8])
		return True

	def gc(self) -> int:
		"""Drop terminal tasks older than the retention window."""
		cutoff = self._now() - self._retention
		with self._lock:
			expired = [
				task_id
				for task_id, task in self._tasks.items()
				if task.finished_at is not None and task.finished_at < cutoff
			]
			for task_id in expired:
				del self._tasks[task_id]
		if expired:
			logger.debug('Collected %d expired batch tasks', len(expired))
		return len(expired)

	def shutdown(self, wait: bool = False) -> None:
		"""Stop accepting batches; running items are left to finish."""
		self._pool.shutdown(wait=wait, cancel_futures=True)
