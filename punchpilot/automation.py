"""PunchPilot: the exposed facade wiring all automation components together."""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Optional, Sequence

from . import logger
from .api import RemoteAttendanceClient
from .browser import BrowserExecutor
from .detector import StateDetector
from .engine import FallbackEngine
from .errors import FailureClassifier, classify_failure
from .models import (
	ActionKind,
	ActionPlan,
	AsyncTask,
	Config,
	Detection,
	ExecutionOutcome,
	LogEntry,
	OperationKind,
	ScheduleEntry,
	SkipRecord,
	StrategyCacheEntry,
	TriggerType,
	month_key,
)
from .planner import plan
from .scheduler import Scheduler
from .storage import (
	Cipher,
	ExecutionLog,
	JsonlExecutionLog,
	JsonSettingsStore,
	PlaintextCipher,
	SettingsStore,
)
from .strategy import StrategyCache
from .tasks import TaskOrchestrator
from .workdays import HolidayCalendar

SETTINGS_FILE = 'settings.json'
LOG_FILE = 'executions.jsonl'


class PunchPilot:
	"""Attendance automation for one freee HR account.

	Example:
		pilot = PunchPilot.from_config(load_config())
		pilot.start()
		...
		pilot.stop()
	"""

	def __init__(
		self,
		config: Config,
		settings: SettingsStore,
		log: ExecutionLog,
		calendar: HolidayCalendar,
		detector: StateDetector,
		cache: StrategyCache,
		engine: FallbackEngine,
		tasks: TaskOrchestrator,
		scheduler: Scheduler,
	) -> None:
		self.config = config
		self.settings = settings
		self.log = log
		self.calendar = calendar
		self.detector = detector
		self.cache = cache
		self.engine = engine
		self.tasks = tasks
		self.scheduler = scheduler

	@classmethod
	def from_config(
		cls,
		config: Config,
		settings: Optional[SettingsStore] = None,
		log: Optional[ExecutionLog] = None,
		cipher: Optional[Cipher] = None,
		classifier: FailureClassifier = classify_failure,
	) -> PunchPilot:
		"""Build every component from the configuration.

		Settings and the execution log default to files under `config.data_dir`.
		"""
		settings = settings or JsonSettingsStore(config.data_dir / SETTINGS_FILE)
		log = log or JsonlExecutionLog(config.data_dir / LOG_FILE)
		cipher = cipher or PlaintextCipher()

		client = RemoteAttendanceClient(config, settings, cipher)
		browser = BrowserExecutor(config, settings, cipher)
		calendar = HolidayCalendar(
			settings,
			countries=config.holiday_countries,
			custom_holidays=config.custom_holidays,
			timeout=config.api_timeout,
			today=config.today,
		)
		detector = StateDetector(
			client if client.is_configured else None,
			log,
			attempts=config.detector_attempts,
			backoff=config.detector_backoff,
			web=browser if browser.is_configured else None,
			today=config.today,
		)
		cache = StrategyCache(settings)
		engine = FallbackEngine(
			client,
			browser,
			cache,
			log,
			classifier=classifier,
			today=config.today,
			now=config.now,
			default_reason=config.default_reason,
		)
		tasks = TaskOrchestrator(engine, retention_minutes=config.task_retention_minutes, now=config.now)

		def housekeeping(today: date) -> None:
			cache.reset_if_new_month(month_key(today))
			tasks.gc()

		scheduler = Scheduler(
			config,
			settings,
			calendar,
			detector,
			engine,
			log,
			on_housekeeping=housekeeping,
		)
		return cls(config, settings, log, calendar, detector, cache, engine, tasks, scheduler)

	# =========================================================================
	# State and planning
	# =========================================================================

	def detect_state(self, day: Optional[date] = None) -> Detection:
		"""Current punch state for a day (today by default)."""
		return self.detector.detect(day or self.config.today())

	def plan_today(self) -> ActionPlan:
		"""What a tick would do right now, without executing anything."""
		now = self.config.now()
		entries = self.scheduler.resolve_day(now.date())
		if self.calendar.is_skip_day(now.date()):
			return plan(self.detect_state(now.date()).state, entries, now, skip_day=True)
		return plan(
			self.detect_state(now.date()).state,
			entries,
			now,
			grace_minutes=self.config.late_grace_minutes,
		)

	def resolved_schedule_for(self, day: date) -> list[ScheduleEntry]:
		"""Schedule entries with the day's resolved times."""
		return self.scheduler.resolve_day(day)

	def is_skip_day(self, day: date, countries: Optional[Iterable[str]] = None) -> bool:
		"""Whether no automated action fires on `day`."""
		return self.calendar.is_skip_day(day, countries)

	def skip_reason(self, day: date, countries: Optional[Iterable[str]] = None) -> Optional[str]:
		return self.calendar.skip_reason(day, countries)

	# =========================================================================
	# Execution
	# =========================================================================

	def run_now(self) -> ActionPlan:
		"""Skip check, detection, planning and execution, immediately."""
		return self.scheduler.run_now()

	def trigger_action(self, action: ActionKind, force: bool = False) -> ExecutionOutcome:
		"""Operator-forced clock action for today."""
		return self.scheduler.trigger_action(action, force=force)

	def execute(self, operation: Any) -> ExecutionOutcome:
		"""Run a single operation synchronously through the fallback chain."""
		return self.engine.execute(operation, trigger=TriggerType.MANUAL)

	def submit_batch(self, operations: Sequence[Any]) -> str:
		"""Start a background batch; returns the task id to poll."""
		return self.tasks.submit(operations)

	def batch_status(self, task_id: str) -> Optional[AsyncTask]:
		return self.tasks.status(task_id)

	def abandon_batch(self, task_id: str) -> bool:
		return self.tasks.abandon(task_id)

	# =========================================================================
	# Introspection
	# =========================================================================

	def strategy_status(self, month: Optional[str] = None) -> dict[OperationKind, StrategyCacheEntry]:
		"""Strategy cache entries of a month (current month by default)."""
		month = month or month_key(self.config.today())
		return {kind: self.cache.lookup(month, kind) for kind in OperationKind}

	def logs_for(self, day: date) -> list[LogEntry]:
		"""Execution log entries for a day, oldest first.

		Skips overruled by a later success of the same action come back with
		`superseded` set.
		"""
		entries = sorted(self.log.query_by_date(day), key=lambda e: e.executed_at)
		return self.scheduler.flag_superseded(entries)

	def skip_records(self, day: date) -> list[SkipRecord]:
		"""Scheduler skip records of a day."""
		return self.scheduler.skip_records(day)

	# =========================================================================
	# Lifecycle
	# =========================================================================

	def start(self) -> None:
		"""Start the background scheduler."""
		self.scheduler.start()

	def stop(self) -> None:
		"""Stop the scheduler and the batch pool."""
		self.scheduler.stop()
		self.tasks.shutdown()
		logger.debug('PunchPilot stopped')
