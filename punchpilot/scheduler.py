"""Scheduler: daily time resolution, recurring tick and manual triggers."""

from __future__ import annotations

import random
import threading
from datetime import date, datetime, time
from typing import Callable, Optional, Protocol

from apscheduler.schedulers.background import BackgroundScheduler
from pydantic import ValidationError

from . import logger
from .detector import StateDetector
from .engine import FallbackEngine
from .models import (
	ActionKind,
	ActionPlan,
	ClockOperation,
	Config,
	DailyScheduleRecord,
	Detection,
	ExecutionOutcome,
	LogEntry,
	LogStatus,
	PunchState,
	ScheduleEntry,
	ScheduleMode,
	SkipReason,
	SkipRecord,
	TriggerType,
)
from .planner import DAY_COMPLETE, HOLIDAY, PASSED, STATE_UNKNOWN, is_valid_for_state, plan
from .storage import ExecutionLog, SettingsStore

RECORD_KEY = 'schedule:{date}:{action}'
SKIP_KEY = 'skip:{date}:{action}'
SUPERSEDED_KEY = 'skip_superseded:{date}:{action}'

# Skips that settle an action for the rest of the day and are worth logging
TERMINAL_SKIPS = {HOLIDAY, PASSED, DAY_COMPLETE, STATE_UNKNOWN}
CLOCK_ACTIONS = {a.value for a in ActionKind}


class SkipCalendar(Protocol):
	def skip_reason(self, day: date) -> Optional[str]: ...


def _minutes(at: time) -> int:
	return at.hour * 60 + at.minute


def _from_minutes(minutes: int) -> time:
	return time(minutes // 60, minutes % 60)


def draw_time(entry: ScheduleEntry, rng: random.Random) -> time:
	"""Pick the time for an entry: fixed copies, random draws a whole minute in the window."""
	if entry.mode == ScheduleMode.FIXED:
		assert entry.fixed_time is not None
		return entry.fixed_time.replace(second=0, microsecond=0)
	assert entry.window_start is not None and entry.window_end is not None
	return _from_minutes(rng.randint(_minutes(entry.window_start), _minutes(entry.window_end)))


def clamp_break_end(break_end: time, break_start: time, max_break_minutes: int) -> time:
	"""Limit a break to at most `max_break_minutes`."""
	latest = _minutes(break_start) + max_break_minutes
	if _minutes(break_end) > latest:
		return _from_minutes(min(latest, 23 * 60 + 59))
	return break_end


class Scheduler:
	"""Drives the automation loop.

	Each tick resolves today's times (once per day, persisted so a restart
	never re-rolls them), then, when automation is enabled, checks for a
	skip-day, detects the state, plans and executes the due clock actions.
	"""

	def __init__(
		self,
		config: Config,
		settings: SettingsStore,
		calendar: SkipCalendar,
		detector: StateDetector,
		engine: FallbackEngine,
		log: ExecutionLog,
		now: Optional[Callable[[], datetime]] = None,
		rng: Optional[random.Random] = None,
		on_status: Optional[Callable[[Detection], None]] = None,
		on_housekeeping: Optional[Callable[[date], None]] = None,
	) -> None:
		self._config = config
		self._settings = settings
		self._calendar = calendar
		self._detector = detector
		self._engine = engine
		self._log = log
		self._now = now or config.now
		self._rng = rng or random.Random()
		self._on_status = on_status
		self._on_housekeeping = on_housekeeping
		self._skips: dict[tuple[date, ActionKind], SkipRecord] = {}
		self._run_lock = threading.RLock()
		self._resolve_lock = threading.Lock()
		self._scheduler: Optional[BackgroundScheduler] = None
		self.current_status: Optional[Detection] = None
		self.last_plan: Optional[ActionPlan] = None

	# =========================================================================
	# Daily resolution
	# =========================================================================

	def _load_record(self, day: date, action: ActionKind) -> Optional[DailyScheduleRecord]:
		raw = self._settings.get(RECORD_KEY.format(date=day.isoformat(), action=action))
		if not raw:
			return None
		try:
			return DailyScheduleRecord.model_validate_json(raw)
		except ValidationError:
			logger.warning('Ignoring corrupted schedule record for %s %s', day, action)
			return None

	def _save_record(self, day: date, action: ActionKind, record: DailyScheduleRecord) -> None:
		self._settings.set(
			RECORD_KEY.format(date=day.isoformat(), action=action), record.model_dump_json()
		)

	def resolve_day(self, day: date) -> list[ScheduleEntry]:
		"""Today's schedule with resolved times and executed flags.

		A stored resolution is reused as long as its entry is unchanged; an
		edited entry (different fingerprint) is re-derived. Disabled entries
		are returned unresolved.
		"""
		resolved: dict[ActionKind, ScheduleEntry] = {}
		with self._resolve_lock:
			for entry in sorted(self._config.schedule, key=lambda e: e.action.order):
				current = entry.model_copy(
					update={'resolved_time': None, 'executed': False, 'attempted': False}
				)
				if not entry.enabled:
					resolved[entry.action] = current
					continue

				record = self._load_record(day, entry.action)
				if record is None or record.fingerprint != entry.fingerprint:
					at = draw_time(entry, self._rng)
					break_start = resolved.get(ActionKind.BREAK_START)
					if (
						entry.action == ActionKind.BREAK_END
						and self._config.max_break_minutes
						and break_start is not None
						and break_start.resolved_time is not None
					):
						at = clamp_break_end(at, break_start.resolved_time, self._config.max_break_minutes)
					record = DailyScheduleRecord(
						resolved_time=at,
						fingerprint=entry.fingerprint,
						executed=record.executed if record else False,
					)
					self._save_record(day, entry.action, record)
					logger.info('🎲 %s on %s resolved to %s', entry.action, day, at.strftime('%H:%M'))

				current.resolved_time = record.resolved_time
				current.executed = record.executed
				current.attempted = record.attempted
				resolved[entry.action] = current
		return list(resolved.values())

	def _flag(self, day: date, action: ActionKind, field: str) -> None:
		with self._resolve_lock:
			record = self._load_record(day, action)
			if record is not None and not getattr(record, field):
				setattr(record, field, True)
				self._save_record(day, action, record)

	def mark_executed(self, day: date, action: ActionKind) -> None:
		"""Flag an action as executed for a day (it will be planned as done)."""
		self._flag(day, action, 'executed')

	def mark_attempted(self, day: date, action: ActionKind) -> None:
		"""Flag a scheduled action that failed for a day; it is not retried that day."""
		self._flag(day, action, 'attempted')

	# =========================================================================
	# Skip records
	# =========================================================================

	def _load_skip(self, day: date, action: ActionKind) -> Optional[SkipRecord]:
		if (record := self._skips.get((day, action))) is not None:
			return record
		raw = self._settings.get(SKIP_KEY.format(date=day.isoformat(), action=action))
		if not raw:
			return None
		try:
			record = SkipRecord.model_validate_json(raw)
		except ValidationError:
			logger.warning('Ignoring corrupted skip record for %s %s', day, action)
			return None
		self._skips[(day, action)] = record
		return record

	def _save_skip(self, record: SkipRecord) -> None:
		self._skips[(record.date, record.action)] = record
		self._settings.set(
			SKIP_KEY.format(date=record.date.isoformat(), action=record.action),
			record.model_dump_json(),
		)

	def skip_records(self, day: Optional[date] = None) -> list[SkipRecord]:
		"""Skip records of one day (persisted), or all records held in memory."""
		if day is None:
			return list(self._skips.values())
		records = (self._load_skip(day, action) for action in ActionKind)
		return [r for r in records if r is not None]

	def superseded_at(self, day: date, action: ActionKind) -> Optional[datetime]:
		"""When a success last superseded the skips of an action on a day."""
		raw = self._settings.get(SUPERSEDED_KEY.format(date=day.isoformat(), action=action))
		return datetime.fromisoformat(raw) if raw else None

	def flag_superseded(self, entries: list[LogEntry]) -> list[LogEntry]:
		"""Copies of `entries` with skips that a later success overruled flagged."""
		flagged = []
		for entry in entries:
			if entry.status == LogStatus.SKIPPED and entry.action in CLOCK_ACTIONS:
				at = self.superseded_at(entry.target_date, ActionKind(entry.action))
				if at is not None and entry.executed_at <= at:
					entry = entry.model_copy(update={'superseded': True})
			flagged.append(entry)
		return flagged

	def _record_skip(self, day: date, skip: SkipReason, trigger: TriggerType) -> None:
		existing = self._load_skip(day, skip.action)
		if existing and not existing.superseded and existing.reason == skip.reason:
			return

		self._save_skip(
			SkipRecord(date=day, action=skip.action, reason=skip.reason, recorded_at=self._now())
		)
		if skip.reason in TERMINAL_SKIPS:
			logger.info('⏭️ %s skipped: %s', skip.action, skip.reason)
			self._log.append(
				LogEntry(
					action=skip.action,
					status=LogStatus.SKIPPED,
					trigger=trigger,
					target_date=day,
					executed_at=self._now(),
					message=skip.reason,
				)
			)

	def _supersede_skip(self, day: date, action: ActionKind) -> None:
		"""Mark the skips of an action stale once that action succeeded anyway."""
		self._settings.set(
			SUPERSEDED_KEY.format(date=day.isoformat(), action=action), self._now().isoformat()
		)
		if record := self._load_skip(day, action):
			record.superseded = True
			self._save_skip(record)

	# =========================================================================
	# Execution
	# =========================================================================

	def _publish(self, detection: Detection) -> None:
		self.current_status = detection
		if self._on_status is not None:
			self._on_status(detection)

	def _after_success(self, day: date, action: ActionKind) -> None:
		self.mark_executed(day, action)
		self._supersede_skip(day, action)
		# The log entry is already appended, so local evidence includes this action
		self._publish(self._detector.detect(day))

	def _run(self, day: date, entries: list[ScheduleEntry], trigger: TriggerType) -> ActionPlan:
		now = self._now()
		skip_reason = self._calendar.skip_reason(day)
		if skip_reason:
			logger.debug('%s is a skip-day: %s', day, skip_reason)
			state = self.current_status.state if self.current_status else PunchState.UNKNOWN
			result = plan(state, entries, now, skip_day=True)
		else:
			detection = self._detector.detect(day)
			self._publish(detection)
			result = plan(
				detection.state, entries, now, grace_minutes=self._config.late_grace_minutes
			)

		for skip in result.skip:
			self._record_skip(day, skip, trigger)

		by_action = {entry.action: entry for entry in entries}
		for action in result.execute:
			entry = by_action.get(action)
			logger.info('⏰ Executing %s', action.label)
			try:
				outcome = self._engine.execute(
					ClockOperation(action=action, date=day),
					trigger=trigger,
					scheduled_time=entry.resolved_time if entry else None,
				)
			except Exception:
				logger.exception('Unexpected error while executing %s', action)
				self.mark_attempted(day, action)
				continue
			if outcome.success:
				self._after_success(day, action)
				# The plan was made for the previous state
				break
			logger.warning('⚠️ %s failed, waiting for its next scheduled day', action.label)
			self.mark_attempted(day, action)

		self.last_plan = result
		return result

	def tick(self) -> Optional[ActionPlan]:
		"""One scheduler tick. Executes nothing while automation is disabled."""
		with self._run_lock:
			day = self._now().date()
			entries = self.resolve_day(day)
			if not self._config.auto_enabled:
				logger.debug('Automation disabled, tick resolved times only')
				return None
			return self._run(day, entries, TriggerType.SCHEDULED)

	def run_now(self) -> ActionPlan:
		"""Run skip check, detection, planning and execution immediately."""
		with self._run_lock:
			day = self._now().date()
			return self._run(day, self.resolve_day(day), TriggerType.MANUAL)

	def trigger_action(self, action: ActionKind, force: bool = False) -> ExecutionOutcome:
		"""Force one clock action now, after checking it is valid for the current state."""
		with self._run_lock:
			day = self._now().date()
			if not force:
				detection = self._detector.detect(day)
				self._publish(detection)
				if not is_valid_for_state(action, detection.state):
					message = f'{action} is not valid while {detection.state.label.lower()}'
					logger.warning('⚠️ %s', message)
					self._log.append(
						LogEntry(
							action=action,
							status=LogStatus.SKIPPED,
							trigger=TriggerType.MANUAL,
							target_date=day,
							executed_at=self._now(),
							message=message,
						)
					)
					return ExecutionOutcome(success=False, error=message)

			outcome = self._engine.execute(
				ClockOperation(action=action, date=day), trigger=TriggerType.MANUAL
			)
			if outcome.success:
				self._after_success(day, action)
			return outcome

	def housekeeping(self) -> None:
		"""Daily cleanup: forget previous days' skips and run the extra hook."""
		today = self._now().date()
		with self._run_lock:
			stale = [key for key in self._skips if key[0] < today]
			for key in stale:
				del self._skips[key]
		if stale:
			logger.debug('Forgot %d skip records from previous days', len(stale))
		if self._on_housekeeping is not None:
			self._on_housekeeping(today)

	# =========================================================================
	# Lifecycle
	# =========================================================================

	def _safe(self, job: Callable[[], object], name: str) -> Callable[[], None]:
		def run() -> None:
			try:
				job()
			except Exception:
				logger.exception('%s failed', name)

		return run

	@property
	def running(self) -> bool:
		return self._scheduler is not None and self._scheduler.running

	def start(self) -> None:
		"""Start the background tick and the 00:01 housekeeping job."""
		if self.running:
			return
		self._scheduler = BackgroundScheduler(
			timezone=self._config.tz,
			job_defaults={'coalesce': True, 'max_instances': 1, 'misfire_grace_time': 60},
		)
		self._scheduler.add_job(
			self._safe(self.tick, 'Tick'),
			'interval',
			seconds=self._config.tick_seconds,
			id='tick',
			next_run_time=datetime.now(self._config.tz),
		)
		self._scheduler.add_job(
			self._safe(self.housekeeping, 'Housekeeping'), 'cron', hour=0, minute=1, id='housekeeping'
		)
		self._scheduler.start()
		logger.info(
			'🚀 Scheduler started (tick every %ds, automation %s)',
			self._config.tick_seconds,
			'on' if self._config.auto_enabled else 'off',
		)

	def stop(self) -> None:
		"""Stop the background jobs."""
		if self._scheduler is not None:
			self._scheduler.shutdown(wait=False)
			self._scheduler = None
			logger.info('🛑 Scheduler stopped')

