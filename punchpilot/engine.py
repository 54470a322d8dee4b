"""Fallback Execution Engine: try strategy tiers in order, learn what works."""

from __future__ import annotations

import time as time_module
from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any, Callable, Optional

from . import logger
from .errors import FailureClassifier, FailureKind, TierUnavailable, classify_failure, short_message
from .models import (
	ClockOperation,
	CorrectionOperation,
	ExecutionOutcome,
	LeaveOperation,
	LogEntry,
	LogStatus,
	StrategyCacheEntry,
	StrategyTier,
	TierAttempt,
	TriggerType,
	WithdrawalOperation,
	month_key,
	operation_kind,
)
from .storage import ExecutionLog
from .strategy import StrategyCache

if TYPE_CHECKING:
	from .api import RemoteAttendanceClient
	from .browser import BrowserExecutor

DEFAULT_REASON = '打刻漏れのため修正'


def candidate_tiers(
	supported: tuple[StrategyTier, ...], entry: StrategyCacheEntry
) -> list[StrategyTier]:
	"""Tiers to attempt, in order.

	Known-failing tiers are dropped. The tier that last worked this month goes
	first, followed by the remaining tiers in ascending order.
	"""
	candidates = sorted(t for t in supported if t not in entry.failing)
	preferred = entry.last_working_tier
	if preferred is not None and preferred in candidates:
		candidates.remove(preferred)
		candidates.insert(0, preferred)
	return candidates


def _elapsed_ms(started: float) -> int:
	return int((time_module.perf_counter() - started) * 1000)


class FallbackEngine:
	"""Executes logical writes through the ordered strategy tiers.

	Every call appends exactly one execution-log entry, whether the write
	succeeded on some tier or every candidate tier failed.
	"""

	def __init__(
		self,
		client: Optional[RemoteAttendanceClient],
		browser: Optional[BrowserExecutor],
		cache: StrategyCache,
		log: ExecutionLog,
		classifier: FailureClassifier = classify_failure,
		today: Optional[Callable[[], date]] = None,
		now: Optional[Callable[[], datetime]] = None,
		default_reason: str = DEFAULT_REASON,
	) -> None:
		self._client = client
		self._browser = browser
		self._cache = cache
		self._log = log
		self._classifier = classifier
		self._today = today or date.today
		self._now = now or datetime.now
		self._default_reason = default_reason

	def execute(
		self,
		operation: Any,
		trigger: TriggerType = TriggerType.MANUAL,
		scheduled_time: Optional[time] = None,
	) -> ExecutionOutcome:
		"""Run one operation through the fallback chain.

		Args:
			operation: Any of the Clock/Correction/Leave/Withdrawal operations.
			trigger: What caused the execution (recorded in the log).
			scheduled_time: Resolved schedule time, for scheduled clock actions.
		"""
		kind = operation_kind(operation)
		month = month_key(self._today())
		self._cache.reset_if_new_month(month)
		entry = self._cache.lookup(month, kind)
		candidates = candidate_tiers(operation.supported_tiers, entry)

		started = time_module.perf_counter()
		attempts: list[TierAttempt] = []
		last_error: Optional[str] = None

		if not candidates:
			last_error = f'no usable tier for {kind} this month (failing: {sorted(entry.failing)})'
			logger.error('❌ %s: %s', operation.label, last_error)

		for tier in candidates:
			tier_started = time_module.perf_counter()
			logger.debug('[%s] Trying tier %d (%s)', operation.label, tier, tier.label)
			try:
				self._run_tier(tier, operation)
			except Exception as e:
				failure = self._classifier(e)
				last_error = short_message(e)
				attempts.append(
					TierAttempt(
						tier=tier,
						success=False,
						failure=failure,
						error=last_error,
						duration_ms=_elapsed_ms(tier_started),
					)
				)
				if failure == FailureKind.PERMANENT:
					self._cache.record_permanent_failure(month, kind, tier)
					logger.warning(
						'⚠️ Tier %d (%s) rejected for %s this month: %s', tier, tier.label, kind, last_error
					)
				else:
					logger.warning('⚠️ Tier %d (%s) failed: %s', tier, tier.label, last_error)
				continue

			attempts.append(TierAttempt(tier=tier, success=True, duration_ms=_elapsed_ms(tier_started)))
			self._cache.record_success(month, kind, tier)
			outcome = ExecutionOutcome(
				success=True, tier_used=tier, attempts=attempts, duration_ms=_elapsed_ms(started)
			)
			logger.success('✓ %s via tier %d (%s)', operation.label, tier, tier.label)
			self._append_log(operation, trigger, scheduled_time, outcome)
			return outcome

		outcome = ExecutionOutcome(
			success=False, error=last_error, attempts=attempts, duration_ms=_elapsed_ms(started)
		)
		if attempts:
			logger.error('❌ %s failed on every tier [%s]: %s', operation.label, outcome.trail, last_error)
		self._append_log(operation, trigger, scheduled_time, outcome)
		return outcome

	def _append_log(
		self,
		operation: Any,
		trigger: TriggerType,
		scheduled_time: Optional[time],
		outcome: ExecutionOutcome,
	) -> None:
		if outcome.success:
			assert outcome.tier_used is not None
			message = f'{operation.label} via {outcome.tier_used.label}'
		else:
			message = outcome.error or 'failed'
			if outcome.attempts:
				message = f'{message} [{outcome.trail}]'

		self._log.append(
			LogEntry(
				action=getattr(operation, 'action', None) or operation.kind,
				status=LogStatus.SUCCESS if outcome.success else LogStatus.FAILURE,
				trigger=trigger,
				target_date=getattr(operation, 'date', None)
				or getattr(operation, 'target_date', None)
				or self._today(),
				executed_at=self._now(),
				scheduled_time=scheduled_time,
				tier=outcome.tier_used,
				duration_ms=outcome.duration_ms,
				message=message,
				attempts=outcome.attempts,
			)
		)

	# =========================================================================
	# Tier dispatch
	# =========================================================================

	def _remote(self) -> RemoteAttendanceClient:
		if self._client is None:
			raise TierUnavailable('remote API is not configured')
		return self._client

	def _web(self) -> BrowserExecutor:
		if self._browser is None:
			raise TierUnavailable('browser automation is not configured')
		return self._browser

	def _run_tier(self, tier: StrategyTier, operation: Any) -> None:
		match operation:
			case ClockOperation():
				self._run_clock(tier, operation)
			case CorrectionOperation():
				self._run_correction(tier, operation)
			case LeaveOperation():
				self._run_leave(tier, operation)
			case WithdrawalOperation():
				self._run_withdrawal(tier, operation)
			case _:
				raise TypeError(f'Unsupported operation {type(operation).__name__}')

	def _run_clock(self, tier: StrategyTier, operation: ClockOperation) -> None:
		match tier:
			case StrategyTier.PUNCH_EVENT:
				self._remote().punch(operation.action, operation.date)
			case StrategyTier.BROWSER_FORM:
				if operation.date != self._today():
					raise TierUnavailable('the web time clock only punches the current day')
				self._web().punch(operation.action)
			case _:
				raise TierUnavailable(f'tier {tier} does not support clock punches')

	def _run_correction(self, tier: StrategyTier, operation: CorrectionOperation) -> None:
		reason = operation.reason or self._default_reason
		match tier:
			case StrategyTier.DIRECT_WRITE:
				self._remote().write_work_record(operation)
			case StrategyTier.APPROVAL_REQUEST:
				self._remote().submit_work_time_approval(operation, comment=reason)
			case StrategyTier.PUNCH_EVENT:
				self._remote().submit_punches(operation)
			case StrategyTier.BROWSER_FORM:
				self._web().submit_correction(operation)

	def _run_leave(self, tier: StrategyTier, operation: LeaveOperation) -> None:
		match tier:
			case StrategyTier.DIRECT_WRITE:
				self._remote().write_paid_holiday(operation)
			case StrategyTier.APPROVAL_REQUEST:
				self._remote().submit_paid_holiday_approval(operation, comment=operation.reason)
			case StrategyTier.BROWSER_FORM:
				self._web().submit_leave(operation)
			case _:
				raise TierUnavailable(f'tier {tier} does not support leave requests')

	def _run_withdrawal(self, tier: StrategyTier, operation: WithdrawalOperation) -> None:
		match tier:
			case StrategyTier.DIRECT_WRITE:
				self._remote().delete_approval_request(operation)
			case StrategyTier.APPROVAL_REQUEST:
				self._remote().cancel_approval_request(operation)
			case StrategyTier.BROWSER_FORM:
				self._web().withdraw(operation)
			case _:
				raise TierUnavailable(f'tier {tier} does not support withdrawals')
