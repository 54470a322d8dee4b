"""State Detector: today's punch state from remote, web or local evidence."""

from __future__ import annotations

from datetime import date
from typing import Callable, Iterable, Optional, Protocol

from tenacity import Retrying, retry_if_result, stop_after_attempt, wait_exponential

from . import logger
from .errors import BrowserError, RemoteError, TierUnavailable, short_message
from .models import ActionKind, ClockEvent, Detection, LogStatus, PunchState
from .storage import ExecutionLog
from .vocabulary import ClockTypes

# Upper bound of one backoff pause, in seconds
MAX_BACKOFF_SECONDS = 10

TRANSITIONS = {
	ClockTypes.CLOCK_IN: PunchState.WORKING,
	ClockTypes.BREAK_BEGIN: PunchState.ON_BREAK,
	ClockTypes.BREAK_END: PunchState.WORKING,
	ClockTypes.CLOCK_OUT: PunchState.CHECKED_OUT,
}


class RemoteStateSource(Protocol):
	"""Read side of the remote attendance client used for detection."""

	def time_clocks(self, day: date) -> list[ClockEvent]: ...

	def available_clock_types(self, day: date) -> list[str]: ...


class WebStateSource(Protocol):
	"""Reads today's state from the web time clock buttons."""

	def detect_state(self) -> PunchState: ...


def fold_events(events: Iterable[ClockEvent]) -> PunchState:
	"""Replay clock events in time order.

	Any number of break cycles is supported: only the latest event decides.
	"""
	state = PunchState.NOT_CHECKED_IN
	for event in sorted(events, key=lambda e: e.at):
		state = TRANSITIONS[event.type]
	return state


def state_from_available_types(types: Iterable[str]) -> Optional[PunchState]:
	"""Infer the state from the clock types the remote accepts next.

	Returns None when the remote offers nothing, which is ambiguous.
	"""
	available = set(types)
	if ClockTypes.BREAK_END in available:
		return PunchState.ON_BREAK
	if available & {ClockTypes.CLOCK_OUT, ClockTypes.BREAK_BEGIN}:
		return PunchState.WORKING
	if ClockTypes.CLOCK_IN in available:
		return PunchState.NOT_CHECKED_IN
	return None


def state_from_log(log: ExecutionLog, day: date) -> Optional[tuple[PunchState, ActionKind]]:
	"""State implied by the last successful clock action logged for `day`."""
	clock_actions = {a.value for a in ActionKind}
	successes = [
		e
		for e in log.query_by_date(day)
		if e.status == LogStatus.SUCCESS and e.action in clock_actions
	]
	if not successes:
		return None
	last = max(successes, key=lambda e: e.executed_at)
	action = ActionKind(last.action)
	return action.resulting_state, action


class StateDetector:
	"""Determines the subject's current punch state for a day. Read-only.

	Evidence is consulted in order: the remote's clock events, the remote's
	available clock types, the web punch buttons (today only), then the local
	execution log. An `unknown` result is retried with exponential backoff
	before it is returned as final.
	"""

	def __init__(
		self,
		remote: Optional[RemoteStateSource],
		log: ExecutionLog,
		attempts: int = 3,
		backoff: float = 1.0,
		sleep: Optional[Callable[[float], None]] = None,
		web: Optional[WebStateSource] = None,
		today: Optional[Callable[[], date]] = None,
	) -> None:
		self._remote = remote
		self._log = log
		self._attempts = attempts
		self._backoff = backoff
		self._sleep = sleep
		self._web = web
		self._today = today or date.today

	def _detect_web(self, day: date, evidence: list[str]) -> Optional[PunchState]:
		if self._web is None or day != self._today():
			return None
		try:
			state = self._web.detect_state()
		except (BrowserError, TierUnavailable) as e:
			evidence.append(f'web unreadable: {short_message(e, 80)}')
			logger.debug('Web state query failed: %s', e)
			return None
		evidence.append(f'web buttons: {state}')
		return None if state == PunchState.UNKNOWN else state

	def detect_once(self, day: date) -> Detection:
		"""Single detection pass without retries."""
		evidence: list[str] = []

		if self._remote is not None:
			try:
				events = self._remote.time_clocks(day)
				evidence.append(f'remote events: {len(events)}')
				if events:
					last = max(events, key=lambda e: e.at)
					return Detection(
						state=fold_events(events),
						reason=f'last remote event {last.type} at {last.at:%H:%M}',
						source='remote',
						evidence=evidence,
					)

				types = self._remote.available_clock_types(day)
				evidence.append(f'available types: {",".join(types) or "none"}')
				if (state := state_from_available_types(types)) is not None:
					return Detection(
						state=state, reason='remote available clock types', source='remote', evidence=evidence
					)
			except RemoteError as e:
				evidence.append(f'remote unreachable: {short_message(e, 80)}')
				logger.debug('Remote state query failed: %s', e)

		if (state := self._detect_web(day, evidence)) is not None:
			return Detection(state=state, reason='web punch buttons', source='web', evidence=evidence)

		if (local := state_from_log(self._log, day)) is not None:
			state, action = local
			evidence.append(f'last logged success: {action}')
			return Detection(
				state=state, reason=f'local log: last successful {action}', source='local', evidence=evidence
			)

		return Detection(
			state=PunchState.UNKNOWN, reason='no usable evidence', source='none', evidence=evidence
		)

	def detect(self, day: date) -> Detection:
		"""Detect the state, retrying a bounded number of times while unknown."""
		kwargs = {}
		if self._sleep is not None:
			kwargs['sleep'] = self._sleep
		retrying = Retrying(
			stop=stop_after_attempt(self._attempts),
			wait=wait_exponential(multiplier=self._backoff, max=MAX_BACKOFF_SECONDS),
			retry=retry_if_result(lambda d: d.state == PunchState.UNKNOWN),
			retry_error_callback=lambda retry_state: retry_state.outcome.result(),
			before_sleep=lambda retry_state: logger.debug(
				'State unknown, retrying (attempt %d/%d)', retry_state.attempt_number, self._attempts
			),
			**kwargs,
		)
		detection = retrying(self.detect_once, day)
		logger.debug('Detected %s via %s (%s)', detection.state, detection.source, detection.reason)
		return detection
