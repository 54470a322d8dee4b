"""Action Planner: which clock actions to execute now, given state and schedule."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable

from .models import ActionKind, ActionPlan, PunchState, ScheduleEntry, SkipReason

DEFAULT_GRACE_MINUTES = 15

# Skip reasons
HOLIDAY = 'holiday/weekend'
PREREQUISITE = 'prerequisite not met'
NOT_ON_BREAK = 'not on break'
ON_BREAK = 'on break'
DAY_COMPLETE = 'day complete'
STATE_UNKNOWN = 'state unknown'
DISABLED = 'disabled'
NOT_RESOLVED = 'time not resolved'
NOT_YET = 'window not yet reached'
PASSED = 'window passed'
FAILED_TODAY = 'failed earlier today'

EXECUTABLE = {
	PunchState.NOT_CHECKED_IN: {ActionKind.CHECKIN},
	PunchState.WORKING: {ActionKind.BREAK_START, ActionKind.CHECKOUT},
	PunchState.ON_BREAK: {ActionKind.BREAK_END},
	PunchState.CHECKED_OUT: set(),
	PunchState.UNKNOWN: set(),
}

DONE = {
	PunchState.WORKING: {ActionKind.CHECKIN},
	PunchState.ON_BREAK: {ActionKind.CHECKIN, ActionKind.BREAK_START},
}

BLOCKED_REASON = {
	PunchState.NOT_CHECKED_IN: PREREQUISITE,
	PunchState.WORKING: NOT_ON_BREAK,
	PunchState.ON_BREAK: ON_BREAK,
	PunchState.CHECKED_OUT: DAY_COMPLETE,
	PunchState.UNKNOWN: STATE_UNKNOWN,
}


def is_valid_for_state(action: ActionKind, state: PunchState) -> bool:
	"""Whether `action` can be performed from `state`."""
	return action in EXECUTABLE[state]


def plan(
	state: PunchState,
	schedule: Iterable[ScheduleEntry],
	now: datetime,
	skip_day: bool = False,
	grace_minutes: int = DEFAULT_GRACE_MINUTES,
) -> ActionPlan:
	"""Decide which actions to execute at `now`.

	Pure and deterministic: the same inputs always produce the same plan.
	Entries must already carry today's resolution and runtime flags. An
	attempted entry failed on every tier today and waits for its next day.

	Args:
		state: Detected punch state.
		schedule: Schedule entries (actions without an entry count as disabled).
		now: Current wall-clock time in the configured timezone.
		skip_day: Whether today is a holiday or weekend.
		grace_minutes: How long after its window an action may still fire.
	"""
	entries = {entry.action: entry for entry in schedule}
	result = ActionPlan(state=state)

	if skip_day:
		result.skip = [SkipReason(action=a, reason=HOLIDAY) for a in ActionKind]
		return result

	grace = timedelta(minutes=grace_minutes)
	for action in ActionKind:
		entry = entries.get(action)

		if (entry is not None and entry.executed) or action in DONE.get(state, set()):
			result.done.append(action)
			continue
		if entry is not None and entry.attempted:
			result.skip.append(SkipReason(action=action, reason=FAILED_TODAY))
			continue
		if not is_valid_for_state(action, state):
			result.skip.append(SkipReason(action=action, reason=BLOCKED_REASON[state]))
			continue
		if entry is None or not entry.enabled:
			result.skip.append(SkipReason(action=action, reason=DISABLED))
			continue
		if entry.resolved_time is None:
			result.skip.append(SkipReason(action=action, reason=NOT_RESOLVED))
			continue

		resolved_at = datetime.combine(now.date(), entry.resolved_time)
		if now < resolved_at:
			result.skip.append(SkipReason(action=action, reason=NOT_YET))
			continue

		window_end = max(entry.resolved_time, entry.latest_time or entry.resolved_time)
		if now > datetime.combine(now.date(), window_end) + grace:
			result.skip.append(SkipReason(action=action, reason=PASSED))
			continue

		result.execute.append(action)

	return result
