import random
from datetime import date, datetime, time, timedelta

import pytest

from punchpilot.detector import StateDetector
from punchpilot.engine import FallbackEngine
from punchpilot.errors import RemoteUnavailable, TierUnavailable
from punchpilot.models import (
	ActionKind,
	Config,
	LogEntry,
	LogStatus,
	PunchState,
	ScheduleEntry,
	ScheduleMode,
	TriggerType,
)
from punchpilot.planner import FAILED_TODAY, HOLIDAY, PASSED, STATE_UNKNOWN
from punchpilot.scheduler import Scheduler, clamp_break_end, draw_time

from conftest import TODAY, Clock, FakeRemote


class FakeCalendar:
	def __init__(self, skip_days=None):
		self.skip_days = skip_days or {}

	def skip_reason(self, day):
		return self.skip_days.get(day)


def _fixed(action: ActionKind, at: time) -> ScheduleEntry:
	return ScheduleEntry(action=action, mode=ScheduleMode.FIXED, fixed_time=at)


def _config(tmp_path, **overrides) -> Config:
	fields = {
		'data_dir': tmp_path,
		'auto_enabled': True,
		'schedule': [
			_fixed(ActionKind.CHECKIN, time(9, 0)),
			_fixed(ActionKind.BREAK_START, time(12, 0)),
			_fixed(ActionKind.BREAK_END, time(13, 0)),
			_fixed(ActionKind.CHECKOUT, time(18, 0)),
		],
	}
	fields.update(overrides)
	return Config(**fields)


@pytest.fixture
def clock() -> Clock:
	return Clock(datetime.combine(TODAY, time(9, 5)))


@pytest.fixture
def make_scheduler(tmp_path, settings, cache, log, browser, clock):
	def make(
		remote=None, calendar=None, config=None, rng=None, web=None, remote_reads=True, **kwargs
	) -> Scheduler:
		config = config or _config(tmp_path)
		remote = remote or FakeRemote(available=['clock_in'])
		detector = StateDetector(
			remote if remote_reads else None,
			log,
			attempts=1,
			backoff=0,
			sleep=lambda seconds: None,
			web=web,
			today=lambda: clock().date(),
		)
		engine = FallbackEngine(
			remote, browser, cache, log, today=lambda: clock().date(), now=clock
		)
		return Scheduler(
			config,
			settings,
			calendar or FakeCalendar(),
			detector,
			engine,
			log,
			now=clock,
			rng=rng or random.Random(1),
			**kwargs,
		)

	return make


def _skipped(log, day=TODAY):
	return [e for e in log.query_by_date(day) if e.status == LogStatus.SKIPPED]


def test_draw_time_stays_in_window():
	entry = ScheduleEntry(
		action=ActionKind.CHECKIN,
		mode=ScheduleMode.RANDOM,
		window_start=time(9, 50),
		window_end=time(10, 0),
	)
	rng = random.Random(7)

	for _ in range(50):
		at = draw_time(entry, rng)
		assert time(9, 50) <= at <= time(10, 0)
		assert at.second == 0


def test_clamp_break_end():
	assert clamp_break_end(time(14, 0), time(12, 0), 60) == time(13, 0)
	assert clamp_break_end(time(12, 30), time(12, 0), 60) == time(12, 30)


def test_random_resolution_is_stable_across_restarts(tmp_path, make_scheduler):
	config = _config(
		tmp_path,
		schedule=[
			ScheduleEntry(
				action=ActionKind.CHECKIN,
				mode=ScheduleMode.RANDOM,
				window_start=time(9, 0),
				window_end=time(10, 0),
			)
		],
	)

	first = make_scheduler(config=config, rng=random.Random(1)).resolve_day(TODAY)
	second = make_scheduler(config=config, rng=random.Random(99)).resolve_day(TODAY)

	assert first[0].resolved_time == second[0].resolved_time


def test_edited_entry_is_resolved_again(tmp_path, make_scheduler):
	make_scheduler().resolve_day(TODAY)
	edited = _config(tmp_path, schedule=[_fixed(ActionKind.CHECKIN, time(9, 30))])

	resolved = make_scheduler(config=edited).resolve_day(TODAY)

	assert resolved[0].resolved_time == time(9, 30)


def test_break_end_is_clamped_to_max_break(tmp_path, make_scheduler):
	config = _config(
		tmp_path,
		max_break_minutes=45,
		schedule=[
			_fixed(ActionKind.BREAK_START, time(12, 0)),
			_fixed(ActionKind.BREAK_END, time(14, 0)),
		],
	)

	resolved = {e.action: e for e in make_scheduler(config=config).resolve_day(TODAY)}

	assert resolved[ActionKind.BREAK_END].resolved_time == time(12, 45)


def test_tick_with_automation_disabled_only_resolves(tmp_path, make_scheduler, log):
	remote = FakeRemote(available=['clock_in'])
	scheduler = make_scheduler(remote=remote, config=_config(tmp_path, auto_enabled=False))

	assert scheduler.tick() is None
	assert remote.called('punch') == 0
	assert log.query_by_date(TODAY) == []
	assert scheduler.resolve_day(TODAY)[0].resolved_time == time(9, 0)


def test_tick_executes_due_checkin_once(make_scheduler, log):
	remote = FakeRemote(available=['clock_in'])
	scheduler = make_scheduler(remote=remote)

	result = scheduler.tick()

	assert result.execute == [ActionKind.CHECKIN]
	assert remote.calls.count(('punch', (ActionKind.CHECKIN, TODAY))) == 1
	entry = log.query_by_date(TODAY)[0]
	assert entry.status == LogStatus.SUCCESS
	assert entry.trigger == TriggerType.SCHEDULED
	assert entry.scheduled_time == time(9, 0)

	# The executed flag keeps the next tick from punching twice
	second = scheduler.tick()
	assert ActionKind.CHECKIN in second.done
	assert remote.called('punch') == 1


def test_skip_day_is_logged_once_per_action(make_scheduler, log):
	remote = FakeRemote(available=['clock_in'])
	scheduler = make_scheduler(remote=remote, calendar=FakeCalendar({TODAY: 'JP holiday: test'}))

	scheduler.tick()
	scheduler.tick()

	skipped = _skipped(log)
	assert len(skipped) == len(ActionKind)
	assert {e.message for e in skipped} == {HOLIDAY}
	assert remote.called('punch') == 0
	assert remote.called('time_clocks') == 0


def test_unknown_state_executes_nothing(make_scheduler, log):
	remote = FakeRemote(read_error=RemoteUnavailable('down'))
	scheduler = make_scheduler(remote=remote)

	result = scheduler.tick()

	assert result.execute == []
	assert {e.message for e in _skipped(log)} == {STATE_UNKNOWN}
	assert scheduler.current_status.state == 'unknown'


def test_manual_success_supersedes_missed_window(make_scheduler, log, clock):
	clock.at = datetime.combine(TODAY, time(11, 0))
	remote = FakeRemote(available=['clock_in'])
	scheduler = make_scheduler(remote=remote)

	scheduler.tick()
	assert [e.message for e in _skipped(log)] == [PASSED]

	outcome = scheduler.trigger_action(ActionKind.CHECKIN)

	assert outcome.success
	record = next(r for r in scheduler.skip_records(TODAY) if r.action == ActionKind.CHECKIN)
	assert record.superseded
	assert scheduler.resolve_day(TODAY)[0].executed


def test_trigger_invalid_for_state_is_refused(make_scheduler, log):
	remote = FakeRemote(available=['clock_in'])
	scheduler = make_scheduler(remote=remote)

	outcome = scheduler.trigger_action(ActionKind.CHECKOUT)

	assert not outcome.success
	assert remote.called('punch') == 0
	entry = log.query_by_date(TODAY)[0]
	assert entry.status == LogStatus.SKIPPED
	assert entry.trigger == TriggerType.MANUAL


def test_forced_trigger_skips_state_check(make_scheduler):
	remote = FakeRemote(available=['clock_in'])
	scheduler = make_scheduler(remote=remote)

	outcome = scheduler.trigger_action(ActionKind.CHECKOUT, force=True)

	assert outcome.success
	assert ('punch', (ActionKind.CHECKOUT, TODAY)) in remote.calls


def test_housekeeping_forgets_previous_days(make_scheduler, clock):
	hook_days = []
	scheduler = make_scheduler(
		calendar=FakeCalendar({TODAY: 'weekend (Sat)'}), on_housekeeping=hook_days.append
	)
	scheduler.tick()
	assert scheduler.skip_records(TODAY)

	clock.at = clock.at + timedelta(days=1)
	scheduler.housekeeping()

	assert scheduler.skip_records() == []
	assert hook_days == [TODAY + timedelta(days=1)]


def test_status_listener_receives_detections(make_scheduler):
	seen = []
	scheduler = make_scheduler(on_status=seen.append)

	scheduler.run_now()

	assert seen
	assert seen[0].state == 'not_checked_in'
	assert scheduler.last_plan is not None


def test_new_day_gets_its_own_resolution(make_scheduler, clock, settings):
	remote = FakeRemote(available=['clock_in'])
	scheduler = make_scheduler(remote=remote)
	scheduler.tick()

	tomorrow = date(2026, 2, 4)
	clock.at = datetime.combine(tomorrow, time(9, 5))
	scheduler.tick()

	assert settings.get('schedule:2026-02-04:checkin') is not None
	assert ('punch', (ActionKind.CHECKIN, tomorrow)) in remote.calls
	assert remote.called('punch') == 2


def test_web_buttons_let_a_browser_only_setup_check_in(make_scheduler, browser, log):
	remote = FakeRemote()
	remote.errors['punch'] = TierUnavailable('not authorized')
	browser.state = PunchState.NOT_CHECKED_IN
	scheduler = make_scheduler(remote=remote, web=browser, remote_reads=False)

	result = scheduler.tick()

	assert result.state == PunchState.NOT_CHECKED_IN
	assert result.execute == [ActionKind.CHECKIN]
	assert browser.called('punch') == 1
	assert remote.called('time_clocks') == 0
	assert [e.status for e in log.query_by_date(TODAY)] == [LogStatus.SUCCESS]


def test_failed_action_waits_for_its_next_day(make_scheduler, browser, log, clock):
	remote = FakeRemote(available=['clock_in'])
	remote.errors['punch'] = RemoteUnavailable('down')
	browser.errors['punch'] = RemoteUnavailable('down')
	scheduler = make_scheduler(remote=remote)

	first = scheduler.tick()
	for minute in (6, 7, 8):
		clock.at = datetime.combine(TODAY, time(9, minute))
		later = scheduler.tick()

	assert first.execute == [ActionKind.CHECKIN]
	assert later.execute == []
	assert later.reason_for(ActionKind.CHECKIN) == FAILED_TODAY
	failures = [e for e in log.query_by_date(TODAY) if e.status == LogStatus.FAILURE]
	assert len(failures) == 1
	assert remote.called('punch') == 1
	assert browser.called('punch') == 1
	assert scheduler.resolve_day(TODAY)[0].attempted

	# The operator can still punch by hand
	remote.errors.clear()
	assert scheduler.trigger_action(ActionKind.CHECKIN).success
	assert scheduler.resolve_day(TODAY)[0].executed


def test_failed_action_runs_again_the_next_day(make_scheduler, browser, clock):
	remote = FakeRemote(available=['clock_in'])
	remote.errors['punch'] = [RemoteUnavailable('down')]
	browser.errors['punch'] = [RemoteUnavailable('down')]
	scheduler = make_scheduler(remote=remote)
	scheduler.tick()

	tomorrow = date(2026, 2, 4)
	clock.at = datetime.combine(tomorrow, time(9, 5))
	result = scheduler.tick()

	assert result.execute == [ActionKind.CHECKIN]
	assert ('punch', (ActionKind.CHECKIN, tomorrow)) in remote.calls


def test_supersede_survives_a_restart(make_scheduler, log, clock):
	clock.at = datetime.combine(TODAY, time(11, 0))
	remote = FakeRemote(available=['clock_in'])
	make_scheduler(remote=remote).tick()
	make_scheduler(remote=remote).trigger_action(ActionKind.CHECKIN)

	restarted = make_scheduler(remote=remote)
	record = next(r for r in restarted.skip_records(TODAY) if r.action == ActionKind.CHECKIN)
	entries = restarted.flag_superseded(log.query_by_date(TODAY))

	assert record.superseded
	assert [(e.status, e.superseded) for e in entries] == [
		(LogStatus.SKIPPED, True),
		(LogStatus.SUCCESS, False),
	]


def test_later_skips_are_not_superseded(make_scheduler, log, clock):
	scheduler = make_scheduler()
	scheduler.trigger_action(ActionKind.CHECKIN)
	log.append(
		LogEntry(
			action=ActionKind.CHECKIN,
			status=LogStatus.SKIPPED,
			target_date=TODAY,
			executed_at=clock() + timedelta(minutes=1),
			message='not valid while working',
		)
	)

	entries = scheduler.flag_superseded(log.query_by_date(TODAY))

	assert [e.superseded for e in entries] == [False, False]


def test_skip_logging_is_deduplicated_across_restarts(make_scheduler, log):
	calendar = FakeCalendar({TODAY: 'JP holiday: test'})

	make_scheduler(calendar=calendar).tick()
	make_scheduler(calendar=calendar).tick()

	assert len(_skipped(log)) == len(ActionKind)
