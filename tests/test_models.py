from datetime import date, time

import pytest
from pydantic import ValidationError

from punchpilot.models import (
	OPERATIONS_ADAPTER,
	ActionKind,
	ClockOperation,
	Config,
	CorrectionOperation,
	LeaveOperation,
	ScheduleEntry,
	ScheduleMode,
	StrategyTier,
	WithdrawalOperation,
	month_key,
)
from punchpilot.vocabulary import ClockTypes, LeaveTypes


def test_action_kind_mappings():
	assert [a.order for a in ActionKind] == [0, 1, 2, 3]
	assert ActionKind.CHECKIN.clock_type == ClockTypes.CLOCK_IN
	assert ActionKind.from_clock_type('break_begin') == ActionKind.BREAK_START
	assert ActionKind.from_clock_type('nope') is None
	assert ActionKind.BREAK_END.label == 'Break End (休憩終了)'


def test_schedule_entry_requires_fields_for_its_mode():
	with pytest.raises(ValidationError):
		ScheduleEntry(action=ActionKind.CHECKIN, mode=ScheduleMode.FIXED)
	with pytest.raises(ValidationError):
		ScheduleEntry(
			action=ActionKind.CHECKIN,
			mode=ScheduleMode.RANDOM,
			window_start=time(10, 0),
			window_end=time(9, 0),
		)


def test_fingerprint_ignores_runtime_fields():
	entry = ScheduleEntry(action=ActionKind.CHECKIN, fixed_time=time(9, 0))
	resolved = entry.model_copy(update={'resolved_time': time(9, 0), 'executed': True})
	edited = ScheduleEntry(action=ActionKind.CHECKIN, fixed_time=time(9, 1))

	assert entry.fingerprint == resolved.fingerprint
	assert entry.fingerprint != edited.fingerprint
	assert 'resolved_time' not in entry.model_dump()


def test_config_rejects_duplicate_actions_and_bad_timezone():
	entry = ScheduleEntry(action=ActionKind.CHECKIN, fixed_time=time(9, 0))
	with pytest.raises(ValidationError):
		Config(schedule=[entry, entry])
	with pytest.raises(ValidationError):
		Config(timezone='Mars/Olympus')


def test_config_normalizes_countries_and_round_trips_secrets():
	config = Config(holiday_countries=[' JP', 'cn ', ''], web_password='hunter2')

	assert config.holiday_countries == ['jp', 'cn']
	restored = Config.model_validate_json(config.model_dump_json())
	assert restored.web_password.get_secret_value() == 'hunter2'


def test_operations_parse_by_kind():
	operations = OPERATIONS_ADAPTER.validate_python([
		{'kind': 'clock', 'action': 'checkin', 'date': '2026-02-03'},
		{'kind': 'correction', 'date': '2026-02-02', 'clock_in': '09:00', 'clock_out': '18:00'},
		{'kind': 'leave', 'date': '2026-02-06', 'half_day': 'afternoon'},
		{'kind': 'withdrawal', 'request_id': 7},
	])

	assert [type(op) for op in operations] == [
		ClockOperation,
		CorrectionOperation,
		LeaveOperation,
		WithdrawalOperation,
	]
	assert operations[2].leave_type == LeaveTypes.PAID_HOLIDAY


def test_correction_must_end_after_it_starts():
	with pytest.raises(ValidationError):
		CorrectionOperation(date=date(2026, 2, 2), clock_in=time(18), clock_out=time(9))


def test_supported_tiers_per_operation():
	assert ClockOperation(action=ActionKind.CHECKIN, date=date(2026, 2, 3)).supported_tiers == (
		StrategyTier.PUNCH_EVENT,
		StrategyTier.BROWSER_FORM,
	)
	assert LeaveOperation(
		date=date(2026, 2, 6), leave_type=LeaveTypes.ABSENCE
	).supported_tiers == (StrategyTier.BROWSER_FORM,)
	assert StrategyTier.PUNCH_EVENT not in WithdrawalOperation(request_id=1).supported_tiers


def test_month_key():
	assert month_key(date(2026, 2, 3)) == '2026-02'
