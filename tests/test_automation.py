from datetime import date, time, timedelta

from pydantic import SecretStr

from punchpilot.automation import PunchPilot
from punchpilot.browser import BrowserExecutor
from punchpilot.models import (
	ActionKind,
	Config,
	CorrectionOperation,
	LogEntry,
	LogStatus,
	OperationKind,
	PunchState,
	ScheduleEntry,
)
from punchpilot.storage import MemoryExecutionLog, MemorySettingsStore


def _pilot(tmp_path) -> PunchPilot:
	config = Config(
		data_dir=tmp_path,
		holiday_countries=[],
		schedule=[ScheduleEntry(action=ActionKind.CHECKIN, fixed_time=time(9, 0))],
	)
	return PunchPilot.from_config(config, settings=MemorySettingsStore(), log=MemoryExecutionLog())


def test_unconfigured_pilot_fails_without_poisoning_the_cache(tmp_path):
	pilot = _pilot(tmp_path)
	operation = CorrectionOperation(date=date(2026, 2, 2), clock_in=time(9), clock_out=time(18))

	outcome = pilot.execute(operation)

	assert not outcome.success
	assert len(outcome.attempts) == 4
	entries = pilot.logs_for(date(2026, 2, 2))
	assert [e.status for e in entries] == [LogStatus.FAILURE]
	assert all(not entry.failing for entry in pilot.strategy_status().values())
	pilot.stop()


def test_strategy_status_lists_every_kind(tmp_path):
	pilot = _pilot(tmp_path)

	status = pilot.strategy_status('2026-02')

	assert set(status) == set(OperationKind)
	assert all(entry.month == '2026-02' for entry in status.values())
	pilot.stop()


def test_weekend_check_without_countries(tmp_path):
	pilot = _pilot(tmp_path)

	assert pilot.is_skip_day(date(2026, 2, 7))
	assert pilot.skip_reason(date(2026, 2, 3)) is None
	pilot.stop()


def test_resolved_schedule_is_persisted(tmp_path):
	pilot = _pilot(tmp_path)

	entries = pilot.resolved_schedule_for(date(2026, 2, 3))

	assert entries[0].resolved_time == time(9, 0)
	assert pilot.settings.get('schedule:2026-02-03:checkin') is not None
	pilot.stop()


def _web_only_pilot(tmp_path, monkeypatch, state: PunchState) -> tuple[PunchPilot, list]:
	punches = []
	monkeypatch.setattr(BrowserExecutor, 'detect_state', lambda self: state)
	monkeypatch.setattr(BrowserExecutor, 'punch', lambda self, action: punches.append(action))
	config = Config(
		data_dir=tmp_path,
		holiday_countries=[],
		detector_backoff=0,
		web_username='me@example.com',
		web_password=SecretStr('pw'),
	)
	pilot = PunchPilot.from_config(config, settings=MemorySettingsStore(), log=MemoryExecutionLog())
	return pilot, punches


def test_web_only_pilot_reads_state_from_the_punch_buttons(tmp_path, monkeypatch):
	pilot, _ = _web_only_pilot(tmp_path, monkeypatch, PunchState.NOT_CHECKED_IN)

	detection = pilot.detect_state()

	assert detection.state == PunchState.NOT_CHECKED_IN
	assert detection.source == 'web'
	pilot.stop()


def test_logs_flag_skips_overruled_by_a_manual_punch(tmp_path, monkeypatch):
	pilot, punches = _web_only_pilot(tmp_path, monkeypatch, PunchState.NOT_CHECKED_IN)
	now = pilot.config.now()
	pilot.log.append(
		LogEntry(
			action=ActionKind.CHECKIN,
			status=LogStatus.SKIPPED,
			target_date=now.date(),
			executed_at=now - timedelta(minutes=5),
			message='window passed',
		)
	)

	outcome = pilot.trigger_action(ActionKind.CHECKIN)

	assert outcome.success
	assert punches == [ActionKind.CHECKIN]
	entries = pilot.logs_for(now.date())
	assert [(e.status, e.superseded) for e in entries] == [
		(LogStatus.SKIPPED, True),
		(LogStatus.SUCCESS, False),
	]
	pilot.stop()
