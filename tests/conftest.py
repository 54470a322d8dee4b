"""Shared fixtures and fakes for the automation core."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

import pytest

from punchpilot.models import ClockEvent, Config, PunchState
from punchpilot.storage import MemoryExecutionLog, MemorySettingsStore
from punchpilot.strategy import StrategyCache

TODAY = date(2026, 2, 3)  # a Tuesday


class FakeRemote:
	"""Remote attendance client double.

	`errors` maps a method name to an exception (raised on every call) or to a
	list of exceptions consumed one call at a time.
	"""

	def __init__(
		self,
		events: Optional[list[ClockEvent]] = None,
		available: Optional[list[str]] = None,
		read_error: Optional[Exception] = None,
	) -> None:
		self.events = events or []
		self.available = available or []
		self.read_error = read_error
		self.errors: dict[str, object] = {}
		self.calls: list[tuple[str, object]] = []

	def _call(self, name: str, argument: object) -> dict:
		self.calls.append((name, argument))
		error = self.errors.get(name)
		if isinstance(error, list):
			error = error.pop(0) if error else None
		if error is not None:
			raise error
		return {}

	def called(self, name: str) -> int:
		return sum(1 for call, _ in self.calls if call == name)

	# State queries
	def time_clocks(self, day: date) -> list[ClockEvent]:
		self.calls.append(('time_clocks', day))
		if self.read_error is not None:
			raise self.read_error
		return list(self.events)

	def available_clock_types(self, day: date) -> list[str]:
		self.calls.append(('available_clock_types', day))
		if self.read_error is not None:
			raise self.read_error
		return list(self.available)

	# Writes
	def punch(self, action, day):
		return self._call('punch', (action, day))

	def write_work_record(self, operation):
		return self._call('write_work_record', operation)

	def submit_work_time_approval(self, operation, comment=None):
		return self._call('submit_work_time_approval', operation)

	def submit_punches(self, operation):
		self._call('submit_punches', operation)
		return 2

	def write_paid_holiday(self, operation):
		return self._call('write_paid_holiday', operation)

	def submit_paid_holiday_approval(self, operation, comment=None):
		return self._call('submit_paid_holiday_approval', operation)

	def delete_approval_request(self, operation):
		return self._call('delete_approval_request', operation)

	def cancel_approval_request(self, operation):
		return self._call('cancel_approval_request', operation)


class FakeBrowser:
	"""Browser executor double with the same per-method error table."""

	def __init__(self) -> None:
		self.state = PunchState.UNKNOWN
		self.errors: dict[str, object] = {}
		self.calls: list[tuple[str, object]] = []

	def _call(self, name: str, argument: object) -> None:
		self.calls.append((name, argument))
		error = self.errors.get(name)
		if isinstance(error, list):
			error = error.pop(0) if error else None
		if error is not None:
			raise error

	def called(self, name: str) -> int:
		return sum(1 for call, _ in self.calls if call == name)

	def detect_state(self):
		self._call('detect_state', None)
		return self.state

	def punch(self, action):
		self._call('punch', action)

	def submit_correction(self, operation):
		self._call('submit_correction', operation)

	def submit_leave(self, operation):
		self._call('submit_leave', operation)

	def withdraw(self, operation):
		self._call('withdraw', operation)


class Clock:
	"""Settable wall clock."""

	def __init__(self, at: datetime) -> None:
		self.at = at

	def __call__(self) -> datetime:
		return self.at


@pytest.fixture
def config(tmp_path) -> Config:
	return Config(data_dir=tmp_path, holiday_countries=['jp'])


@pytest.fixture
def settings() -> MemorySettingsStore:
	return MemorySettingsStore()


@pytest.fixture
def log() -> MemoryExecutionLog:
	return MemoryExecutionLog()


@pytest.fixture
def cache(settings) -> StrategyCache:
	return StrategyCache(settings)


@pytest.fixture
def remote() -> FakeRemote:
	return FakeRemote()


@pytest.fixture
def browser() -> FakeBrowser:
	return FakeBrowser()
