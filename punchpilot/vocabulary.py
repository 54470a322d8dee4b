"""Vocabulary for the freee HR UI and API - Japanese and English strings.

Centralizes UI labels, selectors text, and the error markers the remote
system uses to signal a company-level rejection.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional


class PunchButtons(StrEnum):
	"""Japanese labels of the punch buttons (also their data-testid values)."""

	CHECKIN = '出勤'
	CHECKOUT = '退勤'
	BREAK_START = '休憩開始'
	BREAK_END = '休憩終了'

	@property
	def selector(self) -> str:
		"""CSS selector of the button on the time clock page."""
		return f'[data-testid="{self.value}"]'


class ClockTypes(StrEnum):
	"""Clock event types used by the freee time_clocks API."""

	CLOCK_IN = 'clock_in'
	BREAK_BEGIN = 'break_begin'
	BREAK_END = 'break_end'
	CLOCK_OUT = 'clock_out'


class LoginFailureMarkers(StrEnum):
	"""Text shown by the web login page when credentials are rejected."""

	CANNOT_LOGIN = 'ログインできませんでした'
	WRONG_PASSWORD = 'メールアドレスまたはパスワードが正しくありません'
	WRONG_CREDENTIALS = 'ログイン情報が正しくありません'
	LOCKED = 'アカウントがロック'
	INVALID_LOGIN_EN = 'Invalid login'
	INCORRECT_PASSWORD_EN = 'incorrect password'

	@classmethod
	def detect_in(cls, text: str) -> Optional[LoginFailureMarkers]:
		"""Return the first marker found in the given page text."""
		for marker in cls:
			if marker.value in text:
				return marker
		return None


class RejectionMarkers(StrEnum):
	"""Error fragments meaning the company configuration forbids an operation.

	These are stable for the month, so a failure carrying one of them
	marks the strategy tier as known-failing.
	"""

	CORRECTION_DISABLED = '勤怠修正'  # "attendance correction" (is disabled)
	INVALID = '無効'  # "disabled"
	POSITION_ROUTE = '役職'  # approval route by position, unsupported by the API
	DEPARTMENT_ROUTE = '部門'  # approval route by department, unsupported by the API
	NO_PERMISSION = '権限がありません'  # "no permission"

	@classmethod
	def detect_in(cls, text: str) -> Optional[RejectionMarkers]:
		"""Return the first marker found in the given error text."""
		for marker in cls:
			if marker.value in text:
				return marker
		return None


class FormErrorMarkers(StrEnum):
	"""Validation messages shown by the web approval forms."""

	ERROR = 'エラー'  # "error"
	REQUIRED = '入力してください'  # "please enter"
	SPECIFY = '指定してください'  # "please specify" (e.g. the approver)
	FIX = '修正してください'  # "please fix"
	INVALID_VALUE = '正しくありません'  # "is not correct"
	ALREADY_REQUESTED = '既に申請'  # "already requested"
	CANNOT_REQUEST = '申請できません'  # "cannot be requested"

	@classmethod
	def detect_in(cls, text: str) -> Optional[FormErrorMarkers]:
		"""Return the first marker found in the given page text."""
		for marker in cls:
			if marker.value in text:
				return marker
		return None


class LeaveTypes(StrEnum):
	"""Leave request types accepted by the web leave form."""

	PAID_HOLIDAY = 'PaidHoliday'
	SPECIAL_HOLIDAY = 'SpecialHoliday'
	ABSENCE = 'Absence'
	HOLIDAY_WORK = 'HolidayWork'

	@property
	def japanese(self) -> str:
		"""Japanese label shown in the web UI."""
		match self:
			case LeaveTypes.PAID_HOLIDAY:
				return '有給休暇'
			case LeaveTypes.SPECIAL_HOLIDAY:
				return '特別休暇'
			case LeaveTypes.ABSENCE:
				return '欠勤'
			case LeaveTypes.HOLIDAY_WORK:
				return '休日出勤'
			case _:
				return self.value


class Weekdays(StrEnum):
	"""Weekday names (matching Python's datetime.weekday() where Monday=0)."""

	MONDAY = 'monday'
	TUESDAY = 'tuesday'
	WEDNESDAY = 'wednesday'
	THURSDAY = 'thursday'
	FRIDAY = 'friday'
	SATURDAY = 'saturday'
	SUNDAY = 'sunday'

	@classmethod
	def _members(cls) -> list[Weekdays]:
		"""Get all members as a list (workaround for ty type checker)."""
		return list(cls.__members__.values())

	@property
	def short(self) -> str:
		"""Get 3-letter abbreviation (Mon, Tue, etc.)."""
		return self.value[:3].title()

	@property
	def is_weekend(self) -> bool:
		"""Whether this is Saturday or Sunday."""
		return self in (Weekdays.SATURDAY, Weekdays.SUNDAY)

	@classmethod
	def from_number(cls, num: int) -> Optional[Weekdays]:
		"""Get weekday from Python weekday number (Monday=0, Sunday=6)."""
		members = cls._members()
		if 0 <= num < len(members):
			return members[num]
		return None
