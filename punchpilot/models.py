"""Pydantic models for configuration, scheduling, strategies and execution results."""

from __future__ import annotations

import hashlib
from datetime import date, datetime, time
from enum import IntEnum, StrEnum
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
	BaseModel,
	ConfigDict,
	Field,
	HttpUrl,
	SecretStr,
	TypeAdapter,
	field_serializer,
	model_validator,
)

from .vocabulary import ClockTypes, LeaveTypes, PunchButtons


class PunchState(StrEnum):
	"""Punch state of the subject for a day."""

	NOT_CHECKED_IN = 'not_checked_in'
	WORKING = 'working'
	ON_BREAK = 'on_break'
	CHECKED_OUT = 'checked_out'
	UNKNOWN = 'unknown'

	@property
	def label(self) -> str:
		"""Human-readable label (e.g., 'On break')."""
		return self.value.replace('_', ' ').capitalize()


class ActionKind(StrEnum):
	"""A clock action the scheduler can perform."""

	CHECKIN = 'checkin'
	BREAK_START = 'break_start'
	BREAK_END = 'break_end'
	CHECKOUT = 'checkout'

	@classmethod
	def _members(cls) -> list[ActionKind]:
		"""Get all members in day order."""
		return list(cls.__members__.values())

	@property
	def order(self) -> int:
		"""Position of the action within a working day."""
		return self._members().index(self)

	@property
	def label(self) -> str:
		"""Human-readable label with the Japanese button name."""
		return f'{self.value.replace("_", " ").title()} ({self.button.value})'

	@property
	def button(self) -> PunchButtons:
		"""Web UI punch button for this action."""
		return {
			ActionKind.CHECKIN: PunchButtons.CHECKIN,
			ActionKind.BREAK_START: PunchButtons.BREAK_START,
			ActionKind.BREAK_END: PunchButtons.BREAK_END,
			ActionKind.CHECKOUT: PunchButtons.CHECKOUT,
		}[self]

	@property
	def clock_type(self) -> ClockTypes:
		"""Remote API clock type for this action."""
		return {
			ActionKind.CHECKIN: ClockTypes.CLOCK_IN,
			ActionKind.BREAK_START: ClockTypes.BREAK_BEGIN,
			ActionKind.BREAK_END: ClockTypes.BREAK_END,
			ActionKind.CHECKOUT: ClockTypes.CLOCK_OUT,
		}[self]

	@property
	def resulting_state(self) -> PunchState:
		"""State reached after this action succeeds."""
		return {
			ActionKind.CHECKIN: PunchState.WORKING,
			ActionKind.BREAK_START: PunchState.ON_BREAK,
			ActionKind.BREAK_END: PunchState.WORKING,
			ActionKind.CHECKOUT: PunchState.CHECKED_OUT,
		}[self]

	@classmethod
	def from_clock_type(cls, clock_type: str) -> Optional[ActionKind]:
		"""Convert a remote clock type into an ActionKind."""
		for action in cls._members():
			if action.clock_type == clock_type:
				return action
		return None


class ScheduleMode(StrEnum):
	"""How a schedule entry picks its time of day."""

	FIXED = 'fixed'
	RANDOM = 'random'


class ScheduleEntry(BaseModel):
	"""Configured time for one action, plus today's resolution.

	`resolved_time`, `executed` and `attempted` are runtime fields: they are
	filled in by the scheduler for a specific date and never written to the
	config file.
	"""

	action: ActionKind
	mode: ScheduleMode = ScheduleMode.FIXED
	fixed_time: Optional[time] = None
	window_start: Optional[time] = None
	window_end: Optional[time] = None
	enabled: bool = True
	resolved_time: Optional[time] = Field(default=None, exclude=True)
	executed: bool = Field(default=False, exclude=True)
	attempted: bool = Field(default=False, exclude=True)

	@model_validator(mode='after')
	def validate_mode(self) -> ScheduleEntry:
		"""Ensure the fields required by the mode are present."""
		if self.mode == ScheduleMode.FIXED and self.fixed_time is None:
			raise ValueError(f'{self.action}: fixed mode requires fixed_time')
		if self.mode == ScheduleMode.RANDOM:
			if self.window_start is None or self.window_end is None:
				raise ValueError(f'{self.action}: random mode requires window_start and window_end')
			if self.window_end < self.window_start:
				raise ValueError(f'{self.action}: window_end must not be before window_start')
		return self

	@property
	def fingerprint(self) -> str:
		"""Stable digest of the configured fields (changes when the entry is edited)."""
		raw = '|'.join(
			str(v)
			for v in (self.action, self.mode, self.fixed_time, self.window_start, self.window_end)
		)
		return hashlib.sha1(raw.encode('utf-8')).hexdigest()[:12]

	@property
	def latest_time(self) -> Optional[time]:
		"""Latest configured time the action is meant to fire at."""
		if self.mode == ScheduleMode.RANDOM:
			return self.window_end
		return self.fixed_time


class SkipReason(BaseModel):
	"""An action the planner decided not to execute, with the reason."""

	model_config = ConfigDict(frozen=True)

	action: ActionKind
	reason: str


class ActionPlan(BaseModel):
	"""Result of planning one tick. Never persisted."""

	state: PunchState
	execute: list[ActionKind] = Field(default_factory=list)
	skip: list[SkipReason] = Field(default_factory=list)
	done: list[ActionKind] = Field(default_factory=list)

	def reason_for(self, action: ActionKind) -> Optional[str]:
		"""Skip reason for an action, if it was skipped."""
		return next((s.reason for s in self.skip if s.action == action), None)


class SkipRecord(BaseModel):
	"""A skip recorded by the scheduler for one action on one date."""

	date: date
	action: ActionKind
	reason: str
	recorded_at: datetime
	superseded: bool = False


class DailyScheduleRecord(BaseModel):
	"""Persisted resolution of one schedule entry for one date."""

	resolved_time: time
	fingerprint: str
	executed: bool = False
	attempted: bool = False


class StrategyTier(IntEnum):
	"""Ordered fallback tiers for a remote write. Lower is faster/preferred."""

	DIRECT_WRITE = 1
	APPROVAL_REQUEST = 2
	PUNCH_EVENT = 3
	BROWSER_FORM = 4

	@property
	def label(self) -> str:
		"""Human-readable label (e.g., 'Direct write')."""
		return self.name.replace('_', ' ').capitalize()


class OperationKind(StrEnum):
	"""Kind of logical write; the strategy cache is scoped by it."""

	CLOCK = 'clock'
	CORRECTION = 'correction'
	LEAVE = 'leave'
	WITHDRAWAL = 'withdrawal'


class StrategyCacheEntry(BaseModel):
	"""Which tier worked, and which are known to fail, for a month and kind."""

	month: str
	kind: OperationKind
	last_working_tier: Optional[StrategyTier] = None
	failing: set[StrategyTier] = Field(default_factory=set)
	updated_at: Optional[datetime] = None


class BreakRecord(BaseModel):
	"""A break interval within a corrected day."""

	start: time
	end: time

	@model_validator(mode='after')
	def validate_times(self) -> BreakRecord:
		"""Ensure the break ends after it starts."""
		if self.end <= self.start:
			raise ValueError('break end must be after break start')
		return self


class ClockOperation(BaseModel):
	"""A single punch (check-in, break, check-out) for a date."""

	kind: Literal['clock'] = 'clock'
	action: ActionKind
	date: date

	@property
	def supported_tiers(self) -> tuple[StrategyTier, ...]:
		"""A live punch can only be a punch event or a button click."""
		return (StrategyTier.PUNCH_EVENT, StrategyTier.BROWSER_FORM)

	@property
	def label(self) -> str:
		return f'{self.action} {self.date.isoformat()}'


class CorrectionOperation(BaseModel):
	"""An attendance correction write for a past (or current) date."""

	kind: Literal['correction'] = 'correction'
	date: date
	clock_in: time
	clock_out: time
	breaks: list[BreakRecord] = Field(default_factory=list)
	reason: Optional[str] = None

	@model_validator(mode='after')
	def validate_times(self) -> CorrectionOperation:
		"""Ensure clock_out is after clock_in."""
		if self.clock_out <= self.clock_in:
			raise ValueError('clock_out must be after clock_in')
		return self

	@property
	def supported_tiers(self) -> tuple[StrategyTier, ...]:
		return tuple(StrategyTier)

	@property
	def label(self) -> str:
		return (
			f'correction {self.date.isoformat()} '
			f'{self.clock_in.strftime("%H:%M")}-{self.clock_out.strftime("%H:%M")}'
		)


class LeaveOperation(BaseModel):
	"""A leave or absence request."""

	kind: Literal['leave'] = 'leave'
	leave_type: LeaveTypes = LeaveTypes.PAID_HOLIDAY
	date: date
	half_day: Optional[Literal['morning', 'afternoon']] = None
	reason: Optional[str] = None

	@property
	def supported_tiers(self) -> tuple[StrategyTier, ...]:
		"""Partial days need an approval route, and only paid leave has an API."""
		if self.leave_type != LeaveTypes.PAID_HOLIDAY:
			return (StrategyTier.BROWSER_FORM,)
		if self.half_day:
			return (StrategyTier.APPROVAL_REQUEST, StrategyTier.BROWSER_FORM)
		return (StrategyTier.DIRECT_WRITE, StrategyTier.APPROVAL_REQUEST, StrategyTier.BROWSER_FORM)

	@property
	def label(self) -> str:
		suffix = f' ({self.half_day})' if self.half_day else ''
		return f'{self.leave_type} {self.date.isoformat()}{suffix}'


class WithdrawalOperation(BaseModel):
	"""Withdrawal of a previously submitted approval request."""

	kind: Literal['withdrawal'] = 'withdrawal'
	request_id: int
	target_date: Optional[date] = None

	@property
	def supported_tiers(self) -> tuple[StrategyTier, ...]:
		"""Delete, cancel action, or the web request list."""
		return (StrategyTier.DIRECT_WRITE, StrategyTier.APPROVAL_REQUEST, StrategyTier.BROWSER_FORM)

	@property
	def label(self) -> str:
		return f'withdraw request #{self.request_id}'


Operation = Annotated[
	Union[ClockOperation, CorrectionOperation, LeaveOperation, WithdrawalOperation],
	Field(discriminator='kind'),
]
OPERATION_ADAPTER: TypeAdapter[Any] = TypeAdapter(Operation)
OPERATIONS_ADAPTER: TypeAdapter[Any] = TypeAdapter(list[Operation])


def operation_kind(operation: Any) -> OperationKind:
	"""OperationKind of any operation model."""
	return OperationKind(operation.kind)


class TierAttempt(BaseModel):
	"""One attempt of one tier during a fallback execution."""

	tier: StrategyTier
	success: bool
	failure: Optional[str] = None  # FailureKind value
	error: Optional[str] = None
	duration_ms: int = 0


class ExecutionOutcome(BaseModel):
	"""Terminal result of a fallback execution."""

	success: bool
	tier_used: Optional[StrategyTier] = None
	error: Optional[str] = None
	attempts: list[TierAttempt] = Field(default_factory=list)
	duration_ms: int = 0

	@property
	def trail(self) -> str:
		"""Compact tier-attempt trail (e.g. '1:permanent 3:transient 4:ok')."""
		return ' '.join(
			f'{a.tier.value}:{"ok" if a.success else a.failure}' for a in self.attempts
		)


class LogStatus(StrEnum):
	"""Terminal status of an execution-log entry."""

	SUCCESS = 'success'
	FAILURE = 'failure'
	SKIPPED = 'skipped'


class TriggerType(StrEnum):
	"""What caused an execution."""

	SCHEDULED = 'scheduled'
	MANUAL = 'manual'
	BATCH = 'batch'


class LogEntry(BaseModel):
	"""One append-only execution log row."""

	action: str
	status: LogStatus
	trigger: TriggerType = TriggerType.SCHEDULED
	target_date: date
	executed_at: datetime
	scheduled_time: Optional[time] = None
	tier: Optional[StrategyTier] = None
	duration_ms: Optional[int] = None
	message: Optional[str] = None
	attempts: list[TierAttempt] = Field(default_factory=list)
	# Set on read when a later success of the same action overruled this skip
	superseded: bool = Field(default=False, exclude=True)


class ClockEvent(BaseModel):
	"""A clock event recorded by the remote system."""

	type: ClockTypes
	at: datetime


class Detection(BaseModel):
	"""Result of a state detection."""

	state: PunchState
	reason: str
	source: Literal['remote', 'web', 'local', 'none'] = 'none'
	evidence: list[str] = Field(default_factory=list)


class TaskStatus(StrEnum):
	"""Lifecycle of an async batch task."""

	RUNNING = 'running'
	COMPLETED = 'completed'
	FAILED = 'failed'


class ItemResult(BaseModel):
	"""Per-item result of a batch."""

	index: int
	label: str
	success: bool
	tier_used: Optional[StrategyTier] = None
	error: Optional[str] = None


class AsyncTask(BaseModel):
	"""Pollable status record of a background batch."""

	id: str
	status: TaskStatus = TaskStatus.RUNNING
	created_at: datetime
	finished_at: Optional[datetime] = None
	total: int = 0
	results: Optional[list[ItemResult]] = None
	error: Optional[str] = None

	@property
	def succeeded(self) -> int:
		return sum(1 for r in self.results or [] if r.success)

	@property
	def failed(self) -> int:
		return sum(1 for r in self.results or [] if not r.success)


class HolidayRuleSet(BaseModel):
	"""National holidays and workday swaps of one country."""

	country: str
	national: dict[date, str] = Field(default_factory=dict)
	workday_swaps: dict[date, str] = Field(default_factory=dict)


def month_key(day: date) -> str:
	"""Month scope string (yyyy-mm) for strategy cache keys."""
	return f'{day.year:04d}-{day.month:02d}'


def default_schedule() -> list[ScheduleEntry]:
	return [
		ScheduleEntry(
			action=ActionKind.CHECKIN,
			mode=ScheduleMode.RANDOM,
			fixed_time=time(10, 0),
			window_start=time(9, 50),
			window_end=time(10, 0),
		),
		ScheduleEntry(
			action=ActionKind.BREAK_START,
			mode=ScheduleMode.RANDOM,
			fixed_time=time(12, 0),
			window_start=time(12, 0),
			window_end=time(12, 45),
		),
		ScheduleEntry(
			action=ActionKind.BREAK_END,
			mode=ScheduleMode.RANDOM,
			fixed_time=time(13, 0),
			window_start=time(13, 0),
			window_end=time(13, 45),
		),
		ScheduleEntry(
			action=ActionKind.CHECKOUT,
			mode=ScheduleMode.RANDOM,
			fixed_time=time(20, 0),
			window_start=time(19, 45),
			window_end=time(20, 15),
		),
	]


class Config(BaseModel):
	"""Main configuration."""

	api_url: HttpUrl = HttpUrl('https://api.freee.co.jp/hr/api/v1')
	token_url: HttpUrl = HttpUrl('https://accounts.secure.freee.co.jp/public_api/token')
	web_url: HttpUrl = HttpUrl('https://p.secure.freee.co.jp')
	oauth_client_id: str = ''
	oauth_client_secret: Optional[SecretStr] = None
	web_username: Optional[str] = None
	web_password: Optional[SecretStr] = None
	company_name: Optional[str] = None
	headless: bool = True
	slow_mo: int = Field(default=100, ge=0)
	timezone: str = 'Asia/Tokyo'
	holiday_countries: list[str] = Field(default_factory=lambda: ['jp'])
	custom_holidays: dict[date, str] = Field(default_factory=dict)
	schedule: list[ScheduleEntry] = Field(default_factory=default_schedule)
	auto_enabled: bool = False
	tick_seconds: int = Field(default=60, ge=5)
	api_timeout: float = Field(default=20.0, gt=0)
	browser_timeout: float = Field(default=180.0, gt=0)
	late_grace_minutes: int = Field(default=15, ge=0)
	max_break_minutes: Optional[int] = Field(default=60, ge=1)
	detector_attempts: int = Field(default=3, ge=1)
	detector_backoff: float = Field(default=1.0, ge=0)
	task_retention_minutes: int = Field(default=30, ge=1)
	default_reason: str = '打刻漏れのため修正'
	data_dir: Path = Field(default_factory=lambda: Path.home() / '.local' / 'share' / 'punchpilot')

	@model_validator(mode='after')
	def validate_schedule(self) -> Config:
		"""Ensure each action is configured at most once and the timezone exists."""
		actions = [entry.action for entry in self.schedule]
		if len(actions) != len(set(actions)):
			raise ValueError('each action may appear only once in schedule')
		try:
			ZoneInfo(self.timezone)
		except (ZoneInfoNotFoundError, ValueError) as e:
			raise ValueError(f'unknown timezone {self.timezone!r}') from e
		self.holiday_countries = [c.strip().lower() for c in self.holiday_countries if c.strip()]
		return self

	@field_serializer('oauth_client_secret', 'web_password', when_used='json')
	def serialize_secret(self, secret: Optional[SecretStr]) -> Optional[str]:
		"""Serialize SecretStr to plain string for JSON output."""
		return secret.get_secret_value() if secret else None

	@property
	def tz(self) -> ZoneInfo:
		"""Configured timezone."""
		return ZoneInfo(self.timezone)

	def now(self) -> datetime:
		"""Current wall-clock time in the configured timezone (naive)."""
		return datetime.now(self.tz).replace(tzinfo=None)

	def today(self) -> date:
		"""Current date in the configured timezone."""
		return self.now().date()

	def entry_for(self, action: ActionKind) -> Optional[ScheduleEntry]:
		"""Configured schedule entry for an action."""
		return next((e for e in self.schedule if e.action == action), None)
