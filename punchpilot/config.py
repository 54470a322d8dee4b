"""Configuration management for the PunchPilot CLI."""

from datetime import time as dt_time
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import SecretStr, TypeAdapter, ValidationError
from rich.prompt import Confirm, Prompt

from . import logger
from .models import Config, ScheduleEntry, ScheduleMode, default_schedule

DEFAULT_CONFIG_PATH = Path.home() / '.config' / 'punchpilot.json'


def get_config_path() -> Path:
	"""Get the configuration file path."""
	return DEFAULT_CONFIG_PATH


def config_exists() -> bool:
	"""Check if the configuration file exists."""
	return get_config_path().exists()


def load_config(path: Optional[Path] = None) -> Config:
	"""Load configuration from JSON file."""
	config_path = path or get_config_path()

	if not config_path.exists():
		raise FileNotFoundError(
			f"Config not found at {config_path}\nRun 'punchpilot init' to create one."
		)

	try:
		return Config.model_validate_json(config_path.read_text(encoding='utf-8'))
	except ValidationError as e:
		raise ValueError(f'Invalid config: {e}') from e


def save_config(config: Config, path: Optional[Path] = None) -> None:
	"""Save configuration to JSON file."""
	config_path = path or get_config_path()
	config_path.parent.mkdir(parents=True, exist_ok=True)

	try:
		config_path.write_text(config.model_dump_json(indent=2), encoding='utf-8')
		config_path.chmod(0o600)
	except OSError as e:
		raise OSError(f'Failed to save config to {config_path}: {e}') from e


def create_config_interactive() -> Config:
	"""Create a new configuration interactively."""

	time_adapter = TypeAdapter(dt_time)

	def _prompt_time(label: str, default: Optional[dt_time]) -> dt_time:
		"""Prompt for a time value with Pydantic validation."""
		default_str = default.strftime('%H:%M') if default else None
		while True:
			value = Prompt.ask(f'[yellow]{label} (HH:MM)[/yellow]', default=default_str)
			try:
				return time_adapter.validate_python(value)
			except ValidationError:
				logger.error('Invalid time format. Please use HH:MM (e.g., 09:00)')

	def _prompt_entry(default: ScheduleEntry) -> ScheduleEntry:
		"""Prompt for one action's schedule, re-asking until it validates."""
		action = default.action
		while True:
			mode = Prompt.ask(
				f'[yellow]{action.label} mode[/yellow]',
				choices=[m.value for m in ScheduleMode],
				default=default.mode.value,
			)
			if mode == ScheduleMode.FIXED:
				fields = {'fixed_time': _prompt_time('  Time', default.fixed_time)}
			else:
				fields = {
					'window_start': _prompt_time('  Window start', default.window_start),
					'window_end': _prompt_time('  Window end', default.window_end),
				}
			try:
				return ScheduleEntry(action=action, mode=ScheduleMode(mode), **fields)
			except ValidationError as e:
				logger.error('Invalid schedule: %s', e.errors()[0]['msg'])

	logger.info('🔧 PunchPilot Setup\n')

	# API credentials
	logger.info('freee API (OAuth app, leave empty to use the browser only):')
	client_id = Prompt.ask('[yellow]OAuth client ID[/yellow]', default='')
	client_secret = Prompt.ask('[yellow]OAuth client secret[/yellow]', default='', password=True)
	company_name = Prompt.ask('[yellow]Company name (empty = first company)[/yellow]', default='')

	# Web credentials
	logger.info('\nfreee web login (browser fallback):')
	username = Prompt.ask('[yellow]Email / login ID[/yellow]', default='')
	password = Prompt.ask('[yellow]Password[/yellow]', default='', password=True)

	# Calendar
	logger.info('\nCalendar:')
	while True:
		timezone = Prompt.ask('[yellow]Timezone[/yellow]', default='Asia/Tokyo')
		try:
			ZoneInfo(timezone)
			break
		except (ZoneInfoNotFoundError, ValueError):
			logger.error('Unknown timezone %r', timezone)
	countries = Prompt.ask('[yellow]Holiday countries (comma separated, e.g. jp,cn)[/yellow]', default='jp')

	# Schedule
	logger.info('\nSchedule (random picks a minute in the window once per day):')
	schedule = []
	for default in default_schedule():
		entry = _prompt_entry(default)
		if not Confirm.ask(f'  [yellow]Enable {entry.action}?[/yellow]', default=True):
			entry.enabled = False
		schedule.append(entry)

	auto_enabled = Confirm.ask('\n[yellow]Enable automatic punching now?[/yellow]', default=False)
	headless = Confirm.ask('[yellow]Run browser in headless mode?[/yellow]', default=True)

	return Config(
		oauth_client_id=client_id,
		oauth_client_secret=SecretStr(client_secret) if client_secret else None,
		company_name=company_name or None,
		web_username=username or None,
		web_password=SecretStr(password) if password else None,
		timezone=timezone,
		holiday_countries=[c for c in countries.split(',') if c.strip()],
		schedule=sorted(schedule, key=lambda e: e.action.order),
		auto_enabled=auto_enabled,
		headless=headless,
	)
