"""Command-line interface for PunchPilot."""

from __future__ import annotations

import re
import secrets
import subprocess
import time
from datetime import date
from pathlib import Path
from typing import Optional

import click
from click.shell_completion import CompletionItem
from pydantic import ValidationError
from rich.panel import Panel
from rich.prompt import Prompt

from . import __version__, console, enable_debug_logging, enable_timestamps, logger
from .api import RemoteAttendanceClient
from .automation import PunchPilot
from .config import (
	config_exists,
	create_config_interactive,
	get_config_path,
	load_config,
	save_config,
)
from .display import (
	display_detection,
	display_holidays,
	display_logs,
	display_plan,
	display_schedule,
	display_strategy,
	display_task,
)
from .errors import RemoteError
from .models import OPERATIONS_ADAPTER, ActionKind, Config, TaskStatus, month_key

# Seconds between batch status polls
POLL_INTERVAL = 1.0


class ActionType(click.ParamType):
	"""Custom type that accepts a clock action name (case-insensitive, prefix match)."""

	name = 'action'

	def convert(
		self,
		value: str,
		param: Optional[click.Parameter],
		ctx: Optional[click.Context],
	) -> ActionKind:
		"""Convert an action name or unique prefix to an ActionKind."""
		if isinstance(value, ActionKind):
			return value

		value_lower = value.lower().replace('-', '_')
		matches = [a for a in ActionKind if a.value.startswith(value_lower)]
		if len(matches) == 1:
			return matches[0]
		elif len(matches) > 1:
			self.fail(f"Ambiguous action '{value}' - matches: {[m.value for m in matches]}", param, ctx)
		else:
			self.fail(f"Unknown action '{value}'", param, ctx)

	def shell_complete(
		self,
		ctx: click.Context,
		param: click.Parameter,
		incomplete: str,
	) -> list[CompletionItem]:
		"""Provide shell autocompletion."""
		return [CompletionItem(a.value) for a in ActionKind if a.value.startswith(incomplete.lower())]


class DateType(click.ParamType):
	"""Custom type for YYYY-MM-DD dates (also 'today')."""

	name = 'date'

	def convert(
		self,
		value: str,
		param: Optional[click.Parameter],
		ctx: Optional[click.Context],
	) -> date:
		if isinstance(value, date):
			return value
		if value.lower() == 'today':
			return date.today()
		try:
			return date.fromisoformat(value)
		except ValueError:
			self.fail(f"Invalid date '{value}', expected YYYY-MM-DD", param, ctx)


class MonthKeyType(click.ParamType):
	"""Custom type for YYYY-MM month keys."""

	name = 'month'

	def convert(
		self,
		value: str,
		param: Optional[click.Parameter],
		ctx: Optional[click.Context],
	) -> str:
		if not re.fullmatch(r'\d{4}-(0[1-9]|1[0-2])', value):
			self.fail(f"Invalid month '{value}', expected YYYY-MM", param, ctx)
		return value


ACTION = ActionType()
DATE = DateType()
MONTH = MonthKeyType()

COMMAND_SETTINGS = {'help_option_names': ['-h', '--help']}


def _load(ctx: click.Context) -> Optional[Config]:
	"""Load the config for a command, logging instead of raising."""
	try:
		return load_config(ctx.obj.get('config_path'))
	except (FileNotFoundError, ValueError) as e:
		logger.error('%s', e)
		return None


def _pilot(ctx: click.Context) -> Optional[PunchPilot]:
	config = _load(ctx)
	return PunchPilot.from_config(config) if config else None


@click.group(invoke_without_command=True, context_settings=COMMAND_SETTINGS)
@click.option('--version', '-v', is_flag=True, help='Show version and exit.')
@click.option('--config', '-c', type=click.Path(exists=True), help='Config file path.')
@click.option('--verbose', is_flag=True, help='Enable verbose/debug logging.')
@click.pass_context
def main(ctx: click.Context, version: bool, config: Optional[str], verbose: bool) -> None:
	"""🕐 PunchPilot - freee HR attendance autopilot

	Punches in and out on a daily schedule, skips holidays, and falls back
	from the API to the web UI when a company blocks a write.

	\b
	Quick start:
		1. Run 'punchpilot init' to create your config
		2. Run 'punchpilot auth' to connect the freee API (optional)
		3. Run 'punchpilot plan' to see what would happen now
		4. Run 'punchpilot run' to start the scheduler

	\b
	Config file: ~/.config/punchpilot.json
	"""
	if verbose:
		enable_debug_logging()
	ctx.ensure_object(dict)
	ctx.obj['config_path'] = Path(config) if config else None

	if version:
		logger.info('punchpilot version %s', __version__)
		return

	if ctx.invoked_subcommand is None:
		click.echo(ctx.get_help())


@main.command(context_settings=COMMAND_SETTINGS)
@click.option('--force', '-f', is_flag=True, help='Overwrite existing config.')
@click.option('--skip-browser', is_flag=True, help='Do not install the Playwright browser.')
def init(force: bool, skip_browser: bool) -> None:
	"""Initialize configuration and install the browser."""
	config_path = get_config_path()

	if config_exists() and not force:
		logger.warning('Configuration already exists at %s', config_path)
		logger.info('Use --force to overwrite.')
		return

	config = create_config_interactive()
	save_config(config)

	if not skip_browser:
		logger.info('Installing Playwright browser...')
		try:
			result = subprocess.run(
				['playwright', 'install', 'chromium'], capture_output=True, text=True, check=False
			)
			if result.returncode == 0:
				logger.success('✓ Browser installed!')
			else:
				logger.warning("Browser install failed. Run 'playwright install chromium' manually.")
		except (subprocess.SubprocessError, OSError) as e:
			logger.warning('Could not install browser: %s', e)

	console.print(
		Panel(
			f'[green]✓ Setup complete![/green]\n\n'
			f'Config: [cyan]{config_path}[/cyan]\n'
			f'Automation: [cyan]{"on" if config.auto_enabled else "off"}[/cyan]\n\n'
			f"[dim]Run 'punchpilot auth' to connect the API, then 'punchpilot plan'.[/dim]",
			title='🎉 Ready',
			border_style='green',
		)
	)


@main.command(context_settings=COMMAND_SETTINGS)
@click.pass_context
def auth(ctx: click.Context) -> None:
	"""Authorize the freee API (OAuth authorization code)."""
	pilot = _pilot(ctx)
	if pilot is None:
		return
	if not pilot.config.oauth_client_id:
		logger.error("No OAuth client ID configured. Run 'punchpilot init --force'.")
		return

	client = RemoteAttendanceClient(pilot.config, pilot.settings)
	console.print(
		Panel(
			f'Open this URL, approve access and paste the code below:\n\n'
			f'[cyan]{client.authorize_url(secrets.token_hex(16))}[/cyan]',
			title='🔑 freee authorization',
		)
	)
	code = Prompt.ask('[yellow]Authorization code[/yellow]').strip()
	try:
		client.exchange_code(code)
		info = client.verify_connection()
	except RemoteError as e:
		logger.error('Authorization failed: %s', e)
		return
	logger.success(
		'✓ Connected as %s (company %s, employee %s)',
		info['display_name'] or info['email'],
		info['company_id'],
		info['employee_id'],
	)


@main.command(context_settings=COMMAND_SETTINGS)
@click.pass_context
def status(ctx: click.Context) -> None:
	"""Show today's punch state and schedule."""
	pilot = _pilot(ctx)
	if pilot is None:
		return

	today = pilot.config.today()
	display_detection(pilot.detect_state(today))
	display_schedule(today, pilot.resolved_schedule_for(today), pilot.skip_reason(today))
	logger.info('Automation: %s', 'on' if pilot.config.auto_enabled else 'off')


@main.command(context_settings=COMMAND_SETTINGS)
@click.pass_context
def plan(ctx: click.Context) -> None:
	"""Show what a scheduler tick would do right now (executes nothing)."""
	pilot = _pilot(ctx)
	if pilot is None:
		return
	display_plan(pilot.plan_today())


@main.command(context_settings=COMMAND_SETTINGS)
@click.argument('day', type=DATE, required=False)
@click.pass_context
def schedule(ctx: click.Context, day: Optional[date]) -> None:
	"""Show the resolved schedule for a day (default: today)."""
	pilot = _pilot(ctx)
	if pilot is None:
		return
	day = day or pilot.config.today()
	display_schedule(day, pilot.resolved_schedule_for(day), pilot.skip_reason(day))


@main.command(context_settings=COMMAND_SETTINGS)
@click.option('--once', is_flag=True, help='Run one check immediately and exit.')
@click.pass_context
def run(ctx: click.Context, once: bool) -> None:
	"""Run the scheduler (foreground) or a single immediate check.

	\b
	Examples:
		punchpilot run           # Tick every minute until Ctrl-C
		punchpilot run --once    # Detect, plan and execute what is due now
	"""
	pilot = _pilot(ctx)
	if pilot is None:
		return

	if once:
		display_plan(pilot.run_now())
		pilot.stop()
		return

	enable_timestamps()
	if not pilot.config.auto_enabled:
		logger.warning("⚠️ Automation is off: times are resolved but nothing is punched.")
	pilot.start()
	try:
		while True:
			time.sleep(1)
	except KeyboardInterrupt:
		logger.info('Stopping...')
	finally:
		pilot.stop()


@main.command(context_settings=COMMAND_SETTINGS)
@click.argument('action', type=ACTION)
@click.option('--force', is_flag=True, help='Skip the state validity check.')
@click.pass_context
def trigger(ctx: click.Context, action: ActionKind, force: bool) -> None:
	"""Punch one action now (checkin, break_start, break_end, checkout)."""
	pilot = _pilot(ctx)
	if pilot is None:
		return

	outcome = pilot.trigger_action(action, force=force)
	pilot.stop()
	if outcome.success:
		assert outcome.tier_used is not None
		logger.success('✓ %s done via %s (%dms)', action.label, outcome.tier_used.label, outcome.duration_ms)
	else:
		logger.error('✗ %s failed: %s', action.label, outcome.error)
		if outcome.attempts:
			logger.info('  Attempts: %s', outcome.trail)


@main.command(context_settings=COMMAND_SETTINGS)
@click.argument('file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--dry-run', '-d', is_flag=True, help='Validate and list the operations only.')
@click.pass_context
def batch(ctx: click.Context, file: Path, dry_run: bool) -> None:
	"""Run a JSON list of operations in the background and wait for it.

	Each item has a "kind" of clock, correction, leave or withdrawal.
	Ctrl-C abandons the items that have not started yet.

	\b
	Example file:
		[{"kind": "correction", "date": "2026-02-03",
		  "clock_in": "10:00", "clock_out": "19:00",
		  "breaks": [{"start": "12:00", "end": "13:00"}]}]
	"""
	try:
		operations = OPERATIONS_ADAPTER.validate_json(file.read_text(encoding='utf-8'))
	except ValidationError as e:
		logger.error('Invalid batch file: %s', e)
		return

	if dry_run:
		for index, operation in enumerate(operations, start=1):
			tiers = ', '.join(str(t.value) for t in operation.supported_tiers)
			logger.info('%d. %s [tiers %s]', index, operation.label, tiers)
		logger.info('%d operations (dry run, nothing submitted)', len(operations))
		return

	pilot = _pilot(ctx)
	if pilot is None:
		return

	task_id = pilot.submit_batch(operations)
	task = pilot.batch_status(task_id)
	with console.status(f'Running batch {task_id[:8]} ({len(operations)} items)...'):
		while task is not None and task.status == TaskStatus.RUNNING:
			try:
				time.sleep(POLL_INTERVAL)
			except KeyboardInterrupt:
				if pilot.abandon_batch(task_id):
					logger.warning('Abandoning: waiting for the current item to finish...')
			task = pilot.batch_status(task_id)

	pilot.stop()
	if task is not None:
		display_task(task)


@main.command(context_settings=COMMAND_SETTINGS)
@click.argument('day', type=DATE, required=False)
@click.option('--country', '-C', multiple=True, help='Country code(s), default: configured.')
@click.pass_context
def holiday(ctx: click.Context, day: Optional[date], country: tuple[str, ...]) -> None:
	"""Check a date, or list this month's holidays.

	\b
	Examples:
		punchpilot holiday                  # Holidays this month
		punchpilot holiday 2026-01-01       # Is it a skip-day?
		punchpilot holiday 2026-10-01 -C cn # Check against China's calendar
	"""
	pilot = _pilot(ctx)
	if pilot is None:
		return
	countries = list(country) or pilot.config.holiday_countries

	if day is not None:
		if reason := pilot.skip_reason(day, countries):
			logger.info('⏭ %s is a skip-day: %s', day.isoformat(), reason)
		else:
			logger.success('✓ %s is a working day', day.isoformat())
		return

	today = pilot.config.today()
	for code in countries:
		display_holidays(
			f'{code.upper()} {today:%Y-%m}',
			pilot.calendar.holidays_in_month(today.year, today.month, code),
		)


@main.command(context_settings=COMMAND_SETTINGS)
@click.option('--month', '-m', type=MONTH, help='Month (YYYY-MM). Default: current.')
@click.pass_context
def strategy(ctx: click.Context, month: Optional[str]) -> None:
	"""Show which write tiers work this month."""
	pilot = _pilot(ctx)
	if pilot is None:
		return
	month = month or month_key(pilot.config.today())
	display_strategy(month, pilot.strategy_status(month))


@main.command(context_settings=COMMAND_SETTINGS)
@click.option('--date', '-d', 'day', type=DATE, help='Day (YYYY-MM-DD). Default: today.')
@click.pass_context
def logs(ctx: click.Context, day: Optional[date]) -> None:
	"""Show the execution log of a day."""
	pilot = _pilot(ctx)
	if pilot is None:
		return
	day = day or pilot.config.today()
	display_logs(day, pilot.logs_for(day))


if __name__ == '__main__':
	main()
