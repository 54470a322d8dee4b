"""Display and formatting utilities for plans, schedules, batches and logs."""

from datetime import date
from typing import Optional

from rich.table import Table

from . import console, logger
from .models import (
	ActionPlan,
	AsyncTask,
	Detection,
	LogEntry,
	LogStatus,
	OperationKind,
	PunchState,
	ScheduleEntry,
	ScheduleMode,
	StrategyCacheEntry,
	StrategyTier,
	TaskStatus,
)
from .vocabulary import Weekdays

STATE_STYLES = {
	PunchState.NOT_CHECKED_IN: 'yellow',
	PunchState.WORKING: 'green',
	PunchState.ON_BREAK: 'cyan',
	PunchState.CHECKED_OUT: 'dim',
	PunchState.UNKNOWN: 'red',
}

STATUS_LABELS = {
	LogStatus.SUCCESS: '[green]✓ Success[/green]',
	LogStatus.FAILURE: '[red]✗ Failure[/red]',
	LogStatus.SKIPPED: '[dim]⏭ Skipped[/dim]',
}


def format_hhmm(value) -> str:
	"""HH:MM of a time, or '-'."""
	return value.strftime('%H:%M') if value else '-'


def format_day(day: date) -> str:
	"""Date with its short weekday name (e.g. '2026-02-03 Tue')."""
	weekday = Weekdays.from_number(day.weekday())
	assert weekday is not None, f'Invalid weekday {day.weekday()} for date {day}'
	return f'{day.isoformat()} {weekday.short}'


def format_state(state: PunchState) -> str:
	style = STATE_STYLES.get(state, 'default')
	return f'[{style}]{state.label}[/{style}]'


def format_window(entry: ScheduleEntry) -> str:
	"""Configured time or window of an entry."""
	if entry.mode == ScheduleMode.RANDOM:
		return f'{format_hhmm(entry.window_start)}-{format_hhmm(entry.window_end)}'
	return format_hhmm(entry.fixed_time)


def display_detection(detection: Detection) -> None:
	"""Print the detected state with its evidence."""
	console.print(f'State: {format_state(detection.state)} [dim]({detection.reason})[/dim]')
	for item in detection.evidence:
		logger.debug('  • %s', item)


def display_schedule(day: date, entries: list[ScheduleEntry], skip_reason: Optional[str] = None) -> None:
	"""Display a day's resolved schedule as a Rich table."""
	title = f'🗓 Schedule ({format_day(day)})'
	if skip_reason:
		title += f' [yellow]- {skip_reason}[/yellow]'

	table = Table(title=title, show_header=True, header_style='bold cyan')
	table.add_column('Action')
	table.add_column('Mode', style='dim')
	table.add_column('Window', justify='center')
	table.add_column('Resolved', justify='center')
	table.add_column('Status', justify='center')

	for entry in entries:
		if not entry.enabled:
			status = '[dim]Disabled[/dim]'
		elif entry.executed:
			status = '[green]✓ Done[/green]'
		elif entry.attempted:
			status = '[red]✗ Failed[/red]'
		else:
			status = '[yellow]Pending[/yellow]'
		table.add_row(
			entry.action.label,
			entry.mode.value,
			format_window(entry),
			f'[bold]{format_hhmm(entry.resolved_time)}[/bold]',
			status,
			style='dim' if not entry.enabled else None,
		)

	console.print(table)


def display_plan(action_plan: ActionPlan) -> None:
	"""Display an action plan as a Rich table."""
	table = Table(
		title=f'📋 Plan (state: {format_state(action_plan.state)})',
		show_header=True,
		header_style='bold cyan',
	)
	table.add_column('Action')
	table.add_column('Decision', justify='center')

	decisions = {a: '[green]→ Execute[/green]' for a in action_plan.execute}
	decisions.update({a: '[dim]✓ Done[/dim]' for a in action_plan.done})
	decisions.update({s.action: f'[dim]Skip ({s.reason})[/dim]' for s in action_plan.skip})

	for action, decision in sorted(decisions.items(), key=lambda item: item[0].order):
		table.add_row(action.label, decision)

	console.print(table)


def display_task(task: AsyncTask) -> None:
	"""Display a batch task and its per-item results."""
	if task.status == TaskStatus.RUNNING:
		logger.info('⏳ Task %s running (%d items)', task.id, task.total)
		return

	table = Table(
		title=f'📦 Batch {task.id[:8]} ({task.status.value})',
		show_header=True,
		header_style='bold cyan',
	)
	table.add_column('#', style='dim', justify='right')
	table.add_column('Item')
	table.add_column('Result', justify='center')
	table.add_column('Tier', justify='center')
	table.add_column('Error', style='dim')

	for result in task.results or []:
		table.add_row(
			str(result.index + 1),
			result.label,
			'[green]✓[/green]' if result.success else '[red]✗[/red]',
			result.tier_used.label if result.tier_used else '-',
			result.error or '',
		)

	console.print(table)
	summary = f'{task.succeeded} succeeded, {task.failed} failed'
	if task.error:
		logger.warning('%s (%s)', summary, task.error)
	else:
		logger.success(summary)


def display_strategy(month: str, entries: dict[OperationKind, StrategyCacheEntry]) -> None:
	"""Display the strategy cache for a month."""
	table = Table(title=f'🧭 Strategy cache ({month})', show_header=True, header_style='bold cyan')
	table.add_column('Operation')
	for tier in StrategyTier:
		table.add_column(f'{tier.value}. {tier.label}', justify='center')
	table.add_column('Updated', style='dim')

	for kind, entry in entries.items():
		cells = []
		for tier in StrategyTier:
			if tier == entry.last_working_tier:
				cells.append('[green]★ works[/green]')
			elif tier in entry.failing:
				cells.append('[red]✗ failing[/red]')
			else:
				cells.append('[dim]-[/dim]')
		updated = entry.updated_at.strftime('%d/%m %H:%M') if entry.updated_at else '-'
		table.add_row(kind.value, *cells, updated)

	console.print(table)


def display_logs(day: date, entries: list[LogEntry]) -> None:
	"""Display a day's execution log."""
	if not entries:
		logger.info('No executions logged for %s.', day.isoformat())
		return

	table = Table(title=f'🧾 Executions ({format_day(day)})', show_header=True, header_style='bold cyan')
	table.add_column('Time', style='dim')
	table.add_column('Action')
	table.add_column('Trigger', style='dim')
	table.add_column('Status', justify='center')
	table.add_column('Tier', justify='center')
	table.add_column('Message')

	for entry in entries:
		status = STATUS_LABELS[entry.status]
		if entry.superseded:
			status = '[dim]⏭ Superseded[/dim]'
		table.add_row(
			entry.executed_at.strftime('%H:%M:%S'),
			entry.action,
			entry.trigger.value,
			status,
			str(entry.tier.value) if entry.tier else '-',
			entry.message or '',
			style='dim strike' if entry.superseded else None,
		)

	console.print(table)


def display_holidays(month_label: str, holidays: list[tuple[date, str]]) -> None:
	"""Display the holidays of a month."""
	if not holidays:
		logger.info('No holidays in %s.', month_label)
		return

	table = Table(title=f'🎌 Holidays ({month_label})', show_header=True, header_style='bold cyan')
	table.add_column('Date', style='dim')
	table.add_column('Name')
	for day, name in holidays:
		table.add_row(format_day(day), name)
	console.print(table)
