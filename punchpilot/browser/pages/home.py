"""Home page - post-login time clock with the punch buttons."""

from __future__ import annotations

from ... import logger
from ...errors import BrowserError
from ...models import ActionKind, PunchState
from .base import BasePage

# Timing constants (milliseconds)
WAIT_FOR_BUTTONS_MS = 2000
WAIT_AFTER_PUNCH_MS = 3000
BUTTON_VISIBLE_TIMEOUT_MS = 10000


class HomePage(BasePage):
	"""Post-login landing page.

	freee shows the time clock (出勤/退勤/休憩開始/休憩終了) here. Only the
	buttons valid for the current state are enabled.
	"""

	PATH = '/'

	def enabled_actions(self) -> set[ActionKind]:
		"""Actions whose punch button is present and enabled."""
		self.page.wait_for_timeout(WAIT_FOR_BUTTONS_MS)
		enabled = set()
		for action in ActionKind:
			locator = self.page.locator(action.button.selector)
			if locator.count() > 0 and locator.first.is_enabled():
				enabled.add(action)
		logger.debug('Enabled punch buttons: %s', ', '.join(sorted(enabled)) or 'none')
		return enabled

	def detect_state(self) -> PunchState:
		"""Infer the punch state from which buttons are enabled."""
		enabled = self.enabled_actions()
		if ActionKind.BREAK_END in enabled:
			return PunchState.ON_BREAK
		if enabled & {ActionKind.CHECKOUT, ActionKind.BREAK_START}:
			return PunchState.WORKING
		if ActionKind.CHECKIN in enabled:
			return PunchState.NOT_CHECKED_IN
		return PunchState.CHECKED_OUT

	def punch(self, action: ActionKind) -> None:
		"""Click the punch button for an action.

		Raises:
			BrowserError: If the button is missing or disabled.
		"""
		selector = action.button.selector
		self.session.checkpoint(f'clicking {action.button.value}')
		self.page.wait_for_selector(selector, state='visible', timeout=BUTTON_VISIBLE_TIMEOUT_MS)
		locator = self.page.locator(selector).first
		if not locator.is_enabled():
			raise BrowserError(f'Punch button {action.button.value} is disabled')
		locator.click()
		self.page.wait_for_timeout(WAIT_AFTER_PUNCH_MS)
		logger.debug('Clicked %s', action.button.value)
