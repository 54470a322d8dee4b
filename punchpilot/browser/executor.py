"""Browser Fallback Executor: one exclusive, deadline-bounded web session at a time."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Optional, TypeVar

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .. import logger
from ..errors import BrowserError, BrowserTimeout, TierUnavailable
from ..models import (
	ActionKind,
	Config,
	CorrectionOperation,
	LeaveOperation,
	PunchState,
	WithdrawalOperation,
)
from ..storage import Cipher, PlaintextCipher, SettingsStore
from .browser import FreeeBrowser
from .session import Deadline

# Settings keys for the web login
USERNAME_KEY = 'freee_username_encrypted'
PASSWORD_KEY = 'freee_password_encrypted'

T = TypeVar('T')

BrowserFactory = Callable[[Config, Deadline], FreeeBrowser]

# Only one browser session may exist in the process at any time
_BROWSER_LOCK = threading.Lock()


class BrowserExecutor:
	"""Runs web UI actions under the process-wide browser lock.

	Each call acquires the lock (queueing behind any running session), starts
	a fresh browser, logs in, performs the action and always closes the
	browser and releases the lock, whatever the outcome.
	"""

	def __init__(
		self,
		config: Config,
		settings: SettingsStore,
		cipher: Optional[Cipher] = None,
		browser_factory: Optional[BrowserFactory] = None,
		lock: Optional[threading.Lock] = None,
	) -> None:
		self._config = config
		self._settings = settings
		self._cipher = cipher or PlaintextCipher()
		self._browser_factory = browser_factory or FreeeBrowser
		self._lock = lock or _BROWSER_LOCK

	@property
	def busy(self) -> bool:
		"""Whether a browser session is currently running."""
		return self._lock.locked()

	@property
	def is_configured(self) -> bool:
		"""Whether web login credentials are available."""
		try:
			self.credentials()
		except TierUnavailable:
			return False
		return True

	def credentials(self) -> tuple[str, str]:
		"""Web login credentials (stored settings first, then config).

		Raises:
			TierUnavailable: If no credentials are configured.
		"""
		username = self._settings.get(USERNAME_KEY)
		password = self._settings.get(PASSWORD_KEY)
		if username and password:
			return self._cipher.decrypt(username), self._cipher.decrypt(password)
		if self._config.web_username and self._config.web_password:
			return self._config.web_username, self._config.web_password.get_secret_value()
		raise TierUnavailable('freee web credentials are not configured')

	def run(self, label: str, action: Callable[[FreeeBrowser], T]) -> T:
		"""Run `action` on a logged-in browser within the configured deadline.

		Raises:
			TierUnavailable: If web credentials are missing.
			BrowserTimeout: If the deadline passed or a page wait timed out.
			BrowserError: For any other web UI failure.
		"""
		username, password = self.credentials()

		if self._lock.locked():
			logger.info('⏳ Browser busy, %s queued...', label)
		with self._lock:
			deadline = Deadline(self._config.browser_timeout)
			logger.debug('Browser session started for %s', label)
			with self._browser_factory(self._config, deadline) as browser:
				try:
					browser.login(username, password)
					return action(browser)
				except PlaywrightTimeoutError as e:
					self._save_screenshot(browser, label)
					raise BrowserTimeout(f'{label}: {e.message}') from e
				except PlaywrightError as e:
					self._save_screenshot(browser, label)
					raise BrowserError(f'{label}: {e.message}') from e
				except BrowserError:
					self._save_screenshot(browser, label)
					raise

	def _save_screenshot(self, browser: FreeeBrowser, label: str) -> None:
		stamp = datetime.now().strftime('%Y%m%d-%H%M%S')
		name = f'{label.replace(" ", "-")}-{stamp}.png'
		if path := browser.screenshot(self._config.data_dir / 'screenshots' / name):
			logger.info('📸 Debug screenshot: %s', path)

	# =========================================================================
	# Operations
	# =========================================================================

	def detect_state(self) -> PunchState:
		"""Punch state read from the time clock buttons."""
		return self.run('detect-state', lambda browser: browser.detect_state())

	def punch(self, action: ActionKind) -> None:
		"""Click a punch button (only valid for today)."""

		def do_punch(browser: FreeeBrowser) -> None:
			state = browser.detect_state()
			logger.debug('Web state before %s: %s', action, state)
			browser.punch(action)

		self.run(f'punch {action}', do_punch)

	def submit_correction(self, operation: CorrectionOperation) -> None:
		reason = operation.reason or self._config.default_reason
		self.run(
			f'correction {operation.date}',
			lambda browser: browser.submit_correction(operation, reason),
		)

	def submit_leave(self, operation: LeaveOperation) -> None:
		self.run(
			f'leave {operation.date}',
			lambda browser: browser.submit_leave(operation, operation.reason),
		)

	def withdraw(self, operation: WithdrawalOperation) -> None:
		self.run(
			f'withdraw {operation.request_id}',
			lambda browser: browser.withdraw(operation.request_id),
		)
