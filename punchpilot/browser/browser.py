"""High-level browser automation for the freee web UI."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .. import logger
from .pages import ApprovalRequestPage, HomePage, LoginPage
from .session import BrowserSession, Deadline

if TYPE_CHECKING:
	from ..models import ActionKind, Config, CorrectionOperation, LeaveOperation, PunchState


class FreeeBrowser:
	"""High-level browser automation for freee HR.

	This class orchestrates navigation between pages and validates
	that transitions land on the expected pages.

	Example:
		with FreeeBrowser(config) as browser:
			browser.login(username, password)
			state = browser.detect_state()
			browser.punch(ActionKind.CHECKIN)
	"""

	def __init__(self, config: Config, deadline: Optional[Deadline] = None) -> None:
		"""Initialize the browser with configuration.

		Args:
			config: Application configuration (web URL, headless mode, timezone).
			deadline: Budget for everything done in this session.
		"""
		self._session = BrowserSession(config, deadline)
		self._login_page: Optional[LoginPage] = None
		self._home_page: Optional[HomePage] = None
		self._requests_page: Optional[ApprovalRequestPage] = None

	def __enter__(self) -> FreeeBrowser:
		"""Start the browser session."""
		self._session.start()
		return self

	def __exit__(self, *exc) -> None:
		"""Stop the browser session."""
		self._session.stop()

	@property
	def login_page(self) -> LoginPage:
		"""Get the login page object (lazy initialization)."""
		if self._login_page is None:
			self._login_page = LoginPage(self._session)
		return self._login_page

	@property
	def home_page(self) -> HomePage:
		"""Get the home page object (lazy initialization)."""
		if self._home_page is None:
			self._home_page = HomePage(self._session)
		return self._home_page

	@property
	def requests_page(self) -> ApprovalRequestPage:
		"""Get the approval requests page object (lazy initialization)."""
		if self._requests_page is None:
			self._requests_page = ApprovalRequestPage(self._session)
		return self._requests_page

	# =========================================================================
	# High-level methods (orchestrate page objects and validate transitions)
	# =========================================================================

	def login(self, username: str, password: str) -> None:
		"""Log in to freee.

		Raises:
			WebLoginError: If the credentials were rejected.
		"""
		self.login_page.login(username, password)
		logger.success('✓ Login successful!')
		self._session.is_logged_in = True

	def detect_state(self) -> PunchState:
		"""Punch state as shown by the time clock buttons."""
		if not self.home_page.is_current():
			self.home_page.navigate_to()
		return self.home_page.detect_state()

	def punch(self, action: ActionKind) -> None:
		"""Click the punch button for an action."""
		if not self.home_page.is_current():
			self.home_page.navigate_to()
		self.home_page.punch(action)

	def submit_correction(self, operation: CorrectionOperation, reason: str) -> None:
		self.requests_page.submit_correction(operation, reason)

	def submit_leave(self, operation: LeaveOperation, reason: Optional[str] = None) -> None:
		self.requests_page.submit_leave(operation, reason)

	def withdraw(self, request_id: int) -> None:
		self.requests_page.withdraw(request_id)

	def screenshot(self, path: Path) -> Optional[Path]:
		"""Save a debug screenshot of the current page."""
		return self.home_page.screenshot(path)
