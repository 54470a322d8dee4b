"""Playwright lifecycle and the wall-clock deadline of one freee web action."""

from __future__ import annotations

import time as time_module
from typing import TYPE_CHECKING, Optional

from playwright.sync_api import (
	Browser,
	BrowserContext,
	Page,
	Playwright,
	sync_playwright,
)

from ..errors import BrowserTimeout

if TYPE_CHECKING:
	from ..models import Config


class Deadline:
	"""Wall-clock budget shared by every step of one browser action."""

	def __init__(self, seconds: float) -> None:
		self.seconds = seconds
		self._expires_at = time_module.monotonic() + seconds

	@property
	def remaining(self) -> float:
		"""Seconds left before the deadline (never negative)."""
		return max(0.0, self._expires_at - time_module.monotonic())

	@property
	def expired(self) -> bool:
		return self.remaining <= 0

	def check(self, step: str) -> None:
		"""Raise BrowserTimeout if the deadline has passed before `step`."""
		if self.expired:
			raise BrowserTimeout(f'Browser deadline of {self.seconds:.0f}s exceeded before {step}')


class BrowserSession:
	"""One Chromium instance with a single Japanese-locale page.

	The page is shared by all freee page objects. With a deadline, each
	checkpoint caps the page's default timeout to the time that is left.
	"""

	def __init__(self, config: Config, deadline: Optional[Deadline] = None) -> None:
		self.config = config
		self.deadline = deadline
		self._playwright: Optional[Playwright] = None
		self._browser: Optional[Browser] = None
		self._context: Optional[BrowserContext] = None
		self._page: Optional[Page] = None
		self.is_logged_in = False

	def start(self) -> None:
		"""Launch Chromium in the configured timezone and open the page."""
		self._playwright = sync_playwright().start()
		self._browser = self._playwright.chromium.launch(
			headless=self.config.headless,
			slow_mo=self.config.slow_mo,
		)
		self._context = self._browser.new_context(
			viewport={'width': 1280, 'height': 800},
			locale='ja-JP',
			timezone_id=self.config.timezone,
		)
		self._page = self._context.new_page()
		self.checkpoint('start')

	def stop(self) -> None:
		"""Release every Playwright resource; safe to call twice."""
		for resource in (self._page, self._context, self._browser):
			if resource is not None:
				resource.close()
		if self._playwright is not None:
			self._playwright.stop()
		self._page = self._context = self._browser = None
		self._playwright = None
		self.is_logged_in = False

	def checkpoint(self, step: str) -> None:
		"""Enforce the deadline before a step and cap page timeouts to the rest.

		Raises:
			BrowserTimeout: If the deadline has already passed.
		"""
		if self.deadline is None:
			return
		self.deadline.check(step)
		if self._page is not None:
			self._page.set_default_timeout(self.deadline.remaining * 1000)

	@property
	def page(self) -> Page:
		if self._page is None:
			raise RuntimeError('No freee page open; start() the session first')
		return self._page

	def __enter__(self) -> BrowserSession:
		self.start()
		return self

	def __exit__(self, *exc) -> None:
		self.stop()
