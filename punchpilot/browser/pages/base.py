"""Shared behaviour of the freee web page objects (internal module)."""

from __future__ import annotations

from abc import ABC
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page

from ... import logger

if TYPE_CHECKING:
	from ...models import Config
	from ..session import BrowserSession

# Amount of page text inspected for markers
BODY_TEXT_LIMIT = 2000


class BasePage(ABC):
	"""One freee web page, addressed by its PATH below the configured web URL.

	Concrete pages set PATH; every navigation passes a deadline checkpoint of
	the owning session first.
	"""

	PATH: ClassVar[str]

	@classmethod
	def __init_subclass__(cls, **kwargs: object) -> None:
		super().__init_subclass__(**kwargs)
		if not getattr(cls, 'PATH', ''):
			raise TypeError(f'{cls.__name__} needs a PATH below the freee web URL')

	def __init__(self, session: BrowserSession) -> None:
		if type(self) is BasePage:
			raise TypeError('BasePage is abstract; open a concrete freee page instead')
		self._session = session

	@property
	def session(self) -> BrowserSession:
		return self._session

	@property
	def page(self) -> Page:
		"""Playwright page shared by every page object of the session."""
		return self._session.page

	@property
	def config(self) -> Config:
		return self._session.config

	@property
	def base_url(self) -> str:
		return str(self.config.web_url).rstrip('/')

	@property
	def url(self) -> str:
		return self.base_url + self.PATH

	def is_current(self) -> bool:
		"""Whether the browser shows this page (query strings and fragments ignored)."""
		return self.page.url.lower().startswith(self.url.lower())

	def navigate_to(self) -> None:
		self.session.checkpoint(f'opening {self.PATH}')
		self.page.goto(self.url)
		self.wait_for_load()

	def wait_for_load(self) -> None:
		"""Wait until the document and its resources are loaded.

		freee keeps long-polling connections open, so networkidle never settles.
		"""
		self.page.wait_for_load_state('domcontentloaded')
		self.page.wait_for_load_state('load')

	def body_text(self) -> str:
		"""Visible text of the page (truncated), or '' if it cannot be read."""
		try:
			return self.page.inner_text('body')[:BODY_TEXT_LIMIT]
		except PlaywrightError as e:
			logger.debug('Could not read page text: %s', e)
			return ''

	def screenshot(self, path: Path) -> Optional[Path]:
		"""Save a full-page screenshot; returns None when it could not be taken."""
		try:
			path.parent.mkdir(parents=True, exist_ok=True)
			self.page.screenshot(path=str(path), full_page=True)
		except (PlaywrightError, OSError) as e:
			logger.debug('Failed to take screenshot %s: %s', path, e)
			return None
		return path

	def try_fill(self, selector: str, value: str, silent: bool = False) -> bool:
		"""Fill the first element matching `selector`.

		Returns:
			False when nothing matches or the field refuses input.
		"""
		if self.page.locator(selector).count() <= 0:
			return False
		try:
			self.page.fill(selector, value)
		except PlaywrightError as e:
			if not silent:
				logger.debug('Could not fill %s: %s', selector, e)
			return False
		return True

	def try_click(self, selector: str, silent: bool = False) -> bool:
		"""Click the first element matching `selector`; False when that is not possible."""
		if self.page.locator(selector).count() <= 0:
			return False
		try:
			self.page.click(selector)
		except PlaywrightError as e:
			if not silent:
				logger.debug('Could not click %s: %s', selector, e)
			return False
		return True
