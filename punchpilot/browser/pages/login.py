"""Login page automation for freee."""

from enum import StrEnum

from ... import logger
from ...errors import WebLoginError
from ...vocabulary import LoginFailureMarkers
from .base import BasePage

# Timing constant (milliseconds)
WAIT_AFTER_LOGIN_MS = 3000

# URL fragments meaning we were bounced back to the login form
LOGIN_URL_MARKERS = ('/login', '/session')


class Selector(StrEnum):
	"""CSS selectors for login form elements."""

	USERNAME = "input[name='loginId']"
	PASSWORD = "input[name='password']"
	SUBMIT = "button[type='submit']"


class LoginPage(BasePage):
	"""Handles freee login page interactions."""

	PATH = '/'

	def login(self, username: str, password: str) -> None:
		"""Submit the login form and verify it was accepted.

		Raises:
			WebLoginError: If the form is missing or the page reports a failure.
		"""
		logger.info('🔐 Logging in to freee...')

		self.navigate_to()

		if not self.try_fill(Selector.USERNAME, username):
			raise WebLoginError('Could not find username field')
		if not self.try_fill(Selector.PASSWORD, password):
			raise WebLoginError('Could not find password field')
		if not self.try_click(Selector.SUBMIT):
			raise WebLoginError('Could not find submit button')

		self.wait_for_load()
		self.page.wait_for_timeout(WAIT_AFTER_LOGIN_MS)

		current_url = self.page.url
		text = self.body_text()
		marker = LoginFailureMarkers.detect_in(text)
		if marker or any(m in current_url for m in LOGIN_URL_MARKERS):
			detail = marker.value if marker else text[:150]
			raise WebLoginError(f'freee web login failed: {detail}')
