import threading

import pytest
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from pydantic import SecretStr

from punchpilot.browser import BrowserExecutor, Deadline
from punchpilot.browser.executor import PASSWORD_KEY, USERNAME_KEY
from punchpilot.errors import BrowserError, BrowserTimeout, FormRejected, TierUnavailable
from punchpilot.models import ActionKind, Config, PunchState


class FakeWebBrowser:
	"""Stands in for FreeeBrowser; records the calls of one session."""

	sessions: list['FakeWebBrowser'] = []

	def __init__(self, config, deadline, error=None) -> None:
		self.deadline = deadline
		self.error = error
		self.calls = []
		self.closed = False
		FakeWebBrowser.sessions.append(self)

	def __enter__(self):
		return self

	def __exit__(self, *exc):
		self.closed = True

	def login(self, username, password):
		self.calls.append(('login', username, password))

	def detect_state(self):
		return PunchState.WORKING

	def punch(self, action):
		if self.error is not None:
			raise self.error
		self.calls.append(('punch', action))

	def screenshot(self, path):
		self.calls.append(('screenshot',))
		return None


@pytest.fixture(autouse=True)
def reset_sessions():
	FakeWebBrowser.sessions = []


def _executor(settings, error=None, **config) -> BrowserExecutor:
	config = Config(web_username='me@example.com', web_password=SecretStr('pw'), **config)
	return BrowserExecutor(
		config,
		settings,
		browser_factory=lambda cfg, deadline: FakeWebBrowser(cfg, deadline, error),
		lock=threading.Lock(),
	)


def test_punch_logs_in_and_closes_the_browser(settings):
	executor = _executor(settings)

	executor.punch(ActionKind.CHECKOUT)

	session = FakeWebBrowser.sessions[0]
	assert session.calls == [('login', 'me@example.com', 'pw'), ('punch', ActionKind.CHECKOUT)]
	assert session.closed
	assert not executor.busy


def test_stored_credentials_win_over_config(settings):
	settings.set(USERNAME_KEY, 'stored')
	settings.set(PASSWORD_KEY, 'secret')

	assert _executor(settings).credentials() == ('stored', 'secret')


def test_missing_credentials_make_tier_unavailable(settings):
	executor = BrowserExecutor(Config(), settings, browser_factory=FakeWebBrowser)

	with pytest.raises(TierUnavailable):
		executor.punch(ActionKind.CHECKIN)
	assert FakeWebBrowser.sessions == []


def test_playwright_timeout_becomes_browser_timeout(settings):
	executor = _executor(settings, error=PlaywrightTimeoutError('Timeout 30000ms exceeded'))

	with pytest.raises(BrowserTimeout):
		executor.punch(ActionKind.CHECKIN)

	session = FakeWebBrowser.sessions[0]
	assert ('screenshot',) in session.calls
	assert session.closed
	assert not executor.busy


def test_playwright_errors_become_browser_errors(settings):
	executor = _executor(settings, error=PlaywrightError('Target closed'))

	with pytest.raises(BrowserError, match='Target closed'):
		executor.punch(ActionKind.CHECKIN)


def test_form_rejection_is_propagated(settings):
	executor = _executor(settings, error=FormRejected('入力してください'))

	with pytest.raises(FormRejected):
		executor.punch(ActionKind.CHECKIN)
	assert FakeWebBrowser.sessions[0].closed


def test_session_gets_the_configured_deadline(settings):
	_executor(settings, browser_timeout=42).detect_state()

	assert FakeWebBrowser.sessions[0].deadline.seconds == 42


def test_deadline_check():
	Deadline(60).check('login')

	expired = Deadline(0)
	assert expired.expired
	with pytest.raises(BrowserTimeout, match='before submit'):
		expired.check('submit')


def test_second_session_waits_for_the_first(settings):
	timeline = []
	first_punching = threading.Event()
	release = threading.Event()
	names = iter(['first', 'second'])

	class QueuedBrowser(FakeWebBrowser):
		def __init__(self, config, deadline) -> None:
			super().__init__(config, deadline)
			self.name = next(names)

		def login(self, username, password):
			timeline.append((self.name, 'login'))

		def punch(self, action):
			if self.name == 'first':
				first_punching.set()
				release.wait(5)

		def __exit__(self, *exc):
			timeline.append((self.name, 'exit'))
			super().__exit__(*exc)

	config = Config(web_username='me@example.com', web_password=SecretStr('pw'))
	executor = BrowserExecutor(config, settings, browser_factory=QueuedBrowser, lock=threading.Lock())
	first = threading.Thread(target=executor.punch, args=(ActionKind.CHECKIN,))
	second = threading.Thread(target=executor.punch, args=(ActionKind.CHECKOUT,))

	first.start()
	assert first_punching.wait(5)
	second.start()
	second.join(0.2)

	assert second.is_alive()
	assert executor.busy
	assert timeline == [('first', 'login')]

	release.set()
	first.join(5)
	second.join(5)

	assert timeline == [('first', 'login'), ('first', 'exit'), ('second', 'login'), ('second', 'exit')]
	assert len(FakeWebBrowser.sessions) == 2
	assert not executor.busy


def test_is_configured_follows_credentials(settings):
	assert _executor(settings).is_configured
	assert not BrowserExecutor(Config(), settings, browser_factory=FakeWebBrowser).is_configured
