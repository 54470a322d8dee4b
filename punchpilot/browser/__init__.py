from .browser import FreeeBrowser
from .executor import BrowserExecutor
from .pages import ApprovalRequestPage, HomePage, LoginPage
from .session import BrowserSession, Deadline

__all__ = [
	'ApprovalRequestPage',
	'BrowserExecutor',
	'BrowserSession',
	'Deadline',
	'FreeeBrowser',
	'HomePage',
	'LoginPage',
]
