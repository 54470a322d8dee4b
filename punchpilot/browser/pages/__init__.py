"""Page objects for freee browser automation."""

from .home import HomePage
from .login import LoginPage
from .requests import ApprovalRequestPage

__all__ = ['ApprovalRequestPage', 'HomePage', 'LoginPage']
