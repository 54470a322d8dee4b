"""Error taxonomy and failure classification."""

from __future__ import annotations

from enum import StrEnum
from typing import Callable, Optional

from .vocabulary import RejectionMarkers


class FailureKind(StrEnum):
	"""How a failed tier attempt affects the strategy cache."""

	TRANSIENT = 'transient'  # may work next time, never cached
	PERMANENT = 'permanent'  # permission/validation, cached for the month


class PunchPilotError(Exception):
	"""Base class for all PunchPilot errors."""


class TierUnavailable(PunchPilotError):
	"""A strategy tier cannot run at all (e.g. missing web credentials)."""


class RemoteError(PunchPilotError):
	"""Base class for errors raised by the remote attendance client."""


class RemoteUnavailable(RemoteError):
	"""The remote API could not be reached (network error or timeout)."""


class RemoteApiError(RemoteError):
	"""The remote API answered with an HTTP error."""

	def __init__(self, status: int, message: str) -> None:
		super().__init__(f'API_ERROR_{status}: {message}')
		self.status = status
		self.message = message


class AuthExpired(RemoteApiError):
	"""401: the access token is no longer valid."""


class PermissionDenied(RemoteApiError):
	"""403: the account is not allowed to perform this call."""


class RateLimited(RemoteApiError):
	"""429: too many requests."""


class BrowserError(PunchPilotError):
	"""Base class for errors raised while driving the web UI."""


class WebLoginError(BrowserError):
	"""Web login was rejected or credentials are not configured."""


class BrowserTimeout(BrowserError):
	"""A browser action exceeded its deadline."""


class FormRejected(BrowserError):
	"""The web form displayed a validation error after submission."""


def api_error_for_status(status: int, message: str) -> RemoteApiError:
	"""Build the most specific RemoteApiError for an HTTP status."""
	error_class = {
		401: AuthExpired,
		403: PermissionDenied,
		429: RateLimited,
	}.get(status, RemoteApiError)
	return error_class(status, message)


FailureClassifier = Callable[[BaseException], FailureKind]


def classify_failure(error: BaseException) -> FailureKind:
	"""Default failure classifier.

	Permission and validation rejections are permanent. Anything that cannot
	be classified is treated as transient so that a single odd error never
	downgrades a company to a slower tier for the rest of the month.
	"""
	if isinstance(error, (PermissionDenied, FormRejected)):
		return FailureKind.PERMANENT
	if isinstance(error, RemoteApiError):
		if error.status in (400, 422):
			return FailureKind.PERMANENT
		if RejectionMarkers.detect_in(error.message) and error.status < 500:
			return FailureKind.PERMANENT
	return FailureKind.TRANSIENT


def short_message(error: Optional[BaseException], limit: int = 150) -> str:
	"""One-line error text for logs."""
	if error is None:
		return ''
	text = str(error) or type(error).__name__
	return text if len(text) <= limit else text[: limit - 1] + '…'
