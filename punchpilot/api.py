"""Remote attendance client for the freee HR API with OAuth2 token management."""

from __future__ import annotations

import threading
import time as time_module
from datetime import date, datetime, time
from typing import Any, Optional
from urllib.parse import urlencode

import requests

from . import logger
from .errors import RemoteApiError, RemoteUnavailable, api_error_for_status
from .models import (
	ActionKind,
	ClockEvent,
	Config,
	CorrectionOperation,
	LeaveOperation,
	WithdrawalOperation,
)
from .storage import Cipher, PlaintextCipher, SettingsStore
from .vocabulary import ClockTypes

# Settings keys
ACCESS_TOKEN_KEY = 'oauth_access_token_encrypted'
REFRESH_TOKEN_KEY = 'oauth_refresh_token_encrypted'
EXPIRES_AT_KEY = 'oauth_token_expires_at'
CLIENT_SECRET_KEY = 'oauth_client_secret_encrypted'
COMPANY_ID_KEY = 'oauth_company_id'
EMPLOYEE_ID_KEY = 'oauth_employee_id'

AUTHORIZE_URL = 'https://accounts.secure.freee.co.jp/public_api/authorize'
OOB_REDIRECT_URI = 'urn:ietf:wg:oauth:2.0:oob'

# Refresh the token this many seconds before it expires
TOKEN_REFRESH_MARGIN = 300

# Pause between sequential punches of one correction
PUNCH_INTERVAL_SECONDS = 0.2


def to_remote_datetime(day: date, at: time) -> str:
	"""Remote datetime format for a local wall-clock time (e.g. '2026-02-03 10:00:00')."""
	return datetime.combine(day, at).strftime('%Y-%m-%d %H:%M:%S')


def to_time_only(at: time) -> str:
	"""HH:MM format used by approval requests."""
	return at.strftime('%H:%M')


def _error_message(response: requests.Response) -> str:
	"""Extract the most useful message from a freee error body."""
	text = response.text
	try:
		body = response.json()
	except ValueError:
		return text
	if isinstance(body, dict):
		errors = body.get('errors') or []
		if errors and isinstance(errors[0], dict) and errors[0].get('messages'):
			return str(errors[0]['messages'][0])
		if body.get('message'):
			return str(body['message'])
	return text


class RemoteAttendanceClient:
	"""Thin protocol wrapper around the freee HR API.

	Every call is bounded by the configured API timeout. HTTP errors are raised
	as typed `RemoteApiError` subclasses and network failures as
	`RemoteUnavailable`, so the fallback engine can classify them.
	"""

	def __init__(
		self,
		config: Config,
		settings: SettingsStore,
		cipher: Optional[Cipher] = None,
		session: Optional[requests.Session] = None,
	) -> None:
		self._config = config
		self._settings = settings
		self._cipher = cipher or PlaintextCipher()
		self._session = session or requests.Session()
		self._token_lock = threading.Lock()
		self._base_url = str(config.api_url).rstrip('/')
		self._timeout = config.api_timeout

	# =========================================================================
	# Authentication
	# =========================================================================

	def _decrypt_setting(self, key: str) -> str:
		value = self._settings.get(key)
		return self._cipher.decrypt(value) if value else ''

	def _client_secret(self) -> str:
		if secret := self._decrypt_setting(CLIENT_SECRET_KEY):
			return secret
		if self._config.oauth_client_secret:
			return self._config.oauth_client_secret.get_secret_value()
		return ''

	@property
	def is_configured(self) -> bool:
		"""Whether OAuth tokens are available."""
		return bool(self._settings.get(REFRESH_TOKEN_KEY) or self._settings.get(ACCESS_TOKEN_KEY))

	def authorize_url(self, state: str) -> str:
		"""URL where the user grants this app access and receives a code."""
		query = urlencode({
			'client_id': self._config.oauth_client_id,
			'redirect_uri': OOB_REDIRECT_URI,
			'response_type': 'code',
			'prompt': 'consent',
			'state': state,
		})
		return f'{AUTHORIZE_URL}?{query}'

	def _token_request(self, grant: dict[str, str], action: str) -> str:
		"""Post a token grant and store the returned tokens.

		Returns:
			The new access token.
		"""
		client_secret = self._client_secret()
		if not self._config.oauth_client_id or not client_secret:
			raise RemoteApiError(401, 'OAuth app credentials are not configured.')

		try:
			response = self._session.post(
				str(self._config.token_url),
				data={
					'client_id': self._config.oauth_client_id,
					'client_secret': client_secret,
					**grant,
				},
				timeout=self._timeout,
			)
		except requests.RequestException as e:
			raise RemoteUnavailable(f'{action} failed: {e}') from e

		if not response.ok:
			raise api_error_for_status(response.status_code, f'{action} failed: {_error_message(response)}')

		data = response.json()
		# The refresh token rotates with every grant
		self._settings.set(ACCESS_TOKEN_KEY, self._cipher.encrypt(data['access_token']))
		self._settings.set(REFRESH_TOKEN_KEY, self._cipher.encrypt(data['refresh_token']))
		self._settings.set(EXPIRES_AT_KEY, str(int(time_module.time()) + int(data['expires_in'])))
		logger.debug('%s succeeded, token expires in %ss', action, data['expires_in'])
		return data['access_token']

	def exchange_code(self, code: str) -> str:
		"""Exchange an authorization code for tokens (first-time setup)."""
		# Identity may belong to a previous authorization
		self._settings.set(COMPANY_ID_KEY, '')
		self._settings.set(EMPLOYEE_ID_KEY, '')
		return self._token_request(
			{'grant_type': 'authorization_code', 'code': code, 'redirect_uri': OOB_REDIRECT_URI},
			'Token exchange',
		)

	def ensure_valid_token(self) -> str:
		"""Return a valid access token, refreshing it shortly before expiry."""
		with self._token_lock:
			expires_at = int(self._settings.get(EXPIRES_AT_KEY) or '0')
			if time_module.time() < expires_at - TOKEN_REFRESH_MARGIN:
				return self._decrypt_setting(ACCESS_TOKEN_KEY)

			logger.debug('Access token expired or expiring soon, refreshing...')
			refresh_token = self._decrypt_setting(REFRESH_TOKEN_KEY)
			if not refresh_token:
				raise RemoteApiError(401, 'No refresh token available. Authorize the API first.')
			return self._token_request(
				{'grant_type': 'refresh_token', 'refresh_token': refresh_token}, 'Token refresh'
			)

	def request(
		self,
		method: str,
		path: str,
		params: Optional[dict[str, Any]] = None,
		body: Optional[dict[str, Any]] = None,
	) -> Any:
		"""Make an authenticated API request.

		Raises:
			RemoteUnavailable: On network errors and timeouts.
			RemoteApiError: On HTTP errors (401/403/429 as dedicated subclasses).
		"""
		token = self.ensure_valid_token()
		url = f'{self._base_url}{path}'
		logger.debug('[API] %s %s', method, url)

		try:
			response = self._session.request(
				method,
				url,
				params=params,
				json=body,
				headers={'Authorization': f'Bearer {token}'},
				timeout=self._timeout,
			)
		except requests.RequestException as e:
			raise RemoteUnavailable(f'{method} {path}: {e}') from e

		if not response.ok:
			message = _error_message(response)
			logger.debug('[API] %s %s → %d: %s', method, path, response.status_code, message)
			raise api_error_for_status(response.status_code, message)

		if response.status_code == 204 or not response.content:
			return {}
		return response.json()

	# =========================================================================
	# Identity
	# =========================================================================

	def ensure_user_info(self) -> tuple[int, int]:
		"""Company and employee ids, discovered via /users/me and persisted."""
		company_id = self._settings.get(COMPANY_ID_KEY)
		employee_id = self._settings.get(EMPLOYEE_ID_KEY)
		if company_id and employee_id:
			return int(company_id), int(employee_id)

		data = self.request('GET', '/users/me')
		companies = data.get('companies') or []
		if not companies:
			raise RemoteApiError(403, 'No company found for this user.')
		company = companies[0]
		if self._config.company_name:
			company = next(
				(c for c in companies if c.get('name') == self._config.company_name), company
			)

		self._settings.set(COMPANY_ID_KEY, str(company['id']))
		self._settings.set(EMPLOYEE_ID_KEY, str(company['employee_id']))
		logger.info('User info: company=%s, employee=%s', company['id'], company['employee_id'])
		return int(company['id']), int(company['employee_id'])

	def verify_connection(self) -> dict[str, Any]:
		"""Refresh the token and fetch the current user."""
		data = self.request('GET', '/users/me')
		company = (data.get('companies') or [{}])[0]
		return {
			'company_id': company.get('id'),
			'employee_id': company.get('employee_id'),
			'display_name': data.get('display_name', ''),
			'email': data.get('email', ''),
		}

	# =========================================================================
	# State queries
	# =========================================================================

	def available_clock_types(self, day: date) -> list[str]:
		"""Clock types the remote currently accepts for the employee."""
		company_id, employee_id = self.ensure_user_info()
		data = self.request(
			'GET',
			f'/employees/{employee_id}/time_clocks/available_types',
			params={'company_id': company_id, 'date': day.isoformat()},
		)
		return list(data.get('available_types') or [])

	def time_clocks(self, day: date) -> list[ClockEvent]:
		"""Clock events recorded for a day, oldest first."""
		company_id, employee_id = self.ensure_user_info()
		data = self.request(
			'GET',
			f'/employees/{employee_id}/time_clocks',
			params={
				'company_id': company_id,
				'from_date': day.isoformat(),
				'to_date': day.isoformat(),
			},
		)
		items = data if isinstance(data, list) else data.get('time_clocks', [])
		events = []
		for item in items:
			try:
				events.append(
					ClockEvent(type=ClockTypes(item['type']), at=datetime.fromisoformat(item['datetime']))
				)
			except (KeyError, ValueError) as e:
				logger.debug('Ignoring unreadable clock event %r: %s', item, e)
		return sorted(events, key=lambda e: e.at)

	# =========================================================================
	# Tier 1: direct writes
	# =========================================================================

	def write_work_record(self, operation: CorrectionOperation) -> dict[str, Any]:
		"""Overwrite a day's work record."""
		company_id, employee_id = self.ensure_user_info()
		body: dict[str, Any] = {
			'company_id': company_id,
			'clock_in_at': to_remote_datetime(operation.date, operation.clock_in),
			'clock_out_at': to_remote_datetime(operation.date, operation.clock_out),
		}
		if operation.breaks:
			body['break_records'] = [
				{
					'clock_in_at': to_remote_datetime(operation.date, br.start),
					'clock_out_at': to_remote_datetime(operation.date, br.end),
				}
				for br in operation.breaks
			]
		return self.request(
			'PUT',
			f'/employees/{employee_id}/work_records/{operation.date.isoformat()}',
			body=body,
		)

	def write_paid_holiday(self, operation: LeaveOperation) -> dict[str, Any]:
		"""Record a full day of paid leave directly on the work record."""
		company_id, employee_id = self.ensure_user_info()
		return self.request(
			'PUT',
			f'/employees/{employee_id}/work_records/{operation.date.isoformat()}',
			body={'company_id': company_id, 'paid_holidays': [{'type': 'full'}]},
		)

	def delete_approval_request(self, operation: WithdrawalOperation) -> dict[str, Any]:
		"""Delete a draft or pending approval request."""
		company_id, _ = self.ensure_user_info()
		return self.request(
			'DELETE',
			f'/approval_requests/work_times/{operation.request_id}',
			params={'company_id': company_id},
		)

	# =========================================================================
	# Tier 2: approval requests
	# =========================================================================

	def find_approval_route(self) -> Optional[int]:
		"""First approval route usable for attendance requests, if any."""
		company_id, _ = self.ensure_user_info()
		data = self.request(
			'GET', '/approval_flow_routes', params={'company_id': company_id, 'included_user_id': ''}
		)
		routes = data.get('approval_flow_routes', []) if isinstance(data, dict) else data
		for route in routes:
			usages = route.get('usages') or []
			if not usages or 'ApprovalRequest::WorkTime' in usages:
				return int(route['id'])
		return None

	def submit_work_time_approval(
		self, operation: CorrectionOperation, comment: Optional[str] = None
	) -> dict[str, Any]:
		"""Submit a work-time correction through the approval workflow."""
		company_id, _ = self.ensure_user_info()
		route_id = self.find_approval_route()
		if route_id is None:
			raise RemoteApiError(422, 'No approval route available for work time requests')

		body: dict[str, Any] = {
			'company_id': company_id,
			'target_date': operation.date.isoformat(),
			'approval_flow_route_id': route_id,
			'work_records': [
				{
					'clock_in_at': to_time_only(operation.clock_in),
					'clock_out_at': to_time_only(operation.clock_out),
				}
			],
		}
		if operation.breaks:
			body['break_records'] = [
				{'clock_in_at': to_time_only(br.start), 'clock_out_at': to_time_only(br.end)}
				for br in operation.breaks
			]
		if comment:
			body['comment'] = comment
		return self.request('POST', '/approval_requests/work_times', body=body)

	def submit_paid_holiday_approval(
		self, operation: LeaveOperation, comment: Optional[str] = None
	) -> dict[str, Any]:
		"""Submit a paid leave request through the approval workflow."""
		company_id, _ = self.ensure_user_info()
		route_id = self.find_approval_route()
		if route_id is None:
			raise RemoteApiError(422, 'No approval route available for leave requests')

		holiday_type = {'morning': 'morning_off', 'afternoon': 'afternoon_off'}.get(
			operation.half_day or '', 'full'
		)
		body: dict[str, Any] = {
			'company_id': company_id,
			'target_date': operation.date.isoformat(),
			'approval_flow_route_id': route_id,
			'holiday_type': holiday_type,
		}
		if comment:
			body['comment'] = comment
		return self.request('POST', '/approval_requests/paid_holidays', body=body)

	def cancel_approval_request(self, operation: WithdrawalOperation) -> dict[str, Any]:
		"""Cancel an in-progress approval request with a cancel action."""
		company_id, _ = self.ensure_user_info()
		current = self.request(
			'GET',
			f'/approval_requests/work_times/{operation.request_id}',
			params={'company_id': company_id},
		)
		work_time = current.get('work_time', {}) if isinstance(current, dict) else {}
		return self.request(
			'POST',
			f'/approval_requests/work_times/{operation.request_id}/actions',
			params={'company_id': company_id},
			body={
				'approval_action': 'cancel',
				'target_round': work_time.get('current_round') or 1,
				'target_step_id': work_time.get('current_step_id'),
			},
		)

	# =========================================================================
	# Tier 3: punch events
	# =========================================================================

	def punch(self, action: ActionKind, day: date) -> dict[str, Any]:
		"""Post a live clock event for `day`."""
		company_id, employee_id = self.ensure_user_info()
		logger.debug('[API] Posting clock action %s for %s', action.clock_type, day)
		return self.request(
			'POST',
			f'/employees/{employee_id}/time_clocks',
			body={'company_id': company_id, 'type': action.clock_type, 'base_date': day.isoformat()},
		)

	def submit_punches(self, operation: CorrectionOperation) -> int:
		"""Replay a correction as sequential timestamped punches.

		Accounts limited to self-service punching cannot set a datetime, so the
		remote rejects past dates with a permission error.

		Returns:
			Number of punches posted.
		"""
		company_id, employee_id = self.ensure_user_info()
		punches = [(ClockTypes.CLOCK_IN, operation.clock_in)]
		for br in operation.breaks:
			punches.append((ClockTypes.BREAK_BEGIN, br.start))
			punches.append((ClockTypes.BREAK_END, br.end))
		punches.append((ClockTypes.CLOCK_OUT, operation.clock_out))

		for index, (clock_type, at) in enumerate(punches):
			if index:
				time_module.sleep(PUNCH_INTERVAL_SECONDS)
			self.request(
				'POST',
				f'/employees/{employee_id}/time_clocks',
				body={
					'company_id': company_id,
					'type': clock_type,
					'datetime': to_remote_datetime(operation.date, at),
					'base_date': operation.date.isoformat(),
				},
			)
		logger.debug('[API] Posted %d punches for %s', len(punches), operation.date)
		return len(punches)
