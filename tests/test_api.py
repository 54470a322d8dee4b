import json
import time as time_module
from datetime import date, time

import pytest
import requests
from pydantic import SecretStr

from punchpilot.api import (
	ACCESS_TOKEN_KEY,
	COMPANY_ID_KEY,
	EMPLOYEE_ID_KEY,
	EXPIRES_AT_KEY,
	REFRESH_TOKEN_KEY,
	RemoteAttendanceClient,
	to_remote_datetime,
)
from punchpilot.errors import (
	AuthExpired,
	FailureKind,
	FormRejected,
	PermissionDenied,
	RateLimited,
	RemoteApiError,
	RemoteUnavailable,
	TierUnavailable,
	api_error_for_status,
	classify_failure,
	short_message,
)
from punchpilot.models import ActionKind, Config, CorrectionOperation
from punchpilot.storage import MemorySettingsStore
from punchpilot.vocabulary import ClockTypes


class FakeResponse:
	def __init__(self, status_code: int = 200, payload=None) -> None:
		self.status_code = status_code
		self._payload = payload
		self.text = json.dumps(payload) if payload is not None else ''
		self.content = self.text.encode('utf-8')

	@property
	def ok(self) -> bool:
		return self.status_code < 400

	def json(self):
		if self._payload is None:
			raise ValueError('no body')
		return self._payload


class FakeSession:
	"""requests.Session double answering from a route table."""

	def __init__(self) -> None:
		self.routes: dict[tuple[str, str], object] = {}
		self.token_response = FakeResponse(
			200, {'access_token': 'new-access', 'refresh_token': 'new-refresh', 'expires_in': 21600}
		)
		self.requests: list[dict] = []
		self.posts: list[dict] = []

	def post(self, url, data=None, timeout=None):
		self.posts.append({'url': url, 'data': data, 'timeout': timeout})
		return self.token_response

	def request(self, method, url, params=None, json=None, headers=None, timeout=None):
		self.requests.append(
			{'method': method, 'url': url, 'params': params, 'json': json, 'headers': headers}
		)
		path = url.split('/hr/api/v1', 1)[1]
		answer = self.routes.get((method, path), FakeResponse(404, {'message': 'not found'}))
		if isinstance(answer, Exception):
			raise answer
		return answer


@pytest.fixture
def session() -> FakeSession:
	return FakeSession()


@pytest.fixture
def api_settings() -> MemorySettingsStore:
	return MemorySettingsStore({
		ACCESS_TOKEN_KEY: 'access',
		REFRESH_TOKEN_KEY: 'refresh',
		EXPIRES_AT_KEY: str(int(time_module.time()) + 3600),
		COMPANY_ID_KEY: '10',
		EMPLOYEE_ID_KEY: '20',
	})


@pytest.fixture
def client(api_settings, session) -> RemoteAttendanceClient:
	config = Config(oauth_client_id='cid', oauth_client_secret=SecretStr('secret'))
	return RemoteAttendanceClient(config, api_settings, session=session)


# =============================================================================
# Error taxonomy
# =============================================================================


@pytest.mark.parametrize(
	('error', 'kind'),
	[
		(PermissionDenied(403, 'forbidden'), FailureKind.PERMANENT),
		(RemoteApiError(422, 'invalid'), FailureKind.PERMANENT),
		(RemoteApiError(400, 'bad request'), FailureKind.PERMANENT),
		(RemoteApiError(409, '権限がありません'), FailureKind.PERMANENT),
		(RemoteApiError(500, '勤怠修正'), FailureKind.TRANSIENT),
		(RateLimited(429, 'slow down'), FailureKind.TRANSIENT),
		(AuthExpired(401, 'expired'), FailureKind.TRANSIENT),
		(RemoteUnavailable('timeout'), FailureKind.TRANSIENT),
		(FormRejected('入力してください'), FailureKind.PERMANENT),
		(TierUnavailable('no credentials'), FailureKind.TRANSIENT),
		(RuntimeError('odd'), FailureKind.TRANSIENT),
	],
)
def test_classify_failure(error, kind):
	assert classify_failure(error) == kind


def test_api_error_for_status_picks_subclass():
	assert isinstance(api_error_for_status(401, 'x'), AuthExpired)
	assert isinstance(api_error_for_status(403, 'x'), PermissionDenied)
	assert isinstance(api_error_for_status(429, 'x'), RateLimited)
	error = api_error_for_status(500, 'boom')
	assert type(error) is RemoteApiError
	assert str(error) == 'API_ERROR_500: boom'


def test_short_message_truncates():
	assert short_message(None) == ''
	assert short_message(ValueError()) == 'ValueError'
	assert len(short_message(ValueError('x' * 500), limit=20)) == 20


# =============================================================================
# Client
# =============================================================================


def test_to_remote_datetime():
	assert to_remote_datetime(date(2026, 2, 3), time(9, 5)) == '2026-02-03 09:05:00'


def test_valid_token_is_reused(client, session):
	session.routes[('GET', '/users/me')] = FakeResponse(200, {'companies': []})

	client.request('GET', '/users/me')

	assert session.posts == []
	assert session.requests[0]['headers'] == {'Authorization': 'Bearer access'}


def test_expiring_token_is_refreshed(client, session, api_settings):
	api_settings.set(EXPIRES_AT_KEY, str(int(time_module.time()) + 60))
	session.routes[('GET', '/users/me')] = FakeResponse(200, {'companies': []})

	client.request('GET', '/users/me')

	assert session.posts[0]['data']['grant_type'] == 'refresh_token'
	assert session.posts[0]['data']['refresh_token'] == 'refresh'
	assert api_settings.get(REFRESH_TOKEN_KEY) == 'new-refresh'
	assert session.requests[0]['headers'] == {'Authorization': 'Bearer new-access'}


def test_failed_refresh_raises_typed_error(client, session, api_settings):
	api_settings.set(EXPIRES_AT_KEY, '0')
	session.token_response = FakeResponse(401, {'message': 'invalid_grant'})

	with pytest.raises(AuthExpired, match='invalid_grant'):
		client.ensure_valid_token()


def test_http_errors_are_mapped(client, session):
	session.routes[('POST', '/employees/20/time_clocks')] = FakeResponse(
		403, {'errors': [{'messages': ['権限がありません']}]}
	)

	with pytest.raises(PermissionDenied) as exc_info:
		client.punch(ActionKind.CHECKIN, date(2026, 2, 3))

	assert exc_info.value.message == '権限がありません'
	assert session.requests[0]['json'] == {
		'company_id': 10,
		'type': ClockTypes.CLOCK_IN,
		'base_date': '2026-02-03',
	}


def test_network_errors_are_unavailable(client, session):
	session.routes[('GET', '/employees/20/time_clocks')] = requests.ConnectionError('reset')

	with pytest.raises(RemoteUnavailable):
		client.time_clocks(date(2026, 2, 3))


def test_time_clocks_are_parsed_and_sorted(client, session):
	session.routes[('GET', '/employees/20/time_clocks')] = FakeResponse(
		200,
		[
			{'type': 'break_begin', 'datetime': '2026-02-03T12:00:00+09:00'},
			{'type': 'clock_in', 'datetime': '2026-02-03T09:00:00+09:00'},
			{'type': 'bogus', 'datetime': '2026-02-03T10:00:00+09:00'},
		],
	)

	events = client.time_clocks(date(2026, 2, 3))

	assert [e.type for e in events] == [ClockTypes.CLOCK_IN, ClockTypes.BREAK_BEGIN]


def test_user_info_is_discovered_by_company_name(session):
	settings = MemorySettingsStore({
		ACCESS_TOKEN_KEY: 'access',
		EXPIRES_AT_KEY: str(int(time_module.time()) + 3600),
	})
	config = Config(oauth_client_id='cid', company_name='Beta')
	client = RemoteAttendanceClient(config, settings, session=session)
	session.routes[('GET', '/users/me')] = FakeResponse(
		200,
		{
			'companies': [
				{'id': 1, 'name': 'Alpha', 'employee_id': 11},
				{'id': 2, 'name': 'Beta', 'employee_id': 22},
			]
		},
	)

	assert client.ensure_user_info() == (2, 22)
	assert settings.get(COMPANY_ID_KEY) == '2'
	assert client.ensure_user_info() == (2, 22)
	assert len(session.requests) == 1


def test_approval_without_route_is_rejected(client, session):
	session.routes[('GET', '/approval_flow_routes')] = FakeResponse(
		200, {'approval_flow_routes': [{'id': 5, 'usages': ['ApprovalRequest::PaidHoliday']}]}
	)
	operation = CorrectionOperation(date=date(2026, 2, 2), clock_in=time(9), clock_out=time(18))

	with pytest.raises(RemoteApiError) as exc_info:
		client.submit_work_time_approval(operation)

	assert exc_info.value.status == 422
	assert classify_failure(exc_info.value) == FailureKind.PERMANENT


def test_work_record_write_sends_breaks(client, session):
	session.routes[('PUT', '/employees/20/work_records/2026-02-02')] = FakeResponse(204)
	operation = CorrectionOperation.model_validate({
		'date': '2026-02-02',
		'clock_in': '09:00',
		'clock_out': '18:00',
		'breaks': [{'start': '12:00', 'end': '13:00'}],
	})

	assert client.write_work_record(operation) == {}
	body = session.requests[0]['json']
	assert body['clock_in_at'] == '2026-02-02 09:00:00'
	assert body['break_records'] == [
		{'clock_in_at': '2026-02-02 12:00:00', 'clock_out_at': '2026-02-02 13:00:00'}
	]
