"""Approval request forms: work-time correction, leave and withdrawal."""

from __future__ import annotations

from datetime import date, time
from typing import Optional
from urllib.parse import urlencode

from playwright.sync_api import Error as PlaywrightError

from ... import logger
from ...errors import BrowserError, FormRejected
from ...models import BreakRecord, CorrectionOperation, LeaveOperation
from ...vocabulary import FormErrorMarkers
from .base import BasePage

# Timing constants (milliseconds)
WAIT_AFTER_NAVIGATION_MS = 3000
WAIT_AFTER_INPUT_MS = 200
WAIT_AFTER_SUBMIT_MS = 5000
FORM_LOAD_ATTEMPTS = 5

# Wall-clock span requested for half-day leave
HALF_DAY_SPANS = {
	'morning': (time(9, 0), time(13, 0)),
	'afternoon': (time(13, 0), time(18, 0)),
}


class Selector:
	"""CSS selectors for approval request form elements."""

	DATE = '#approval-request-fields-date'
	MODIFY_WORK_TIME = '[data-testid="clear-work-time-false"]'
	CLOCK_IN_HOUR = '#approval-request-fields-segment-clock-in-at-hour-0'
	CLOCK_IN_MINUTE = '#approval-request-fields-segment-clock-in-at-minute-0'
	CLOCK_OUT_HOUR = '#approval-request-fields-segment-clock-out-at-hour-0'
	CLOCK_OUT_MINUTE = '#approval-request-fields-segment-clock-out-at-minute-0'
	BREAK_IN_HOUR = '#approval-request-fields-break-clock-in-at-hour-{index}'
	BREAK_IN_MINUTE = '#approval-request-fields-break-clock-in-at-minute-{index}'
	BREAK_OUT_HOUR = '#approval-request-fields-break-clock-out-at-hour-{index}'
	BREAK_OUT_MINUTE = '#approval-request-fields-break-clock-out-at-minute-{index}'
	ADD_BREAK = 'button:has-text("休憩を追加")'
	STARTED_AT = '#approval-request-fields-started-at'
	END_AT = '#approval-request-fields-end-at'
	REASON = '[data-testid="申請理由"]'
	APPROVER = '#approval-request-fields-approver_id'
	SUBMIT = 'button[type="submit"]:has-text("申請")'
	WITHDRAW = 'button:has-text("取り下げ")'
	CONFIRM = '[role="dialog"] button:has-text("取り下げ")'
	ERROR_MESSAGE = '.vb-message--error, [role="alert"]'


class ApprovalRequestPage(BasePage):
	"""freee approval requests (SPA with hash routing under /approval_requests)."""

	PATH = '/approval_requests'

	def _open(self, fragment: str) -> None:
		"""Open a hash route, loading the SPA shell first if needed."""
		if not self.is_current():
			self.navigate_to()
			self.page.wait_for_timeout(WAIT_AFTER_NAVIGATION_MS)
		self.session.checkpoint(f'opening #{fragment}')
		self.page.goto(f'{self.url}#{fragment}')
		self.page.wait_for_timeout(WAIT_AFTER_NAVIGATION_MS)

	def _open_new_form(self, request_type: str, target_date: date) -> None:
		query = urlencode({'type': request_type, 'target_date': target_date.isoformat()})
		fragment = f'/requests/new?{query}'
		self._open(fragment)

		# The form is rendered client-side; give it increasing time to appear
		for attempt in range(FORM_LOAD_ATTEMPTS):
			if self.page.locator(Selector.DATE).count() > 0:
				return
			wait_ms = 2000 + attempt * 1500
			logger.debug('Form not loaded yet, waiting %dms (%d/%d)', wait_ms, attempt + 1, FORM_LOAD_ATTEMPTS)
			self.session.checkpoint('waiting for the request form')
			self.page.wait_for_timeout(wait_ms)
			if attempt == 2:
				self.page.evaluate('(hash) => { window.location.hash = hash; }', fragment)
		raise BrowserError(f'Request form did not load: {self.body_text()[:150]}')

	def _fill_time(self, selector: str, value: int) -> None:
		locator = self.page.locator(selector)
		if locator.count() == 0:
			raise BrowserError(f'Time input {selector} not found')
		locator.click()
		locator.fill(f'{value:02d}')
		self.page.keyboard.press('Tab')
		self.page.wait_for_timeout(WAIT_AFTER_INPUT_MS)

	def _fill_clock(self, hour_selector: str, minute_selector: str, at: time) -> None:
		self._fill_time(hour_selector, at.hour)
		self._fill_time(minute_selector, at.minute)

	def _fill_breaks(self, breaks: list[BreakRecord]) -> None:
		for index, br in enumerate(breaks):
			if index and self.page.locator(Selector.BREAK_IN_HOUR.format(index=index)).count() == 0:
				self.try_click(Selector.ADD_BREAK)
			self._fill_clock(
				Selector.BREAK_IN_HOUR.format(index=index),
				Selector.BREAK_IN_MINUTE.format(index=index),
				br.start,
			)
			self._fill_clock(
				Selector.BREAK_OUT_HOUR.format(index=index),
				Selector.BREAK_OUT_MINUTE.format(index=index),
				br.end,
			)

	def _fill_reason(self, reason: Optional[str]) -> None:
		if reason:
			self.try_fill(Selector.REASON, reason, silent=True)

	def _select_first_approver(self) -> None:
		"""Pick the first approver in the combobox if none is selected yet."""
		approver = self.page.locator(Selector.APPROVER)
		if approver.count() == 0 or approver.input_value():
			return
		try:
			approver.scroll_into_view_if_needed()
			approver.click()
			listbox_id = approver.get_attribute('aria-controls')
			if listbox_id:
				option = self.page.locator(f'#{listbox_id} [role="option"]').first
				if option.count() > 0:
					option.click()
			if not approver.input_value():
				self.page.keyboard.press('ArrowDown')
				self.page.keyboard.press('Enter')
		except PlaywrightError as e:
			logger.debug('Approver selection failed: %s', e)

	def _submit(self) -> None:
		"""Click submit and raise FormRejected if the form shows an error."""
		self._select_first_approver()
		self.session.checkpoint('submitting the request')
		if not self.try_click(Selector.SUBMIT):
			raise BrowserError('Submit button not found')
		self.page.wait_for_timeout(WAIT_AFTER_SUBMIT_MS)
		self._raise_on_form_error()

	def _raise_on_form_error(self) -> None:
		text = self.body_text()
		if marker := FormErrorMarkers.detect_in(text):
			start = text.find(marker.value)
			raise FormRejected(text[max(0, start - 40) : start + 80].strip())
		if 'requests/new' in self.page.url:
			errors = self.page.locator(Selector.ERROR_MESSAGE)
			if errors.count() > 0:
				raise FormRejected(errors.first.text_content() or 'Validation error')

	def submit_correction(self, operation: CorrectionOperation, reason: str) -> None:
		"""Submit a work-time correction request (勤務時間修正申請)."""
		logger.info('📝 Submitting correction for %s via web form...', operation.date)
		self._open_new_form('ApprovalRequest::WorkTime', operation.date)
		self.try_click(Selector.MODIFY_WORK_TIME, silent=True)
		self._fill_clock(Selector.CLOCK_IN_HOUR, Selector.CLOCK_IN_MINUTE, operation.clock_in)
		self._fill_clock(Selector.CLOCK_OUT_HOUR, Selector.CLOCK_OUT_MINUTE, operation.clock_out)
		self._fill_breaks(operation.breaks)
		self._fill_reason(reason)
		self._submit()

	def submit_leave(self, operation: LeaveOperation, reason: Optional[str]) -> None:
		"""Submit a leave request of the operation's type."""
		logger.info(
			'📝 Submitting %s for %s via web form...', operation.leave_type.japanese, operation.date
		)
		self._open_new_form(f'ApprovalRequest::{operation.leave_type}', operation.date)
		if operation.half_day:
			start, end = HALF_DAY_SPANS[operation.half_day]
			self.try_fill(Selector.STARTED_AT, start.strftime('%H:%M'))
			self.try_fill(Selector.END_AT, end.strftime('%H:%M'))
		self._fill_reason(reason)
		self._submit()

	def withdraw(self, request_id: int) -> None:
		"""Withdraw (取り下げ) a submitted request from its detail view."""
		logger.info('↩️ Withdrawing request #%d via web...', request_id)
		self._open(f'/requests/{request_id}')
		if not self.try_click(Selector.WITHDRAW):
			raise FormRejected(f'Request #{request_id} cannot be withdrawn: {self.body_text()[:100]}')
		self.try_click(Selector.CONFIRM, silent=True)
		self.page.wait_for_timeout(WAIT_AFTER_SUBMIT_MS)
		self._raise_on_form_error()
