"""Holiday and workday calendar used to suppress automated actions."""

from __future__ import annotations

from datetime import date
from typing import Callable, Iterable, Mapping, Optional

import holidays
import requests
from pydantic import ValidationError

from . import logger
from .models import HolidayRuleSet
from .storage import SettingsStore
from .vocabulary import Weekdays

JP_API_URL = 'https://holidays-jp.github.io/api/v1/date.json'
CN_API_URL = 'https://raw.githubusercontent.com/NateScarlet/holiday-cn/master/{year}.json'

CACHE_KEY = 'holiday_cache:{country}:{year}'
CACHE_DATE_KEY = 'holiday_cache_date:{country}:{year}'
FAILED_FETCH_KEY = 'holiday_fetch_failed:{country}:{year}'

RuleSetFetcher = Callable[[str, int], HolidayRuleSet]


def country_skip_reason(day: date, rule_set: HolidayRuleSet) -> Optional[str]:
	"""Verdict of a single country's rules for a date.

	A weekend is off unless this country swapped it into a working day; a
	weekday is off when it is one of this country's national holidays.
	"""
	weekday = Weekdays.from_number(day.weekday())
	assert weekday is not None, f'Invalid weekday {day.weekday()} for date {day}'

	if weekday.is_weekend:
		if day in rule_set.workday_swaps:
			return None
		return f'weekend ({weekday.short})'
	if day in rule_set.national:
		return f'{rule_set.country.upper()} holiday: {rule_set.national[day]}'
	return None


def skip_reason(
	day: date,
	countries: Iterable[str],
	rule_sets: Mapping[str, HolidayRuleSet],
	custom_holidays: Optional[Mapping[date, str]] = None,
) -> Optional[str]:
	"""Why `day` is a skip-day, or None if it is a working day.

	Custom holidays apply regardless of country. With several countries the
	result is the OR of each country's independent verdict, so a workday swap
	only cancels the weekend default under its own country's rules. With no
	country at all, only the plain weekend rule applies.
	"""
	if custom_holidays and day in custom_holidays:
		return f'custom holiday: {custom_holidays[day] or "-"}'

	codes = [c.lower() for c in countries]
	if not codes:
		return country_skip_reason(day, HolidayRuleSet(country='-'))

	for code in codes:
		rule_set = rule_sets.get(code) or HolidayRuleSet(country=code)
		if reason := country_skip_reason(day, rule_set):
			return reason
	return None


def is_skip_day(
	day: date,
	countries: Iterable[str],
	rule_sets: Mapping[str, HolidayRuleSet],
	custom_holidays: Optional[Mapping[date, str]] = None,
) -> bool:
	"""Whether no automated action should fire on `day`."""
	return skip_reason(day, countries, rule_sets, custom_holidays) is not None


def fetch_jp_rule_set(session: requests.Session, year: int, timeout: float) -> HolidayRuleSet:
	"""Japanese holidays: one file for all years, filtered to `year`."""
	response = session.get(JP_API_URL, timeout=timeout)
	response.raise_for_status()
	prefix = f'{year}-'
	national = {
		date.fromisoformat(day): name
		for day, name in response.json().items()
		if day.startswith(prefix)
	}
	return HolidayRuleSet(country='jp', national=national)


def fetch_cn_rule_set(session: requests.Session, year: int, timeout: float) -> HolidayRuleSet:
	"""Chinese holidays from holiday-cn, split into off-days and workday swaps."""
	response = session.get(CN_API_URL.format(year=year), timeout=timeout)
	response.raise_for_status()
	national: dict[date, str] = {}
	swaps: dict[date, str] = {}
	for day in response.json().get('days', []):
		target = national if day.get('isOffDay') else swaps
		target[date.fromisoformat(day['date'])] = day.get('name', '')
	return HolidayRuleSet(country='cn', national=national, workday_swaps=swaps)


def library_rule_set(country: str, year: int) -> HolidayRuleSet:
	"""National holidays of any other country from the `holidays` package."""
	try:
		calendar = holidays.country_holidays(country.upper(), years=year)
	except NotImplementedError:
		logger.warning('No holiday data for country %r', country)
		return HolidayRuleSet(country=country)
	return HolidayRuleSet(country=country, national={d: str(n) for d, n in calendar.items()})


class HolidayCalendar:
	"""Calendar Resolver backed by cached per-country rule sets.

	Rule sets are fetched at most once per day per (country, year) and kept in
	the settings store; when a fetch fails the last cached copy is used.
	"""

	def __init__(
		self,
		settings: SettingsStore,
		countries: Iterable[str] = ('jp',),
		custom_holidays: Optional[Mapping[date, str]] = None,
		fetcher: Optional[RuleSetFetcher] = None,
		session: Optional[requests.Session] = None,
		timeout: float = 20.0,
		today: Optional[Callable[[], date]] = None,
	) -> None:
		self._settings = settings
		self.countries = [c.lower() for c in countries]
		self.custom_holidays: dict[date, str] = dict(custom_holidays or {})
		self._session = session or requests.Session()
		self._timeout = timeout
		self._fetcher = fetcher or self._fetch
		self._today = today or date.today

	def _fetch(self, country: str, year: int) -> HolidayRuleSet:
		if country == 'jp':
			return fetch_jp_rule_set(self._session, year, self._timeout)
		if country == 'cn':
			return fetch_cn_rule_set(self._session, year, self._timeout)
		return library_rule_set(country, year)

	def _cached(self, country: str, year: int) -> Optional[HolidayRuleSet]:
		raw = self._settings.get(CACHE_KEY.format(country=country, year=year))
		if not raw:
			return None
		try:
			return HolidayRuleSet.model_validate_json(raw)
		except ValidationError:
			logger.warning('Holiday cache for %s/%d is corrupted, refetching', country, year)
			return None

	def rule_set(self, country: str, year: int) -> HolidayRuleSet:
		"""Rule set for a country and year (cached for the current day).

		A failed fetch is not retried until the next day.
		"""
		country = country.lower()
		today = self._today().isoformat()
		cached = self._cached(country, year)
		if cached is not None and self._settings.get(
			CACHE_DATE_KEY.format(country=country, year=year)
		) == today:
			return cached
		if self._settings.get(FAILED_FETCH_KEY.format(country=country, year=year)) == today:
			return cached or HolidayRuleSet(country=country)

		try:
			rule_set = self._fetcher(country, year)
		except (requests.RequestException, ValueError, KeyError) as e:
			logger.warning('Failed to fetch %s/%d holidays: %s, using cache', country, year, e)
			self._settings.set(FAILED_FETCH_KEY.format(country=country, year=year), today)
			return cached or HolidayRuleSet(country=country)

		self._settings.set(CACHE_KEY.format(country=country, year=year), rule_set.model_dump_json())
		self._settings.set(CACHE_DATE_KEY.format(country=country, year=year), today)
		logger.debug(
			'Fetched %d %s holidays and %d workday swaps for %d',
			len(rule_set.national),
			country.upper(),
			len(rule_set.workday_swaps),
			year,
		)
		return rule_set

	def skip_reason(self, day: date, countries: Optional[Iterable[str]] = None) -> Optional[str]:
		"""Why `day` is a skip-day for the given (or configured) countries."""
		codes = [c.lower() for c in (countries if countries is not None else self.countries)]
		rule_sets = {code: self.rule_set(code, day.year) for code in codes}
		return skip_reason(day, codes, rule_sets, self.custom_holidays)

	def is_skip_day(self, day: date, countries: Optional[Iterable[str]] = None) -> bool:
		"""Whether no automated action should fire on `day`."""
		return self.skip_reason(day, countries) is not None

	def holidays_in_month(self, year: int, month: int, country: str) -> list[tuple[date, str]]:
		"""National and custom holidays of a month, sorted by date."""
		rule_set = self.rule_set(country, year)
		days = {d: n for d, n in rule_set.national.items() if d.month == month}
		days.update(
			{d: n for d, n in self.custom_holidays.items() if d.year == year and d.month == month}
		)
		return sorted(days.items())
