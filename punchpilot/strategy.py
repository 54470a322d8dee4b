"""Monthly strategy cache: which fallback tier works for which operation kind."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError

from . import logger
from .models import OperationKind, StrategyCacheEntry, StrategyTier
from .storage import SettingsStore

ENTRY_KEY = 'strategy_cache:{month}:{kind}'
SEEN_MONTH_KEY = 'strategy_cache_month:{kind}'


class StrategyCache:
	"""Per (month, operation kind) memory of the fallback chain.

	Keys are scoped by an explicit month string, so an entry can never leak
	into the next month regardless of process uptime. Every read-modify-write
	runs under one lock.
	"""

	def __init__(self, settings: SettingsStore) -> None:
		self._settings = settings
		self._lock = threading.RLock()

	def _read(self, month: str, kind: OperationKind) -> Optional[StrategyCacheEntry]:
		raw = self._settings.get(ENTRY_KEY.format(month=month, kind=kind))
		if not raw:
			return None
		try:
			return StrategyCacheEntry.model_validate_json(raw)
		except ValidationError as e:
			logger.warning('Ignoring corrupted strategy cache for %s/%s: %s', month, kind, e)
			return None

	def _write(self, entry: StrategyCacheEntry) -> None:
		key = ENTRY_KEY.format(month=entry.month, kind=entry.kind)
		self._settings.set(key, entry.model_dump_json())

	def _clear(self, month: str, kind: OperationKind) -> None:
		self._settings.set(ENTRY_KEY.format(month=month, kind=kind), '')

	def get(self, month: str, kind: OperationKind) -> Optional[StrategyCacheEntry]:
		"""Cached entry for (month, kind), or None if nothing was learned yet."""
		with self._lock:
			return self._read(month, kind)

	def lookup(self, month: str, kind: OperationKind) -> StrategyCacheEntry:
		"""Cached entry, or an empty one (no preference, nothing failing)."""
		return self.get(month, kind) or StrategyCacheEntry(month=month, kind=kind)

	def _update(
		self,
		month: str,
		kind: OperationKind,
		change: Callable[[StrategyCacheEntry], None],
	) -> StrategyCacheEntry:
		with self._lock:
			entry = self._read(month, kind) or StrategyCacheEntry(month=month, kind=kind)
			change(entry)
			entry.updated_at = datetime.now()
			self._write(entry)
			return entry

	def record_success(
		self, month: str, kind: OperationKind, tier: StrategyTier
	) -> StrategyCacheEntry:
		"""Remember that a tier worked this month."""

		def change(entry: StrategyCacheEntry) -> None:
			entry.last_working_tier = tier
			entry.failing.discard(tier)

		return self._update(month, kind, change)

	def record_permanent_failure(
		self, month: str, kind: OperationKind, tier: StrategyTier
	) -> StrategyCacheEntry:
		"""Mark a tier as known-failing for the rest of the month."""

		def change(entry: StrategyCacheEntry) -> None:
			entry.failing.add(tier)
			if entry.last_working_tier == tier:
				entry.last_working_tier = None

		return self._update(month, kind, change)

	def reset_if_new_month(self, month: str) -> list[OperationKind]:
		"""Start fresh for every kind whose last seen month is older than `month`.

		Permissions can change with the fiscal period, so a new month tries
		tier 1 again.

		Returns:
			The kinds that were reset.
		"""
		reset = []
		with self._lock:
			for kind in OperationKind:
				seen_key = SEEN_MONTH_KEY.format(kind=kind)
				seen = self._settings.get(seen_key) or None
				if seen is not None and month <= seen:
					continue
				if seen is not None:
					self._clear(seen, kind)
					self._clear(month, kind)
					reset.append(kind)
				self._settings.set(seen_key, month)

		if reset:
			logger.info('🔄 Strategy cache reset for %s (%s)', month, ', '.join(reset))
		return reset
