"""Settings store, execution log and credential cipher collaborators.

The automation core only needs a string key-value store and an append-only
log. Both come with an in-memory implementation and a small file-backed one
that keeps everything under the configured data directory.
"""

from __future__ import annotations

import json
import os
import threading
from datetime import date
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError

from . import logger
from .models import LogEntry


class SettingsStore(Protocol):
	"""String key-value settings store."""

	def get(self, key: str) -> Optional[str]: ...

	def set(self, key: str, value: str) -> None: ...


class ExecutionLog(Protocol):
	"""Append-only execution log."""

	def append(self, entry: LogEntry) -> LogEntry: ...

	def query_by_date(self, day: date) -> list[LogEntry]: ...

	def query_range(self, start: date, end: date) -> list[LogEntry]: ...


class Cipher(Protocol):
	"""Opaque credential encryption capability."""

	def encrypt(self, plaintext: str) -> str: ...

	def decrypt(self, ciphertext: str) -> str: ...


class PlaintextCipher:
	"""Cipher that stores values as-is (for setups without an encryption key)."""

	def encrypt(self, plaintext: str) -> str:
		return plaintext

	def decrypt(self, ciphertext: str) -> str:
		return ciphertext


class MemorySettingsStore:
	"""Thread-safe in-memory settings store."""

	def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
		self._values: dict[str, str] = dict(initial or {})
		self._lock = threading.Lock()

	def get(self, key: str) -> Optional[str]:
		with self._lock:
			return self._values.get(key)

	def set(self, key: str, value: str) -> None:
		with self._lock:
			self._values[key] = value


class JsonSettingsStore:
	"""Settings store persisted as a single JSON object file.

	Writes go to a temporary file that replaces the original, so a crash
	never leaves a half-written store behind.
	"""

	def __init__(self, path: Path) -> None:
		self._path = path
		self._lock = threading.Lock()
		self._values = self._load()

	def _load(self) -> dict[str, str]:
		if not self._path.exists():
			return {}
		try:
			data = json.loads(self._path.read_text(encoding='utf-8'))
		except json.JSONDecodeError as e:
			raise ValueError(f'Corrupted settings store {self._path}: {e}') from e
		if not isinstance(data, dict):
			raise ValueError(f'Corrupted settings store {self._path}: expected an object')
		return {str(k): str(v) for k, v in data.items()}

	def _flush(self) -> None:
		self._path.parent.mkdir(parents=True, exist_ok=True)
		tmp_path = self._path.with_suffix(self._path.suffix + '.tmp')
		tmp_path.write_text(json.dumps(self._values, ensure_ascii=False, indent=2), encoding='utf-8')
		os.replace(tmp_path, self._path)

	def get(self, key: str) -> Optional[str]:
		with self._lock:
			return self._values.get(key)

	def set(self, key: str, value: str) -> None:
		with self._lock:
			self._values[key] = value
			self._flush()


class MemoryExecutionLog:
	"""Thread-safe in-memory execution log."""

	def __init__(self) -> None:
		self._entries: list[LogEntry] = []
		self._lock = threading.Lock()

	def append(self, entry: LogEntry) -> LogEntry:
		with self._lock:
			self._entries.append(entry)
		return entry

	def query_by_date(self, day: date) -> list[LogEntry]:
		return self.query_range(day, day)

	def query_range(self, start: date, end: date) -> list[LogEntry]:
		with self._lock:
			return [e for e in self._entries if start <= e.target_date <= end]


class JsonlExecutionLog:
	"""Execution log persisted as JSON lines, one entry per line."""

	def __init__(self, path: Path) -> None:
		self._path = path
		self._lock = threading.Lock()

	def append(self, entry: LogEntry) -> LogEntry:
		with self._lock:
			self._path.parent.mkdir(parents=True, exist_ok=True)
			with self._path.open('a', encoding='utf-8') as f:
				f.write(entry.model_dump_json() + '\n')
		return entry

	def query_by_date(self, day: date) -> list[LogEntry]:
		return self.query_range(day, day)

	def query_range(self, start: date, end: date) -> list[LogEntry]:
		with self._lock:
			if not self._path.exists():
				return []
			lines = self._path.read_text(encoding='utf-8').splitlines()

		entries = []
		for number, line in enumerate(lines, start=1):
			if not line.strip():
				continue
			try:
				entry = LogEntry.model_validate_json(line)
			except ValidationError as e:
				logger.warning('Skipping unreadable log line %d in %s: %s', number, self._path, e)
				continue
			if start <= entry.target_date <= end:
				entries.append(entry)
		return entries
