"""Session recorder contract and in-process implementations."""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Protocol

from .errors import RecorderError


class SessionRecorder(Protocol):
    """Persists the outcome of a timer run; owned outside the timing core."""
    def open_session(
        self,
        session_type: str,
        subject_id: Optional[str],
        setting_duration: int,
    ) -> str:
        ...

    def close_session(
        self,
        session_id: str,
        status: str,
        actual_duration_seconds: int,
        overtime_seconds: int,
    ) -> None:
        ...


@dataclass(frozen=True)
class SessionRecord:
    id: str
    subject_id: Optional[str]
    session_type: str
    setting_duration: int
    started_at: str
    status: Optional[str] = None
    duration: int = 0
    overtime_elapsed: int = 0
    completed_at: Optional[str] = None

    @property
    def is_closed(self) -> bool:
        return self.status is not None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemorySessionRecorder:
    """Keeps records in a dict; the default when no recorder path is configured."""

    def __init__(
        self,
        *,
        now_fn: Callable[[], datetime] = _utc_now,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self._now_fn = now_fn
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._records: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    @property
    def records(self) -> list[SessionRecord]:
        with self._lock:
            return list(self._records.values())

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            return self._records.get(session_id)

    def open_session(
        self,
        session_type: str,
        subject_id: Optional[str],
        setting_duration: int,
    ) -> str:
        record = SessionRecord(
            id=self._id_factory(),
            subject_id=subject_id,
            session_type=session_type,
            setting_duration=int(setting_duration),
            started_at=self._now_fn().isoformat(),
        )
        with self._lock:
            self._records[record.id] = record
        return record.id

    def close_session(
        self,
        session_id: str,
        status: str,
        actual_duration_seconds: int,
        overtime_seconds: int,
    ) -> None:
        with self._lock:
            self._records[session_id] = self._closed_record_locked(
                session_id, status, actual_duration_seconds, overtime_seconds
            )

    def _closed_record_locked(
        self,
        session_id: str,
        status: str,
        actual_duration_seconds: int,
        overtime_seconds: int,
    ) -> SessionRecord:
        record = self._records.get(session_id)
        if record is None:
            raise RecorderError(f"Unknown session id: {session_id}")
        if record.is_closed:
            raise RecorderError(f"Session already closed: {session_id}")
        return replace(
            record,
            status=status,
            duration=int(actual_duration_seconds),
            overtime_elapsed=int(overtime_seconds),
            completed_at=self._now_fn().isoformat(),
        )


class JsonlSessionRecorder(InMemorySessionRecorder):
    """Appends every closed session as one JSON line to a file.

    Only open sessions are kept in memory; a closed session lives in the file.
    A failed write leaves the session open so the close can be retried.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        now_fn: Callable[[], datetime] = _utc_now,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(now_fn=now_fn)
        self._path = Path(path)
        self._logger = logger or logging.getLogger("pomodoro.recorder")

    @property
    def path(self) -> Path:
        return self._path

    def close_session(
        self,
        session_id: str,
        status: str,
        actual_duration_seconds: int,
        overtime_seconds: int,
    ) -> None:
        with self._lock:
            record = self._closed_record_locked(
                session_id, status, actual_duration_seconds, overtime_seconds
            )
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with open(self._path, "a", encoding="utf-8") as fh:
                    fh.write(json.dumps(asdict(record), ensure_ascii=False) + "\n")
            except OSError as error:
                raise RecorderError(f"Failed to write session record: {error}") from error
            del self._records[session_id]
        self._logger.info(
            "Session recorded: id=%s status=%s duration=%ss",
            session_id,
            status,
            actual_duration_seconds,
        )

    def load(self) -> list[SessionRecord]:
        """Read back all records written so far."""
        if not self._path.exists():
            return []
        records: list[SessionRecord] = []
        with open(self._path, "r", encoding="utf-8") as fh:
            for line_number, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(SessionRecord(**json.loads(line)))
                except (ValueError, TypeError) as error:
                    raise RecorderError(
                        f"Malformed session record on line {line_number}: {error}"
                    ) from error
        return records
