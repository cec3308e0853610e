# SPDX-License-Identifier: Apache-2.0
"""
Guarded source commits.

A commit writes a durable backup of the current content, replaces the file
atomically, then re-reads and re-verifies what actually landed on disk. Any
failure after the backup restores the previous bytes. If the restore itself
fails the file is in an unknown state and :class:`CommitRestoreError` is
raised for an operator to handle.
"""

from __future__ import annotations

import hashlib
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict

from seedforge.runtime import metrics
from seedforge.runtime.interfaces.ilogger import ILogger
from seedforge.runtime.logger import get_logger
from seedforge.runtime.timeutils import now_iso

ELEMENT_ID = "Fire"

BACKUP_SUFFIX = ".seedforge-backup"

Writer = Callable[[Path, bytes], None]


class CommitStatus:
    COMMITTED = "committed"
    REVERIFY_FAILED = "reverify_failed"
    COMMIT_FAILED = "commit_failed"


class CommitRestoreError(RuntimeError):
    """Raised when a failed commit could not be rolled back."""

    def __init__(self, path: Path, cause: BaseException) -> None:
        super().__init__(f"restore_failed:{path}")
        self.path = path
        self.cause = cause


@dataclass(frozen=True)
class CommitResult:
    status: str
    path: str
    before: str = ""
    after: str = ""
    reason: str = ""
    updated_at: str = ""

    @property
    def ok(self) -> bool:
        return self.status == CommitStatus.COMMITTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "path": self.path,
            "before": self.before,
            "after": self.after,
            "reason": self.reason,
            "updated_at": self.updated_at,
        }


def _checksum(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def atomic_write_bytes(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("wb", delete=False, dir=str(target.parent), prefix=f".{target.name}.") as handle:
        temp_path = Path(handle.name)
        try:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        except BaseException:
            handle.close()
            temp_path.unlink(missing_ok=True)
            raise
    try:
        temp_path.replace(target)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def backup_path_for(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


class SourceUnit:
    def __init__(self, path: Path, *, writer: Writer = atomic_write_bytes, logger: ILogger | None = None) -> None:
        self.path = Path(path)
        self.backup_path = backup_path_for(self.path)
        self._write = writer
        self.logger = logger or get_logger(component="source_commit")

    def exists(self) -> bool:
        return self.path.is_file()

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    def read_text(self) -> str:
        return self.read_bytes().decode("utf-8")

    def commit(self, new_text: str, reverify: Callable[[str], bool]) -> CommitResult:
        try:
            original = self.read_bytes()
        except OSError as exc:
            return self._result(CommitStatus.COMMIT_FAILED, reason=f"read_failed:{exc.__class__.__name__}")
        new_bytes = new_text.encode("utf-8")

        try:
            self._write(self.backup_path, original)
        except OSError as exc:
            return self._result(CommitStatus.COMMIT_FAILED, original, reason=f"backup_failed:{exc.__class__.__name__}")

        try:
            self._write(self.path, new_bytes)
        except OSError as exc:
            self._restore(original, trigger="write_failed")
            return self._result(CommitStatus.COMMIT_FAILED, original, reason=f"write_failed:{exc.__class__.__name__}")

        try:
            landed = self.read_text()
        except (OSError, UnicodeDecodeError) as exc:
            self._restore(original, trigger="reread_failed")
            return self._result(CommitStatus.REVERIFY_FAILED, original, reason=f"reread_failed:{exc.__class__.__name__}")

        if not reverify(landed):
            self._restore(original, trigger="reverify_failed")
            return self._result(CommitStatus.REVERIFY_FAILED, original, reason="reverify_failed")

        self._telemetry(
            "source_commit_applied",
            {"path": str(self.path), "before": _checksum(original), "after": _checksum(new_bytes)},
        )
        return self._result(CommitStatus.COMMITTED, original, new_bytes)

    def rollback(self) -> bool:
        """Restore the last backup. Returns False when there is none."""
        if not self.backup_path.is_file():
            return False
        self._restore(self.backup_path.read_bytes(), trigger="manual_rollback")
        return True

    def _restore(self, original: bytes, *, trigger: str) -> None:
        try:
            self._write(self.path, original)
        except OSError as exc:
            self.logger.critical("source_restore_failed", error=exc, path=str(self.path), trigger=trigger)
            self._telemetry("source_commit_restore_failed", {"path": str(self.path), "trigger": trigger}, "CRITICAL")
            raise CommitRestoreError(self.path, exc) from exc
        self._telemetry(
            "source_commit_rollback",
            {"path": str(self.path), "trigger": trigger, "restored": _checksum(original)},
            "WARNING",
        )

    def _telemetry(self, event_type: str, payload: Dict[str, Any], level: str = "INFO") -> None:
        # A lost metrics line never changes a commit result.
        try:
            metrics.log(event_type=event_type, payload=payload, level=level, element_id=ELEMENT_ID)
        except OSError as exc:
            self.logger.error("source_commit_telemetry_failed", error=exc, event=event_type, path=str(self.path))

    def _result(self, status: str, before: bytes = b"", after: bytes = b"", *, reason: str = "") -> CommitResult:
        return CommitResult(
            status=status,
            path=str(self.path),
            before=_checksum(before) if before else "",
            after=_checksum(after) if after else "",
            reason=reason,
            updated_at=now_iso(),
        )


__all__ = [
    "BACKUP_SUFFIX",
    "CommitRestoreError",
    "CommitResult",
    "CommitStatus",
    "SourceUnit",
    "atomic_write_bytes",
    "backup_path_for",
]
