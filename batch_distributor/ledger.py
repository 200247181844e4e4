"""
Replay protection: which batch ids have been executed.

A batch id moves from unseen to executed exactly once and never back for a
committed execution. mark_executed checks and sets under one lock, so two
concurrent executions of the same id cannot both pass.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path

from batch_distributor.batch import BatchIdLike, normalize_batch_id
from batch_distributor.errors import BatchAlreadyExecuted, InvalidBatchId


logger = logging.getLogger(__name__)


class BatchLedger:
    """Base ledger. Subclasses provide the storage hooks."""

    def __init__(self):
        self._lock = threading.Lock()

    def is_executed(self, batch_id: BatchIdLike) -> bool:
        key = normalize_batch_id(batch_id)
        with self._locked():
            return self._contains(key)

    def mark_executed(self, batch_id: BatchIdLike) -> None:
        key = normalize_batch_id(batch_id)
        with self._locked():
            if self._contains(key):
                raise BatchAlreadyExecuted(f"batch 0x{key.hex()} already executed")
            self._store(key)

    def _release(self, batch_id: BatchIdLike) -> None:
        # Only for undoing a mark whose execution did not commit.
        key = normalize_batch_id(batch_id)
        with self._locked():
            if self._contains(key):
                self._drop(key)
                logger.debug("released uncommitted batch 0x%s", key.hex())

    def executed_count(self) -> int:
        with self._locked():
            return self._count()

    def _locked(self):
        return self._lock

    def _contains(self, key: bytes) -> bool:
        raise NotImplementedError

    def _store(self, key: bytes) -> None:
        raise NotImplementedError

    def _drop(self, key: bytes) -> None:
        raise NotImplementedError

    def _count(self) -> int:
        raise NotImplementedError


class InMemoryBatchLedger(BatchLedger):

    def __init__(self):
        super().__init__()
        self._executed: set[bytes] = set()

    def _contains(self, key: bytes) -> bool:
        return key in self._executed

    def _store(self, key: bytes) -> None:
        self._executed.add(key)

    def _drop(self, key: bytes) -> None:
        self._executed.discard(key)

    def _count(self) -> int:
        return len(self._executed)


class FileBatchLedger(InMemoryBatchLedger):
    """
    Ledger persisted as an append-only JSON-lines file.

    Each line is {"batchId": "0x..", "executed": true|false}. Releases are
    written as executed=false lines; the file is replayed in order.

    Several instances (in one or many processes) may share a path. Every
    operation holds an exclusive flock on "<path>.lock", first catches up
    with lines other instances appended, and fsyncs what it writes before
    returning.
    """

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock_path = Path(str(self.path) + ".lock")
        self._offset = 0
        self._line_num = 0
        with self._locked():
            pass

    @contextmanager
    def _locked(self):
        with self._lock:
            with open(self._lock_path, "w") as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    self._catch_up()
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _catch_up(self) -> None:
        if not self.path.exists():
            return
        with open(self.path, "rb") as f:
            f.seek(self._offset)
            data = f.read()
        # A tail without its newline is an append that never finished.
        end = data.rfind(b"\n") + 1
        for raw in data[:end].splitlines():
            self._line_num += 1
            line = raw.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
                key = normalize_batch_id(entry["batchId"])
            except (ValueError, KeyError, TypeError, InvalidBatchId) as e:
                raise ValueError(
                    f"{self.path}:{self._line_num}: corrupt ledger entry: {e}"
                )
            if entry.get("executed", True):
                self._executed.add(key)
            else:
                self._executed.discard(key)
        self._offset += end
        if end < len(data):
            logger.warning(
                "%s: dropping %d bytes of an unfinished entry", self.path, len(data) - end
            )
            os.truncate(self.path, self._offset)

    def _append(self, key: bytes, executed: bool) -> None:
        line = json.dumps({"batchId": "0x" + key.hex(), "executed": executed}) + "\n"
        data = line.encode("utf-8")
        with open(self.path, "ab") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        self._offset += len(data)
        self._line_num += 1

    def _store(self, key: bytes) -> None:
        self._append(key, True)
        super()._store(key)

    def _drop(self, key: bytes) -> None:
        self._append(key, False)
        super()._drop(key)
