"""Cooperative, file-based mutual exclusion for mutating operations.

The lock is a boolean flag in a JSON side-file at the monorepo root. There is
no expiry and no liveness check: the stored pid is informational only, and a
crashed holder leaves the flag set until `force_release` clears it.
"""

import datetime
import json
import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, LOCK_FILENAME
from .errors import LockHeld
from .store import write_json_atomic

logger = logging.getLogger(APP_NAME)


@dataclass
class LockRecord:
    """Contents of the lockfile.

    Attributes:
        locked (bool): Whether a process currently holds the lock.
        timestamp (str | None): ISO-8601 time of the last acquisition.
        pid (int | None): Process id of the last acquirer.
    """

    locked: bool = False
    timestamp: str | None = None
    pid: int | None = None

    def to_dict(self) -> dict:
        data: dict = {"locked": self.locked}
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        if self.pid is not None:
            data["pid"] = self.pid
        return data


@dataclass
class LockHandle:
    """Proof of acquisition, passed back to `release`."""

    path: Path
    record: LockRecord


def read_lock(root: Path) -> LockRecord:
    """Reads the lockfile; an absent or unparsable file reads as unlocked."""
    lock_path = root / LOCK_FILENAME
    try:
        data = json.loads(lock_path.read_text())
    except (OSError, ValueError) as e:
        logger.debug(f"Treating lockfile {lock_path} as unlocked: {e}")
        return LockRecord()

    if not isinstance(data, dict):
        return LockRecord()

    pid = data.get("pid")
    return LockRecord(
        locked=data.get("locked") is True,
        timestamp=data.get("timestamp"),
        pid=pid if isinstance(pid, int) else None,
    )


def acquire(root: Path) -> LockHandle:
    """Acquires the monorepo lock.

    Args:
        root (Path): The monorepo root.

    Returns:
        LockHandle: Handle to pass to `release`.

    Raises:
        LockHeld: If the lockfile already records `locked: true`.
    """
    record = read_lock(root)
    if record.locked:
        holder = f" (pid {record.pid}, since {record.timestamp})" if record.pid else ""
        raise LockHeld(
            f"Monorepo is locked by another process{holder}. Try again later, "
            "or run 'mono unlock' if that process is gone."
        )

    record = LockRecord(
        locked=True,
        timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        pid=os.getpid(),
    )
    lock_path = root / LOCK_FILENAME
    write_json_atomic(lock_path, record.to_dict())
    logger.debug(f"Lock acquired at {lock_path} by pid {record.pid}")
    return LockHandle(path=lock_path, record=record)


def release(handle: LockHandle) -> None:
    """Releases a lock obtained from `acquire`."""
    handle.record.locked = False
    write_json_atomic(handle.path, handle.record.to_dict())
    logger.debug(f"Lock released at {handle.path}")


@contextmanager
def hold_lock(root: Path) -> Iterator[LockHandle]:
    """Holds the monorepo lock for the duration of the block.

    The lock is released on every exit path, including exceptions.

    Args:
        root (Path): The monorepo root.

    Yields:
        LockHandle: The active handle.
    """
    handle = acquire(root)
    try:
        yield handle
    finally:
        release(handle)


def force_release(root: Path) -> LockRecord:
    """Clears the lock regardless of its holder.

    Args:
        root (Path): The monorepo root.

    Returns:
        LockRecord: The record as it was before clearing.
    """
    previous = read_lock(root)
    cleared = LockRecord(locked=False, timestamp=previous.timestamp, pid=previous.pid)
    write_json_atomic(root / LOCK_FILENAME, cleared.to_dict())
    if previous.locked:
        logger.warning(
            f"Lock at {root} force-released (held by pid {previous.pid} "
            f"since {previous.timestamp})"
        )
    return previous
