"""Advisory single-writer lock for an index directory.

Uses fcntl.flock() on ``<index_dir>/.lock``. The lock is held for the whole
of a build or a watch session; a second writer fails fast with
``IndexLockedError`` unless a timeout is given. Readers never take it.
"""

from __future__ import annotations

import fcntl
import os
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

from codesift.core.errors import IndexLockedError

log = structlog.get_logger()


@contextmanager
def writer_lock(
    lock_path: Path,
    timeout: float = 0.0,
    poll_interval: float = 0.1,
) -> Iterator[Path]:
    """Hold an exclusive advisory lock on ``lock_path`` for the block.

    Args:
        lock_path: Lock file (created if needed)
        timeout: Seconds to keep retrying; 0 fails on the first attempt
        poll_interval: Delay between attempts

    Raises:
        IndexLockedError: If another process holds the lock past ``timeout``
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    # Append mode: opening must not truncate the holder's pid.
    lock_file = lock_path.open("a+")
    start = time.monotonic()
    try:
        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except OSError as e:
                if time.monotonic() - start >= timeout:
                    log.debug("lock.busy", path=str(lock_path), holder=read_holder(lock_path))
                    raise IndexLockedError.held(str(lock_path)) from e
                time.sleep(poll_interval)

        lock_file.seek(0)
        lock_file.truncate()
        lock_file.write(f"{os.getpid()}\n")
        lock_file.flush()
        log.debug("lock.acquired", path=str(lock_path))
        try:
            yield lock_path
        finally:
            lock_file.seek(0)
            lock_file.truncate()
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
            log.debug("lock.released", path=str(lock_path))
    finally:
        lock_file.close()


def read_holder(lock_path: Path) -> int | None:
    """PID recorded in the lock file, if any (informational only)."""
    try:
        text = lock_path.read_text().strip()
    except OSError:
        return None
    return int(text) if text.isdigit() else None


def is_locked(lock_path: Path) -> bool:
    """True if some process currently holds the lock."""
    if not lock_path.exists():
        return False
    with lock_path.open("a+") as f:
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            return True
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        return False
