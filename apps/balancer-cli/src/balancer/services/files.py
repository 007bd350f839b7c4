"""Atomic file replacement helpers and the cross-process config lock."""

from __future__ import annotations

import fcntl
import os
import tempfile
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from balancer.errors import OperationCancelledError

_DEFAULT_MODE = 0o644


def stage(target: Path, data: bytes) -> Path:
    """Write *data* to a fsynced temp file beside *target* and return its path.

    The temp file lives in the same directory so the later rename stays on
    one filesystem.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".staged")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        mode = target.stat().st_mode & 0o777 if target.exists() else _DEFAULT_MODE
        os.chmod(tmp, mode)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    return Path(tmp)


def activate(staged: Path, target: Path) -> None:
    """Rename *staged* over *target*; readers see the old or the new file, never a mix."""
    os.replace(staged, target)
    _fsync_dir(target.parent)


def atomic_write(target: Path, data: bytes) -> None:
    activate(stage(target, data), target)


def _fsync_dir(directory: Path) -> None:
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def lock_path_for(target: Path) -> Path:
    return target.with_name(f".{target.name}.lock")


@contextmanager
def exclusive_lock(
    path: Path,
    *,
    cancel: threading.Event | None = None,
    poll: float = 0.05,
) -> Iterator[None]:
    """Hold an exclusive ``flock`` on *path* for the duration of the block.

    Waits for other holders, including other processes, and gives up with
    OperationCancelledError once *cancel* is set.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a") as lock_file:
        while True:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if cancel is None:
                    time.sleep(poll)
                elif cancel.wait(poll):
                    raise OperationCancelledError(f"cancelled while waiting for {path.name}") from None
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
