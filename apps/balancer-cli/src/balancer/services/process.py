"""Bounded, cancellable subprocess wrapper."""

from __future__ import annotations

import subprocess
import threading
import time

from balancer.errors import CommandTimeoutError, OperationCancelledError

_POLL_INTERVAL = 0.1


def run(
    cmd: list[str],
    *,
    timeout: float,
    cancel: threading.Event | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *cmd* capturing text output.

    Raises CommandTimeoutError once *timeout* seconds pass and
    OperationCancelledError when *cancel* is set; the child is killed in
    both cases. FileNotFoundError propagates for a missing executable.
    """
    proc = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if cancel is not None and cancel.is_set():
            _kill(proc)
            raise OperationCancelledError(f"Command cancelled: {' '.join(cmd)}")
        if remaining <= 0:
            _kill(proc)
            raise CommandTimeoutError(f"Command timed out after {timeout:g}s: {' '.join(cmd)}")
        try:
            stdout, stderr = proc.communicate(timeout=min(_POLL_INTERVAL, remaining))
        except subprocess.TimeoutExpired:
            continue
        return subprocess.CompletedProcess(cmd, proc.returncode, stdout, stderr)


def _kill(proc: subprocess.Popen) -> None:
    proc.kill()
    proc.communicate()
