"""NGINX process control: reload and stub_status parsing."""

from __future__ import annotations

import logging
import os
import re
import threading
import time
from pathlib import Path

import httpx
from pydantic import BaseModel

from balancer_common import BalancerConfig

from balancer.errors import (
    CommandTimeoutError,
    OperationCancelledError,
    ReloadError,
    StatusUnavailableError,
)
from balancer.services import process

log = logging.getLogger(__name__)

_STUB_STATUS_RE = re.compile(
    r"Active connections:\s*(?P<active>\d+)\s+"
    r"server accepts handled requests\s+(?P<accepts>\d+)\s+(?P<handled>\d+)\s+(?P<requests>\d+)\s+"
    r"Reading:\s*(?P<reading>\d+)\s+Writing:\s*(?P<writing>\d+)\s+Waiting:\s*(?P<waiting>\d+)"
)
_ACK_POLL_INTERVAL = 0.2


class NginxStatus(BaseModel):
    active_connections: int
    accepts: int
    handled: int
    requests: int
    reading: int
    writing: int
    waiting: int
    uptime: float | None = None  # seconds since the master process started


def parse_stub_status(text: str) -> dict[str, int]:
    """Parse the ``stub_status`` page. Raises StatusUnavailableError if malformed."""
    match = _STUB_STATUS_RE.search(text)
    if match is None:
        raise StatusUnavailableError(f"Unrecognised stub_status output: {text[:200]!r}")
    values = {key: int(value) for key, value in match.groupdict().items()}
    values["active_connections"] = values.pop("active")
    return values


class NginxController:
    """Signals the supervised NGINX master and reads its status surface."""

    def __init__(
        self,
        *,
        nginx_bin: str = "nginx",
        exec_prefix: list[str] | None = None,
        pid_path: Path | None = None,
        status_url: str | None = None,
        http_timeout: float = 2.0,
    ):
        self.nginx_bin = nginx_bin
        self.exec_prefix = list(exec_prefix or [])
        self.pid_path = pid_path
        self.status_url = status_url
        self.http_timeout = http_timeout

    @classmethod
    def from_config(cls, cfg: BalancerConfig) -> NginxController:
        return cls(
            nginx_bin=cfg.nginx_bin,
            exec_prefix=cfg.nginx_exec_prefix,
            pid_path=cfg.pid_path,
            status_url=cfg.status_url,
        )

    def reload(self, *, timeout: float = 10.0, cancel: threading.Event | None = None) -> None:
        """Send the reload signal and wait for the master to acknowledge it.

        Raises ReloadError on a failed command, a missing/dead master, an
        unreachable status endpoint, timeout or cancellation.
        """
        deadline = time.monotonic() + timeout
        cmd = [*self.exec_prefix, self.nginx_bin, "-s", "reload"]
        try:
            result = process.run(cmd, timeout=timeout, cancel=cancel)
        except FileNotFoundError as exc:
            raise ReloadError(f"NGINX binary not found: {exc.filename or self.nginx_bin}") from exc
        except (CommandTimeoutError, OperationCancelledError) as exc:
            raise ReloadError(str(exc)) from exc
        if result.returncode != 0:
            raise ReloadError(f"NGINX reload failed:\n{(result.stderr + result.stdout).strip()}")

        while True:
            problem = self._acknowledge_problem()
            if problem is None:
                log.info("NGINX reload acknowledged")
                return
            if cancel is not None and cancel.is_set():
                raise ReloadError(f"Reload cancelled before acknowledgement: {problem}")
            if time.monotonic() >= deadline:
                raise ReloadError(f"Reload not acknowledged within {timeout:g}s: {problem}")
            time.sleep(_ACK_POLL_INTERVAL)

    def status(self) -> NginxStatus:
        if not self.status_url:
            raise StatusUnavailableError("No status endpoint configured")
        try:
            resp = httpx.get(self.status_url, timeout=self.http_timeout)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise StatusUnavailableError(f"Status endpoint unreachable: {exc}") from exc
        return NginxStatus(**parse_stub_status(resp.text), uptime=self.uptime())

    def master_pid(self) -> int | None:
        if self.pid_path is None:
            return None
        try:
            return int(self.pid_path.read_text().strip())
        except (OSError, ValueError):
            return None

    def is_running(self) -> bool:
        pid = self.master_pid()
        if pid is None:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def uptime(self) -> float | None:
        if self.pid_path is None:
            return None
        try:
            return max(0.0, time.time() - self.pid_path.stat().st_mtime)
        except OSError:
            return None

    def _acknowledge_problem(self) -> str | None:
        if self.pid_path is not None and not self.is_running():
            return f"master process from {self.pid_path} is not running"
        if self.status_url:
            try:
                httpx.get(self.status_url, timeout=self.http_timeout).raise_for_status()
            except httpx.HTTPError as exc:
                return f"status endpoint unreachable: {exc}"
        return None
