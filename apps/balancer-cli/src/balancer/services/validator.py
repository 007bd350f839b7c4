"""NGINX config validation (``nginx -t``) against an isolated staging file."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path

from balancer_common import BalancerConfig

from balancer.errors import CommandTimeoutError, ConfigSyntaxError, OperationCancelledError
from balancer.services import process

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    output: str


class ConfigValidator:
    """Runs the NGINX syntax check on candidate text.

    Every call gets its own staging file, so validations may run while a
    reload is in progress or concurrently with each other. The active
    configuration is never touched.
    """

    def __init__(
        self,
        staging_dir: Path,
        *,
        nginx_bin: str = "nginx",
        exec_prefix: list[str] | None = None,
        timeout: float = 5.0,
    ):
        self.staging_dir = staging_dir
        self.nginx_bin = nginx_bin
        self.exec_prefix = list(exec_prefix or [])
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: BalancerConfig) -> ConfigValidator:
        return cls(
            cfg.staging_dir,
            nginx_bin=cfg.nginx_bin,
            exec_prefix=cfg.nginx_exec_prefix,
            timeout=cfg.validate_timeout,
        )

    def staging_path(self, fingerprint: str | None) -> Path:
        tag = fingerprint[:16] if fingerprint else "adhoc"
        return self.staging_dir / f"candidate-{tag}-{uuid.uuid4().hex[:8]}.conf"

    def command(self, path: Path) -> list[str]:
        return [*self.exec_prefix, self.nginx_bin, "-t", "-c", str(path)]

    def validate(
        self,
        text: str,
        *,
        fingerprint: str | None = None,
        cancel: threading.Event | None = None,
    ) -> ValidationResult:
        """Check *text*; raise ConfigSyntaxError unless NGINX accepts it."""
        path = self.staging_path(fingerprint)
        try:
            self.staging_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(text)
        except OSError as exc:
            raise ConfigSyntaxError(f"Cannot stage candidate for nginx -t: {exc}") from exc
        try:
            result = process.run(self.command(path), timeout=self.timeout, cancel=cancel)
        except FileNotFoundError as exc:
            raise ConfigSyntaxError(f"NGINX binary not found: {exc.filename or self.nginx_bin}") from exc
        except (CommandTimeoutError, OperationCancelledError) as exc:
            raise ConfigSyntaxError(f"NGINX config test did not complete: {exc}") from exc
        finally:
            path.unlink(missing_ok=True)

        output = (result.stderr + result.stdout).strip()
        if result.returncode != 0:
            log.info("Candidate %s rejected by nginx -t", fingerprint or "adhoc")
            raise ConfigSyntaxError(f"NGINX config test failed:\n{output}")
        return ValidationResult(ok=True, output=output)
