"""Apply coordinator: render -> validate -> stage -> activate -> reload, with rollback.

One run reconciles the running NGINX with the current entity state. The
active configuration file is only ever replaced by rename, and every
failure path leaves the last known-good file in force:

* render / validation failures happen before anything is staged;
* activation failures leave the old file in place (rename is atomic);
* reload failures restore the prior bytes and reload again.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol

from pydantic import BaseModel, Field

from balancer_common import EntitySnapshot, RenderedConfig

from balancer.errors import (
    ActivationError,
    BalancerError,
    ConfigSyntaxError,
    InternalError,
    OperationCancelledError,
    ReloadError,
    RenderError,
    StoreError,
)
from balancer.services import files
from balancer.services.renderer import read_fingerprint
from balancer.services.validator import ValidationResult
from balancer.store.base import EntityStore

log = logging.getLogger(__name__)

_intent_ids = itertools.count(1)


class ApplyState(str, Enum):
    IDLE = "idle"
    RENDERING = "rendering"
    VALIDATING = "validating"
    STAGED = "staged"
    ACTIVATING = "activating"
    RELOADING = "reloading"
    SETTLED = "settled"
    FAILED = "failed"


class ApplyResult(BaseModel):
    """Outcome of one apply run."""

    state: ApplyState
    intent_id: Optional[int] = None
    logical_ts: Optional[int] = None
    fingerprint: Optional[str] = None
    previous_fingerprint: Optional[str] = None
    skipped: bool = False
    reloaded: bool = False
    rolled_back: bool = False
    error: Optional[str] = None
    detail: Optional[str] = None
    source_version: dict[str, int] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def ok(self) -> bool:
        return self.state is ApplyState.SETTLED


@dataclass
class ApplyIntent:
    """A request to reconcile the running configuration with the store."""

    reason: str = ""
    logical_ts: int = 0
    id: int = field(default_factory=lambda: next(_intent_ids))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    _done: threading.Event = field(default_factory=threading.Event, repr=False)
    result: Optional[ApplyResult] = None

    def resolve(self, result: ApplyResult) -> None:
        self.result = result
        self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> Optional[ApplyResult]:
        """Block until a run covering this intent finished; None on timeout."""
        self._done.wait(timeout)
        return self.result


class Renderer(Protocol):
    def render(self, snapshot: EntitySnapshot) -> RenderedConfig: ...


class Validator(Protocol):
    def validate(
        self, text: str, *, fingerprint: str | None = None, cancel: threading.Event | None = None
    ) -> ValidationResult: ...


class Controller(Protocol):
    def reload(self, *, timeout: float = 10.0, cancel: threading.Event | None = None) -> None: ...


class ApplyCoordinator:
    """Runs apply attempts one at a time and reports their outcome."""

    def __init__(
        self,
        store: EntityStore,
        renderer: Renderer,
        validator: Validator,
        controller: Controller,
        *,
        active_path: Path,
        backup_path: Path | None = None,
        reload_timeout: float = 10.0,
    ):
        self.store = store
        self.renderer = renderer
        self.validator = validator
        self.controller = controller
        self.active_path = active_path
        self.backup_path = backup_path
        self.reload_timeout = reload_timeout

        self._run_lock = threading.Lock()
        self._state = ApplyState.IDLE
        self._last_result: ApplyResult | None = None
        self._state_listeners: list[Callable[[ApplyState], None]] = []
        self._result_listeners: list[Callable[[ApplyResult], None]] = []

    @property
    def state(self) -> ApplyState:
        return self._state

    @property
    def last_result(self) -> ApplyResult | None:
        return self._last_result

    def add_state_listener(self, callback: Callable[[ApplyState], None]) -> None:
        self._state_listeners.append(callback)

    def add_result_listener(self, callback: Callable[[ApplyResult], None]) -> None:
        self._result_listeners.append(callback)

    @property
    def lock_path(self) -> Path:
        return files.lock_path_for(self.active_path)

    def active_fingerprint(self) -> str | None:
        try:
            # The header is ASCII; the rest of a hand-edited file may hold any bytes.
            return read_fingerprint(self.active_path.read_bytes().decode("utf-8", "replace"))
        except FileNotFoundError:
            return None

    def apply(
        self,
        intent: ApplyIntent | None = None,
        *,
        cancel: threading.Event | None = None,
    ) -> ApplyResult:
        """Run one attempt. Never retries; a failure needs a new intent.

        Runs are serialised within the process by a lock and across
        processes by an ``flock`` on a file beside the active config, so a
        CLI apply never interleaves with the server's queue.
        """
        result = ApplyResult(
            state=ApplyState.IDLE,
            intent_id=intent.id if intent else None,
            logical_ts=intent.logical_ts if intent else None,
        )
        with self._run_lock:
            try:
                with files.exclusive_lock(self.lock_path, cancel=cancel):
                    self._run(result, cancel)
            except OperationCancelledError as exc:
                self._fail(result, exc)
            except Exception as exc:
                log.exception("Unexpected error during apply")
                self._fail(result, InternalError(f"unexpected error: {exc!r}"))
            finally:
                self._last_result = result
                self._set_state(ApplyState.IDLE)
        for callback in self._result_listeners:
            callback(result)
        return result

    def _set_state(self, state: ApplyState) -> None:
        self._state = state
        log.debug("Apply state -> %s", state.value)
        for callback in self._state_listeners:
            callback(state)

    def _run(self, result: ApplyResult, cancel: threading.Event | None) -> ApplyResult:
        result.previous_fingerprint = self.active_fingerprint()

        try:
            self._set_state(ApplyState.RENDERING)
            rendered = self.renderer.render(self.store.get_snapshot())
            result.fingerprint = rendered.fingerprint
            result.source_version = dict(rendered.source_version)

            if rendered.fingerprint == result.previous_fingerprint:
                log.info("Configuration %s already active, nothing to apply", rendered.fingerprint[:12])
                result.skipped = True
                return self._settle(result)

            self._checkpoint(cancel)
            self._set_state(ApplyState.VALIDATING)
            self.validator.validate(rendered.text, fingerprint=rendered.fingerprint, cancel=cancel)

            self._checkpoint(cancel)
            self._set_state(ApplyState.STAGED)
            staged = self._stage(rendered)
            try:
                self._checkpoint(cancel)
            except OperationCancelledError:
                staged.unlink(missing_ok=True)
                raise

            self._set_state(ApplyState.ACTIVATING)
            prior = self._activate(staged)
        except (StoreError, RenderError, ConfigSyntaxError, ActivationError, OperationCancelledError) as exc:
            return self._fail(result, exc)

        # From here on the candidate is live: complete or roll back, even if cancelled.
        self._set_state(ApplyState.RELOADING)
        try:
            self.controller.reload(timeout=self.reload_timeout, cancel=cancel)
        except ReloadError as exc:
            result.rolled_back, note = self._rollback(prior)
            return self._fail(result, ReloadError(f"{exc}; {note}"))
        except Exception as exc:
            log.exception("Unexpected error during reload, rolling back")
            result.rolled_back, note = self._rollback(prior)
            return self._fail(result, InternalError(f"unexpected error during reload: {exc!r}; {note}"))

        result.reloaded = True
        log.info("Configuration %s active", rendered.fingerprint[:12])
        return self._settle(result)

    def _checkpoint(self, cancel: threading.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise OperationCancelledError("apply cancelled before activation")

    def _stage(self, rendered: RenderedConfig) -> Path:
        try:
            return files.stage(self.active_path, rendered.text.encode())
        except OSError as exc:
            raise ActivationError(f"cannot stage configuration: {exc}") from exc

    def _activate(self, staged: Path) -> bytes | None:
        """Swap the staged file in; return the bytes it replaced."""
        try:
            prior = self.active_path.read_bytes() if self.active_path.exists() else None
            if prior is not None and self.backup_path is not None:
                files.atomic_write(self.backup_path, prior)
            files.activate(staged, self.active_path)
        except OSError as exc:
            staged.unlink(missing_ok=True)
            raise ActivationError(f"cannot activate configuration: {exc}") from exc
        return prior

    def _rollback(self, prior: bytes | None) -> tuple[bool, str]:
        """Restore *prior* and reload again. Returns (restored, note)."""
        try:
            if prior is None:
                self.active_path.unlink(missing_ok=True)
                log.critical("Reload failed on first apply; candidate removed from %s", self.active_path)
                return True, "no prior configuration, candidate removed"
            files.atomic_write(self.active_path, prior)
        except OSError as exc:
            log.critical("Rollback failed, %s holds the rejected candidate: %s", self.active_path, exc)
            return False, f"rollback failed: {exc}"

        try:
            self.controller.reload(timeout=self.reload_timeout)
        except ReloadError as exc:
            log.critical("Prior configuration restored but reload after rollback failed: %s", exc)
            return True, f"prior configuration restored, reload after rollback failed: {exc}"
        log.error("Reload failed; prior configuration restored and reloaded")
        return True, "prior configuration restored"

    def _settle(self, result: ApplyResult) -> ApplyResult:
        result.state = ApplyState.SETTLED
        result.finished_at = datetime.now(timezone.utc)
        self._set_state(ApplyState.SETTLED)
        return result

    def _fail(self, result: ApplyResult, exc: BalancerError) -> ApplyResult:
        result.state = ApplyState.FAILED
        result.error = exc.kind
        result.detail = exc.detail
        result.finished_at = datetime.now(timezone.utc)
        if isinstance(exc, (ReloadError, StoreError, ActivationError, InternalError)):
            log.error("Apply failed (%s): %s", exc.kind, exc)
        else:
            log.warning("Apply rejected (%s): %s", exc.kind, exc)
        self._set_state(ApplyState.FAILED)
        return result
