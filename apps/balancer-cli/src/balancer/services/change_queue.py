"""Debounced single-slot queue feeding the apply coordinator."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from balancer.services.coordinator import ApplyCoordinator, ApplyIntent, ApplyResult, ApplyState

log = logging.getLogger(__name__)


class ChangeQueue:
    """Coalesces apply intents and runs them on one worker thread.

    There is one pending slot. An intent submitted while another is still
    pending replaces it, and both are resolved with the result of the run
    that covers them. The debounce window is anchored at the first pending
    intent, so a steady stream of edits cannot postpone a run forever.
    Intents submitted during a run wait for exactly one follow-up run.
    """

    def __init__(
        self,
        coordinator: ApplyCoordinator,
        *,
        debounce: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.coordinator = coordinator
        self.debounce = debounce
        self._clock = clock
        self._cond = threading.Condition()
        self._covered: list[ApplyIntent] = []
        self._deadline: float | None = None
        self._running = False
        self._stopping = False
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_ts = 0

    @property
    def pending(self) -> ApplyIntent | None:
        with self._cond:
            return self._covered[-1] if self._covered else None

    @property
    def busy(self) -> bool:
        with self._cond:
            return self._running or bool(self._covered)

    @property
    def last_result(self) -> ApplyResult | None:
        return self.coordinator.last_result

    def submit(self, reason: str = "", logical_ts: int | None = None) -> ApplyIntent:
        with self._cond:
            if logical_ts is None:
                logical_ts = self._last_ts + 1
            self._last_ts = max(self._last_ts, logical_ts)
            intent = ApplyIntent(reason=reason, logical_ts=logical_ts)
            if self._covered:
                log.debug("Intent %d (%s) supersedes intent %d", intent.id, reason, self._covered[-1].id)
            else:
                self._deadline = self._clock() + self.debounce
                log.debug("Intent %d (%s) pending", intent.id, reason)
            self._covered.append(intent)
            self._cond.notify_all()
        return intent

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping = False
        self._cancel.clear()
        self._thread = threading.Thread(target=self._worker, name="balancer-apply", daemon=True)
        self._thread.start()
        log.info("Change queue started (debounce %.2fs)", self.debounce)

    def stop(self, timeout: float | None = 15.0) -> None:
        """Cancel the in-flight run, stop the worker, fail what is still pending."""
        with self._cond:
            self._stopping = True
            self._cancel.set()
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                log.warning("Apply worker did not stop within %ss", timeout)
            self._thread = None

        with self._cond:
            abandoned, self._covered = self._covered, []
            self._deadline = None
            self._cond.notify_all()
        if abandoned:
            result = ApplyResult(
                state=ApplyState.FAILED,
                intent_id=abandoned[-1].id,
                logical_ts=abandoned[-1].logical_ts,
                error="cancelled",
                detail="change queue stopped before the intent ran",
            )
            for intent in abandoned:
                intent.resolve(result)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until nothing is pending or running. False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._running and not self._covered, timeout)

    def _take_batch(self) -> list[ApplyIntent] | None:
        with self._cond:
            while not self._stopping:
                if self._covered:
                    remaining = self._deadline - self._clock()
                    if remaining <= 0:
                        break
                    self._cond.wait(remaining)
                else:
                    self._cond.wait()
            if self._stopping:
                return None
            batch, self._covered = self._covered, []
            self._deadline = None
            self._running = True
            return batch

    def _worker(self) -> None:
        while True:
            batch = self._take_batch()
            if batch is None:
                return
            latest = batch[-1]
            try:
                result = self.coordinator.apply(latest, cancel=self._cancel)
            except Exception as exc:
                log.exception("Apply run for intent %d crashed", latest.id)
                result = ApplyResult(
                    state=ApplyState.FAILED,
                    intent_id=latest.id,
                    logical_ts=latest.logical_ts,
                    error="internal_error",
                    detail=str(exc),
                )
            for intent in batch:
                intent.resolve(result)
            with self._cond:
                self._running = False
                self._cond.notify_all()
