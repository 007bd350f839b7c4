"""Periodic expiry sweep for active certificates."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from balancer_common import Certificate, CertificateStatus

from balancer.errors import BalancerError
from balancer.store.base import EntityStore

log = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class CertificateSweeper:
    """Moves active certificates past their expiry to ``expired``.

    *on_change* is called once per sweep that expired anything; the runtime
    uses it to submit an apply intent so SSL hosts are re-evaluated.
    """

    def __init__(
        self,
        store: EntityStore,
        on_change: Callable[[list[Certificate]], None] | None = None,
        *,
        interval: float = 300.0,
    ):
        self.store = store
        self.on_change = on_change
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep(self, now: datetime | None = None) -> list[Certificate]:
        now = _aware(now or datetime.now(timezone.utc))
        expired: list[Certificate] = []
        for cert in self.store.list(Certificate):
            if cert.status is not CertificateStatus.ACTIVE or cert.expires_at is None:
                continue
            if _aware(cert.expires_at) > now:
                continue
            try:
                updated = self.store.update(cert.model_copy(update={"status": CertificateStatus.EXPIRED}))
            except BalancerError as exc:
                log.warning("Could not expire certificate %s: %s", cert.id, exc)
                continue
            log.warning("Certificate %s (%s) expired at %s", cert.id, cert.domain_name, cert.expires_at)
            expired.append(updated)

        if expired and self.on_change is not None:
            self.on_change(expired)
        return expired

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="balancer-cert-sweep", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.sweep()
            except BalancerError as exc:
                log.error("Certificate sweep failed: %s", exc)
