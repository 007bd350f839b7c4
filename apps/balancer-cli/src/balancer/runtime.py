"""Wires the lifecycle components together for the CLI and the API."""

from __future__ import annotations

import functools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator

from balancer_common import BalancerConfig, EntitySnapshot

from balancer.audit import record_apply
from balancer.errors import RenderError
from balancer.services.cert_sweep import CertificateSweeper
from balancer.services.change_queue import ChangeQueue
from balancer.services.coordinator import ApplyCoordinator, ApplyIntent
from balancer.services.issuer import CertbotIssuer, CertificateIssuer
from balancer.services.nginx import NginxController
from balancer.services.renderer import ConfigRenderer, RenderOptions
from balancer.services.validator import ConfigValidator
from balancer.store import EntityStore, SqlEntityStore
from balancer.store.base import AnyEntity, KindArg, resolve_kind

log = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: BalancerConfig
    store: EntityStore
    renderer: ConfigRenderer
    validator: ConfigValidator
    controller: NginxController
    coordinator: ApplyCoordinator
    queue: ChangeQueue
    sweeper: CertificateSweeper
    issuer: CertificateIssuer
    _started: bool = field(default=False, repr=False)
    _write_gate: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def start(self, *, sweep: bool = True) -> None:
        if self._started:
            return
        self.queue.start()
        if sweep:
            self.sweeper.start()
        self._started = True

    def stop(self) -> None:
        self.sweeper.stop()
        self.queue.stop()
        self.store.close()
        self._started = False

    @contextmanager
    def mutation(self) -> Iterator[None]:
        """Run a preflight, its store write and the submit as one step.

        Concurrent writers queue here, so each preflight sees every write
        that passed before it.
        """
        with self._write_gate:
            yield

    def submit(self, reason: str) -> ApplyIntent:
        """Queue an apply after a committed store write."""
        return self.queue.submit(reason)

    def preflight(self, candidate: Callable[[EntitySnapshot], EntitySnapshot]) -> None:
        """Reject a pending mutation if it would introduce new render problems.

        Problems already present in the current state do not block
        unrelated writes.
        """
        current = self.store.get_snapshot()
        before = set(self.renderer.find_problems(current))
        introduced = [p for p in self.renderer.find_problems(candidate(current)) if p not in before]
        if introduced:
            raise RenderError(introduced)

    def preflight_upsert(self, entity: AnyEntity) -> None:
        def candidate(snapshot: EntitySnapshot) -> EntitySnapshot:
            preview = entity
            if preview.id is None:
                preview = entity.model_copy(update={"id": snapshot.next_id(entity.kind)})
            return snapshot.with_entity(preview)

        self.preflight(candidate)

    def preflight_delete(self, kind: KindArg, entity_id: int) -> None:
        self.preflight(lambda snapshot: snapshot.without(resolve_kind(kind), entity_id))


def build_runtime(
    config: BalancerConfig,
    *,
    store: EntityStore | None = None,
    validator: ConfigValidator | None = None,
    controller: NginxController | None = None,
    issuer: CertificateIssuer | None = None,
    audit_applies: bool = True,
) -> Runtime:
    """Assemble a runtime; collaborators may be injected for tests."""
    store = store or SqlEntityStore.from_url(config.database_url)
    renderer = ConfigRenderer(RenderOptions.from_config(config))
    validator = validator or ConfigValidator.from_config(config)
    controller = controller or NginxController.from_config(config)
    coordinator = ApplyCoordinator(
        store,
        renderer,
        validator,
        controller,
        active_path=config.active_config_path,
        backup_path=config.backup_config_path,
        reload_timeout=config.reload_timeout,
    )
    if audit_applies:
        coordinator.add_result_listener(functools.partial(record_apply, cfg=config))

    queue = ChangeQueue(coordinator, debounce=config.debounce_seconds)
    sweeper = CertificateSweeper(
        store,
        on_change=lambda expired: queue.submit(f"{len(expired)} certificate(s) expired"),
        interval=config.sweep_interval,
    )
    return Runtime(
        config=config,
        store=store,
        renderer=renderer,
        validator=validator,
        controller=controller,
        coordinator=coordinator,
        queue=queue,
        sweeper=sweeper,
        issuer=issuer or CertbotIssuer.from_config(store, config),
    )
