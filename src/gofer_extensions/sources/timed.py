"""Shared plumbing for event sources driven by the tick scheduler."""

from __future__ import annotations

import structlog

from gofer_extensions.api.host_client import HostClient
from gofer_extensions.config.system import SystemConfig
from gofer_extensions.engine.registry import SubscriptionRegistry, TimeRegistry
from gofer_extensions.engine.scheduler import TickScheduler
from gofer_extensions.errors import ExtensionError
from gofer_extensions.plugins.protocols import Sink

log = structlog.get_logger()


class TimedSource:
    """Base for sources whose subscriptions carry a time predicate."""

    name = "timed"

    def __init__(self, config: SystemConfig, host: HostClient | None = None) -> None:
        self.config = config
        self._scheduler: TickScheduler | None = None

    @property
    def scheduler(self) -> TickScheduler | None:
        return self._scheduler

    def create_registry(self) -> SubscriptionRegistry:
        return TimeRegistry()

    async def start(self, registry: SubscriptionRegistry, sink: Sink) -> None:
        if not isinstance(registry, TimeRegistry):
            raise TypeError(f"{self.name} source needs a TimeRegistry")
        self._scheduler = TickScheduler(registry, sink, self.config.tick_interval)
        await self._scheduler.start()

    async def stop(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.stop()
            self._scheduler = None

    async def external_event(self, headers: dict[str, str], body: bytes) -> None:
        log.debug("external event ignored", source=self.name)
        raise ExtensionError(
            f"The {self.name} extension does not accept external events", status_code=400
        )
