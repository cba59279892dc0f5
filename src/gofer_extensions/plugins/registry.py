"""Source registry — built-in event sources plus those discovered via entry points."""

from __future__ import annotations

import importlib.metadata

import structlog

from gofer_extensions.api.host_client import HostClient
from gofer_extensions.config.system import SystemConfig
from gofer_extensions.plugins.protocols import EventSource, SourceFactory
from gofer_extensions.sources.cron import CronSource
from gofer_extensions.sources.github import GithubSource
from gofer_extensions.sources.interval import IntervalSource

log = structlog.get_logger()

ENTRY_POINT_GROUP = "gofer_extensions.event_sources"

BUILTIN_SOURCES: dict[str, SourceFactory] = {
    "cron": CronSource,
    "interval": IntervalSource,
    "github": GithubSource,
}


class SourceRegistry:
    """Discovers and stores event source factories by name."""

    def __init__(self) -> None:
        self.sources: dict[str, SourceFactory] = dict(BUILTIN_SOURCES)
        self.origins: dict[str, str] = {name: "builtin" for name in BUILTIN_SOURCES}

    def discover(self) -> None:
        """Load source factories from installed package entry points."""
        for ep in importlib.metadata.entry_points(group=ENTRY_POINT_GROUP):
            try:
                factory = ep.load()
            except Exception:
                log.exception("failed to load event source", entry_point=ep.name)
                continue
            if ep.name in BUILTIN_SOURCES:
                log.warning("event source shadows a builtin; ignoring", name=ep.name)
                continue
            self.sources[ep.name] = factory
            self.origins[ep.name] = ep.value
            log.info("event source loaded", name=ep.name)

    def register(self, name: str, factory: SourceFactory) -> None:
        """Manually register a source factory (useful for testing)."""
        self.sources[name] = factory
        self.origins[name] = "manual"

    def names(self) -> list[str]:
        return sorted(self.sources)

    def build(self, name: str, config: SystemConfig, host: HostClient) -> EventSource:
        """Instantiate the named source. Raises ``KeyError`` if unknown."""
        factory = self.sources[name]
        source = factory(config, host)
        if not isinstance(source, EventSource):
            raise TypeError(f"event source '{name}' does not implement the EventSource protocol")
        return source
