"""Plugin protocol definitions — the contract between the harness and an event source.

Event sources implement these protocols (no base class required) and register
them via Python entry points in their ``pyproject.toml``::

    [project.entry-points."gofer_extensions.event_sources"]
    gitlab = "my_package.sources:GitlabSource"

The entry point must name a callable taking ``(config, host)`` and returning
an object satisfying ``EventSource``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from gofer_extensions.models.run import StartedRun
from gofer_extensions.models.subscription import Subscription, SubscriptionKey

if TYPE_CHECKING:
    from gofer_extensions.api.host_client import HostClient
    from gofer_extensions.api.models import Documentation
    from gofer_extensions.config.system import SystemConfig
    from gofer_extensions.engine.registry import SubscriptionRegistry

PostDispatch = Callable[[StartedRun], Awaitable[None]]


@runtime_checkable
class Sink(Protocol):
    """Where an event source sends firings."""

    async def fire(
        self,
        subscription: Subscription,
        variables: dict[str, str],
        post_dispatch: PostDispatch | None = None,
    ) -> StartedRun | None:
        """Ask the host to start a run for ``subscription``.

        Returns ``None`` when the host could not be reached or refused; the
        failure is logged by the sink. ``post_dispatch`` runs detached once the
        run has started.
        """
        ...


@runtime_checkable
class EventSource(Protocol):
    """A pluggable producer of firings.

    Attributes:
        name: Unique identifier used on the command line (e.g. ``"cron"``).
    """

    name: str

    def documentation(self) -> Documentation:
        """Describe the subscription and config parameters this source reads."""
        ...

    def create_registry(self) -> SubscriptionRegistry:
        """Return an empty registry shaped for this source's lookups."""
        ...

    def build_subscription(
        self, key: SubscriptionKey, params: dict[str, str]
    ) -> Subscription:
        """Validate subscription params. Raise ``SubscriptionValidationError`` on failure."""
        ...

    async def start(self, registry: SubscriptionRegistry, sink: Sink) -> None:
        """Begin producing firings into ``sink``."""
        ...

    async def stop(self) -> None:
        """Stop producing firings and release resources."""
        ...

    async def external_event(self, headers: dict[str, str], body: bytes) -> None:
        """Handle an external request forwarded by the host.

        Raise an ``ExtensionError`` subclass to reject it.
        """
        ...


SourceFactory = Callable[["SystemConfig", "HostClient"], EventSource]
