"""ExtensionHarness — hosts one event source and answers the host's lifecycle calls."""

from __future__ import annotations

import asyncio
import tempfile
from enum import StrEnum
from pathlib import Path

import structlog

from gofer_extensions.api.host_client import HostClient, HostError
from gofer_extensions.api.models import InfoResponse
from gofer_extensions.config.system import SystemConfig
from gofer_extensions.engine.dispatcher import Dispatcher
from gofer_extensions.engine.registry import AlreadyExistsError
from gofer_extensions.errors import ExtensionError
from gofer_extensions.models.subscription import SubscriptionKey
from gofer_extensions.plugins.protocols import EventSource

log = structlog.get_logger()

SHUTDOWN_TIMEOUT = 15.0
LISTENER_POLL_INTERVAL = 0.01


class HarnessState(StrEnum):
    LOADING = "loading"
    RESTORING = "restoring"
    SERVING = "serving"
    DRAINING = "draining"
    EXITED = "exited"


class StartupError(Exception):
    """The extension could not finish booting."""


class RestoreError(StartupError):
    """The host's subscription set could not be replayed at boot."""


class ExtensionHarness:
    """Owns the registry, dispatcher, event source and HTTP server of one extension."""

    def __init__(
        self,
        config: SystemConfig,
        source: EventSource,
        host: HostClient | None = None,
    ) -> None:
        self.config = config
        self.source = source
        self.host = host or HostClient.from_config(config)
        self.registry = source.create_registry()
        self.dispatcher = Dispatcher(self.host, source.name)
        self.state = HarnessState.LOADING
        self._stop_event = asyncio.Event()
        self._http_server = None
        self._http_task: asyncio.Task | None = None
        self._tls_dir: tempfile.TemporaryDirectory | None = None

    @property
    def accepting_firings(self) -> bool:
        return self.state == HarnessState.SERVING

    @property
    def shutdown_requested(self) -> bool:
        return self._stop_event.is_set()

    # --- Subscriptions ---

    def subscribe(self, key: SubscriptionKey, params: dict[str, str]) -> bool:
        """Validate and register a subscription. Returns False if it already existed.

        Raises ``SubscriptionValidationError`` when the source rejects the params.
        """
        subscription = self.source.build_subscription(key, dict(params))
        try:
            self.registry.insert(subscription)
        except AlreadyExistsError:
            log.debug("subscription already registered", **key.log_fields())
            return False
        log.info("subscription registered", **key.log_fields())
        return True

    def unsubscribe(self, key: SubscriptionKey) -> bool:
        removed = self.registry.remove(key)
        if removed:
            log.info("subscription removed", **key.log_fields())
        else:
            log.debug("subscription not found for removal", **key.log_fields())
        return removed

    async def restore(self) -> int:
        """Replay the host's subscriptions through ``subscribe``. Returns the count."""
        try:
            records = await self.host.list_subscriptions(self.config.extension_id)
        except HostError as e:
            raise RestoreError(f"could not query subscriptions from Gofer host: {e}") from e

        for record in records:
            key = SubscriptionKey(record.namespace_id, record.pipeline_id, record.subscription_id)
            try:
                self.subscribe(key, record.settings)
            except ExtensionError as e:
                raise RestoreError(f"could not restore subscription '{key}': {e.message}") from e
        log.info("subscriptions restored", count=len(records))
        return len(records)

    # --- Views ---

    def info(self) -> InfoResponse:
        return InfoResponse(
            extension_id=self.config.extension_id,
            documentation=self.source.documentation(),
        )

    def debug_view(self) -> dict:
        return {
            "registered_pipelines": [str(key) for key in self.registry.keys()],
            "config": self.config.public_view(),
        }

    # --- Lifecycle ---

    async def start(self, serve_http: bool = True) -> None:
        """Boot: bind the listener, restore subscriptions, then start the source.

        Raises ``StartupError`` if the listener does not bind or restoration
        fails; the harness is then exited.
        """
        log.info("extension starting", source=self.source.name)
        self.state = HarnessState.RESTORING

        try:
            if serve_http:
                await self._start_http_server()
            await self.restore()
        except StartupError:
            await self._force_stop()
            raise

        await self.source.start(self.registry, self.dispatcher)
        self.state = HarnessState.SERVING
        log.info("extension ready", subscriptions=len(self.registry))

    def request_shutdown(self) -> None:
        """Ask a running harness to shut down. Safe to call more than once."""
        if not self._stop_event.is_set():
            log.info("shutdown requested")
        self._stop_event.set()

    async def wait_for_shutdown(self) -> None:
        await self._stop_event.wait()

    async def run(self) -> None:
        """Start, serve until shutdown is requested, then drain."""
        await self.start()
        try:
            await self.wait_for_shutdown()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Drain within ``SHUTDOWN_TIMEOUT`` seconds, then cancel what remains."""
        if self.state == HarnessState.EXITED:
            return
        log.info("extension shutting down")
        self.state = HarnessState.DRAINING
        self._stop_event.set()

        try:
            await asyncio.wait_for(self._drain(), timeout=SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            log.warning("graceful shutdown timed out; cancelling in-flight work")
        await self._force_stop()
        log.info("extension stopped")

    async def _drain(self) -> None:
        if self._http_server is not None:
            self._http_server.should_exit = True
        # Post-dispatch callbacks observe shutdown rather than being drained.
        await self.dispatcher.close()
        await self.source.stop()
        if self._http_task is not None:
            await self._http_task

    async def _force_stop(self) -> None:
        if self._http_server is not None:
            self._http_server.force_exit = True
            self._http_server.should_exit = True
        if self._http_task is not None and not self._http_task.done():
            self._http_task.cancel()
            await asyncio.gather(self._http_task, return_exceptions=True)
        self._http_server = None
        self._http_task = None

        await self.dispatcher.close()
        await self.host.close()
        if self._tls_dir is not None:
            self._tls_dir.cleanup()
            self._tls_dir = None
        self.state = HarnessState.EXITED

    async def _start_http_server(self) -> None:
        import uvicorn

        from gofer_extensions.api.app import create_extension_app

        app = create_extension_app(self)
        ssl_kwargs: dict[str, str] = {}
        if self.config.use_tls:
            self._tls_dir = tempfile.TemporaryDirectory(prefix="gofer-extension-")
            cert, key = self.config.write_tls_files(Path(self._tls_dir.name))
            ssl_kwargs = {"ssl_certfile": str(cert), "ssl_keyfile": str(key)}

        config = uvicorn.Config(
            app,
            host=self.config.bind_host,
            port=self.config.bind_port,
            log_level="warning",
            access_log=False,
            timeout_graceful_shutdown=int(SHUTDOWN_TIMEOUT),
            **ssl_kwargs,
        )
        self._http_server = uvicorn.Server(config)
        self._http_task = asyncio.create_task(self._http_server.serve())
        # A listener that exits on its own (signal, bind failure) takes the process with it.
        self._http_task.add_done_callback(lambda _: self.request_shutdown())
        while not self._http_server.started:
            if self._http_task.done():
                raise StartupError(
                    f"http listener on {self.config.bind_address} exited before binding"
                )
            await asyncio.sleep(LISTENER_POLL_INTERVAL)
        log.info(
            "extension http api started",
            host=self.config.bind_host,
            port=self.config.bind_port,
            tls=self.config.use_tls,
        )
