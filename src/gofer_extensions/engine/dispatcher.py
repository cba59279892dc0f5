"""Dispatcher — the sink event sources fire into."""

from __future__ import annotations

import asyncio

import structlog

from gofer_extensions.api.host_client import HostClient, HostError, HostHTTPError
from gofer_extensions.models.run import StartedRun
from gofer_extensions.models.subscription import Subscription
from gofer_extensions.plugins.protocols import PostDispatch

log = structlog.get_logger()


class Dispatcher:
    """Turns firings into host run starts.

    Each firing is independent: a failure is logged with the subscription's
    key and the event is dropped. Post-dispatch callbacks run as detached tasks
    that are cancelled on ``close()``.
    """

    def __init__(self, host: HostClient, source_name: str = "") -> None:
        self._host = host
        self._source_name = source_name
        self._tasks: set[asyncio.Task] = set()

    @property
    def host(self) -> HostClient:
        return self._host

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def fire(
        self,
        subscription: Subscription,
        variables: dict[str, str],
        post_dispatch: PostDispatch | None = None,
    ) -> StartedRun | None:
        key = subscription.key
        reason = f"Subscription '{key.subscription_id}' fired"
        if self._source_name:
            reason = f"{self._source_name} subscription '{key.subscription_id}' fired"

        try:
            started = await self._host.start_run(
                key.namespace_id, key.pipeline_id, dict(variables), reason=reason
            )
        except HostHTTPError as e:
            log.error(
                "could not start new run; received non 2xx status code",
                status_code=e.status_code,
                **key.log_fields(),
            )
            return None
        except HostError as e:
            log.error("could not start new run", error=str(e), **key.log_fields())
            return None

        log.info("started new run", run_id=started.run_id, **key.log_fields())

        if post_dispatch is not None:
            task = asyncio.create_task(self._run_post_dispatch(subscription, post_dispatch, started))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return started

    async def _run_post_dispatch(
        self, subscription: Subscription, callback: PostDispatch, started: StartedRun
    ) -> None:
        try:
            await callback(started)
        except asyncio.CancelledError:
            log.info("post-dispatch callback cancelled", run_id=started.run_id, **subscription.key.log_fields())
            raise
        except Exception:
            log.exception(
                "post-dispatch callback failed", run_id=started.run_id, **subscription.key.log_fields()
            )

    async def close(self) -> None:
        """Cancel outstanding post-dispatch callbacks and wait for them to exit."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
