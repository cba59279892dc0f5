"""HTTP client for the calls an extension makes back into the Gofer host."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from gofer_extensions.config.system import SystemConfig
from gofer_extensions.models.run import HostSubscription, Run, RunState, RunStatus, StartedRun

log = structlog.get_logger()

API_VERSION = "v0"


class HostError(Exception):
    """Base for failures talking to the Gofer host."""


class HostTransportError(HostError):
    """The host could not be reached (connection refused, timeout, TLS)."""


class HostHTTPError(HostError):
    """The host answered with a non-2xx status."""

    def __init__(self, method: str, path: str, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"{method} {path} returned {status_code}: {body[:200]}")


class HostResponseError(HostError):
    """The host answered 2xx with a body that could not be understood."""


class HostClient:
    """Authenticated client for the host's extension-facing API."""

    def __init__(
        self,
        base_url: str,
        token: str,
        extension_id: str,
        verify: bool = True,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.extension_id = extension_id
        headers = {
            "Authorization": f"Bearer {token}",
            "api-version": API_VERSION,
        }
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            verify=verify,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls, config: SystemConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> HostClient:
        return cls(
            config.host_url,
            config.shared_secret,
            config.extension_id,
            verify=not config.skip_tls_verify,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> tuple[int, dict]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise HostTransportError(f"{method} {path}: {e}") from e

        if not response.is_success:
            raise HostHTTPError(method, path, response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise HostResponseError(f"{method} {path}: body is not JSON") from e
        if not isinstance(data, dict):
            raise HostResponseError(f"{method} {path}: expected a JSON object")
        return response.status_code, data

    async def list_subscriptions(self, extension_id: str | None = None) -> list[HostSubscription]:
        """All pipeline subscriptions the host holds for this extension."""
        ext = extension_id or self.extension_id
        _, data = await self._request("GET", f"/api/extensions/{ext}/subscriptions")
        try:
            return [
                HostSubscription(
                    namespace_id=item["namespace_id"],
                    pipeline_id=item["pipeline_id"],
                    subscription_id=item["subscription_id"],
                    settings={str(k): str(v) for k, v in (item.get("settings") or {}).items()},
                )
                for item in data.get("subscriptions") or []
            ]
        except (KeyError, TypeError, AttributeError) as e:
            raise HostResponseError(f"malformed subscription list: {e}") from e

    async def start_run(
        self,
        namespace_id: str,
        pipeline_id: str,
        variables: dict[str, str],
        reason: str = "",
    ) -> StartedRun:
        """Start a run of a pipeline with ``variables`` passed through verbatim."""
        body = {
            "variables": variables,
            "initiator": {
                "kind": "extension",
                "name": self.extension_id,
                "reason": reason,
            },
        }
        status_code, data = await self._request(
            "POST", f"/api/namespaces/{namespace_id}/pipelines/{pipeline_id}/runs", json=body
        )
        try:
            run_id = int(data["run"]["run_id"])
        except (KeyError, TypeError, ValueError) as e:
            raise HostResponseError(f"start run response missing run id: {e}") from e
        return StartedRun(
            namespace_id=namespace_id,
            pipeline_id=pipeline_id,
            run_id=run_id,
            status_code=status_code,
            body=data,
        )

    async def get_run(self, namespace_id: str, pipeline_id: str, run_id: int) -> Run:
        _, data = await self._request(
            "GET", f"/api/namespaces/{namespace_id}/pipelines/{pipeline_id}/runs/{run_id}"
        )
        run = data.get("run")
        if not isinstance(run, dict):
            raise HostResponseError("get run response missing 'run'")
        try:
            return Run(
                namespace_id=namespace_id,
                pipeline_id=pipeline_id,
                run_id=int(run.get("run_id", run_id)),
                state=RunState.parse(run.get("state")),
                status=RunStatus.parse(run.get("status")),
                started_ms=int(run.get("started") or 0),
                ended_ms=int(run.get("ended") or 0),
            )
        except (TypeError, ValueError) as e:
            raise HostResponseError(f"malformed run: {e}") from e
