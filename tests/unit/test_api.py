"""Tests for the lifecycle HTTP API."""

import json

import httpx
import pytest

from gofer_extensions.api.app import create_extension_app, openapi_document
from gofer_extensions.engine.harness import ExtensionHarness, HarnessState
from gofer_extensions.sources.github import GithubSource, compute_signature

WEBHOOK_SECRET = "whsec"
AUTH = {"Authorization": "Bearer test-secret"}
PUSH_SUB = {
    "namespace_id": "default",
    "pipeline_id": "build",
    "pipeline_subscription_id": "on-push",
    "pipeline_subscription_params": {"event_filter": "push", "repository": "org/repo"},
}


@pytest.fixture
async def harness(config_factory, fake_host):
    config = config_factory(extras={"app_webhook_secret": WEBHOOK_SECRET})
    h = ExtensionHarness(config, GithubSource(config), host=fake_host.client(config))
    await h.start(serve_http=False)
    yield h
    await h.shutdown()


@pytest.fixture
async def client(harness):
    transport = httpx.ASGITransport(app=create_extension_app(harness))
    async with httpx.AsyncClient(transport=transport, base_url="http://extension") as c:
        yield c


class TestAuth:
    @pytest.mark.parametrize("path", ["/health", "/api/health"])
    async def test_health_unauthenticated(self, client, path) -> None:
        response = await client.get(path)
        assert response.status_code == 204

    async def test_missing_header(self, client) -> None:
        response = await client.get("/info")
        assert response.status_code == 400
        body = response.json()
        assert "Authorization header" in body["message"]
        assert body["request_id"]

    async def test_wrong_scheme(self, client) -> None:
        response = await client.get("/info", headers={"Authorization": "Token test-secret"})
        assert response.status_code == 400

    async def test_wrong_secret(self, client) -> None:
        response = await client.get("/info", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    async def test_request_id_echoed(self, client) -> None:
        response = await client.get("/info", headers={**AUTH, "X-Request-Id": "req-123"})
        assert response.headers["X-Request-Id"] == "req-123"


class TestRoutes:
    async def test_health_while_draining(self, client, harness) -> None:
        harness.state = HarnessState.DRAINING
        response = await client.get("/health")
        assert response.status_code == 503

    async def test_info(self, client) -> None:
        response = await client.get("/info", headers=AUTH)
        assert response.status_code == 200
        body = response.json()
        assert body["extension_id"] == "test_ext"
        keys = [p["key"] for p in body["documentation"]["pipeline_subscription_params"]]
        assert keys == ["event_filter", "repository"]

    async def test_api_prefix(self, client) -> None:
        response = await client.get("/api/info", headers=AUTH)
        assert response.status_code == 200

    async def test_subscribe_and_debug(self, client) -> None:
        response = await client.post("/subscribe", headers=AUTH, json=PUSH_SUB)
        assert response.status_code == 204

        debug = (await client.get("/debug", headers=AUTH)).json()
        assert debug["registered_pipelines"] == ["default/build/on-push"]
        assert "test-secret" not in json.dumps(debug)
        assert WEBHOOK_SECRET not in json.dumps(debug)

    async def test_duplicate_subscribe_is_noop(self, client, harness) -> None:
        await client.post("/subscribe", headers=AUTH, json=PUSH_SUB)
        response = await client.post("/subscribe", headers=AUTH, json=PUSH_SUB)
        assert response.status_code == 204
        assert len(harness.registry) == 1

    async def test_subscribe_invalid_params(self, client, harness) -> None:
        body = {**PUSH_SUB, "pipeline_subscription_params": {"repository": "org/repo"}}
        response = await client.post("/subscribe", headers=AUTH, json=body)
        assert response.status_code == 400
        payload = response.json()
        assert "event_filter" in payload["message"]
        assert payload["request_id"]
        assert len(harness.registry) == 0

    async def test_subscribe_malformed_body(self, client) -> None:
        response = await client.post("/subscribe", headers=AUTH, json={"namespace_id": "default"})
        assert response.status_code == 400
        assert response.json()["message"].startswith("Malformed request")

    async def test_unsubscribe(self, client, harness) -> None:
        await client.post("/subscribe", headers=AUTH, json=PUSH_SUB)
        body = {k: v for k, v in PUSH_SUB.items() if k != "pipeline_subscription_params"}
        response = await client.request("DELETE", "/subscribe", headers=AUTH, json=body)
        assert response.status_code == 201
        assert len(harness.registry) == 0

        response = await client.request("DELETE", "/subscribe", headers=AUTH, json=body)
        assert response.status_code == 201

    async def test_shutdown(self, client, harness) -> None:
        response = await client.post("/shutdown", headers=AUTH)
        assert response.status_code == 204
        assert harness.shutdown_requested

    async def test_unknown_route(self, client) -> None:
        response = await client.get("/nope", headers=AUTH)
        assert response.status_code == 404
        assert set(response.json()) == {"message", "request_id"}


class TestExternalEvent:
    def _event(self, secret: str = WEBHOOK_SECRET) -> dict:
        body = json.dumps({"repository": {"full_name": "org/repo"}, "ref": "refs/heads/main"}).encode()
        return {
            "headers": {
                "X-GitHub-Event": "push",
                "X-Hub-Signature-256": compute_signature(secret, body),
            },
            "body": list(body),
        }

    async def test_starts_run(self, client, fake_host) -> None:
        await client.post("/subscribe", headers=AUTH, json=PUSH_SUB)
        response = await client.post("/external-event", headers=AUTH, json=self._event())
        assert response.status_code == 204

        assert len(fake_host.started) == 1
        started = fake_host.started[0]
        assert started["pipeline"] == "build"
        assert started["variables"]["EVENT"] == "push"
        assert started["variables"]["REPOSITORY"] == "org/repo"
        assert started["initiator"]["kind"] == "extension"

    async def test_bad_signature(self, client, fake_host) -> None:
        await client.post("/subscribe", headers=AUTH, json=PUSH_SUB)
        response = await client.post("/external-event", headers=AUTH, json=self._event("wrong"))
        assert response.status_code == 400
        assert fake_host.started == []

    async def test_host_failure_still_acknowledged(self, client, fake_host) -> None:
        fake_host.fail_start_for.add("build")
        await client.post("/subscribe", headers=AUTH, json=PUSH_SUB)
        response = await client.post("/external-event", headers=AUTH, json=self._event())
        assert response.status_code == 204

    async def test_rejected_when_not_serving(self, client, harness) -> None:
        harness.state = HarnessState.DRAINING
        response = await client.post("/external-event", headers=AUTH, json=self._event())
        assert response.status_code == 503


class TestOpenAPI:
    def test_document_lists_lifecycle_routes(self) -> None:
        paths = openapi_document()["paths"]
        for path in ("/health", "/info", "/debug", "/subscribe", "/shutdown", "/external-event"):
            assert path in paths
        assert "/api/info" not in paths
