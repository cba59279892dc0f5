"""Shared fixtures: a plaintext config, a recording sink and a fake Gofer host."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from gofer_extensions.api.host_client import HostClient
from gofer_extensions.config.system import SystemConfig
from gofer_extensions.models.run import StartedRun
from gofer_extensions.models.subscription import Subscription

SECRET = "test-secret"


def make_config(**overrides: Any) -> SystemConfig:
    values: dict[str, Any] = {
        "extension_id": "test_ext",
        "shared_secret": SECRET,
        "use_tls": False,
        "host_address": "gofer.test:8080",
    }
    values.update(overrides)
    return SystemConfig(**values)


class RecordingSink:
    """Sink that records firings and hands out increasing run ids."""

    def __init__(self) -> None:
        self.fired: list[tuple[Subscription, dict[str, str]]] = []
        self.post_dispatches: list = []

    async def fire(self, subscription, variables, post_dispatch=None):
        self.fired.append((subscription, dict(variables)))
        if post_dispatch is not None:
            self.post_dispatches.append(post_dispatch)
        key = subscription.key
        return StartedRun(key.namespace_id, key.pipeline_id, len(self.fired), 201, {})


class FakeHost:
    """In-memory stand-in for the Gofer host API, served over httpx.MockTransport."""

    def __init__(self) -> None:
        self.subscriptions: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.started: list[dict[str, Any]] = []
        self.run_states: list[dict[str, Any]] = []
        self.fail_start_for: set[str] = set()
        self.subscriptions_status = 200
        self.next_run_id = 1

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        parts = path.strip("/").split("/")

        if path.endswith("/subscriptions") and request.method == "GET":
            if self.subscriptions_status != 200:
                return httpx.Response(self.subscriptions_status, text="host unavailable")
            return httpx.Response(200, json={"subscriptions": self.subscriptions})

        if request.method == "POST" and path.endswith("/runs"):
            pipeline = parts[4]
            if pipeline in self.fail_start_for:
                return httpx.Response(500, json={"message": "boom"})
            body = json.loads(request.content)
            self.started.append({"namespace": parts[2], "pipeline": pipeline, **body})
            run_id = self.next_run_id
            self.next_run_id += 1
            return httpx.Response(201, json={"run": {"run_id": run_id}})

        if request.method == "GET" and "/runs/" in path:
            if not self.run_states:
                return httpx.Response(404, json={"message": "not found"})
            state = self.run_states.pop(0) if len(self.run_states) > 1 else self.run_states[0]
            return httpx.Response(200, json={"run": {"run_id": int(parts[-1]), **state}})

        return httpx.Response(404, json={"message": f"no route for {path}"})

    def client(self, config: SystemConfig | None = None) -> HostClient:
        return HostClient.from_config(config or make_config(), transport=httpx.MockTransport(self.handler))


@pytest.fixture
def config() -> SystemConfig:
    return make_config()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def config_factory():
    return make_config


@pytest.fixture(scope="session")
def rsa_keypair() -> tuple[str, str]:
    """Self-signed (cert_pem, key_pem) pair."""
    from datetime import datetime, timedelta, timezone

    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import rsa
    from cryptography.x509.oid import NameOID

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode()
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    ).decode()
    return cert_pem, key_pem
