"""GitHub source: starts runs from GitHub App webhooks forwarded by the host."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import re
from datetime import timedelta
from urllib.parse import parse_qs

import structlog
from pydantic import ValidationError

from gofer_extensions.api.github_client import DEFAULT_API_URL, GithubAppClient
from gofer_extensions.api.host_client import HostClient
from gofer_extensions.api.models import Documentation, Parameter
from gofer_extensions.config.duration import parse_duration
from gofer_extensions.config.system import ENV_PREFIX, ConfigError, SystemConfig, lookup_param
from gofer_extensions.engine.registry import (
    PULL_REQUEST_WITH_CHECK,
    SubscriptionRegistry,
    WebhookRegistry,
)
from gofer_extensions.errors import (
    ExtensionError,
    PayloadError,
    SignatureError,
    SubscriptionValidationError,
)
from gofer_extensions.models.subscription import Subscription, SubscriptionKey, WebhookFilter
from gofer_extensions.plugins.protocols import Sink
from gofer_extensions.sources.github_events import EVENTS, PullRequestEvent, model_for
from gofer_extensions.sources.reporter import CheckReporter

log = structlog.get_logger()

PARAM_EVENT_FILTER = "event_filter"
PARAM_REPOSITORY = "repository"

CONFIG_APP_ID = "app_id"
CONFIG_APP_INSTALLATION = "app_installation"
CONFIG_APP_KEY = "app_key"
CONFIG_APP_WEBHOOK_SECRET = "app_webhook_secret"
CONFIG_GITHUB_API_URL = "github_api_url"
CONFIG_REPORT_POLL_INTERVAL = "report_poll_interval"

ANY_ACTION = "any"

_REPOSITORY = re.compile(r"[^/]+/[^/]+")

_APP_DOC = (
    "General settings for all Github apps: https://docs.github.com/en/developers/apps/"
    "getting-started-with-apps/setting-up-your-development-environment-to-create-a-github-app"
)


def parse_event_filter(value: str) -> tuple[str, list[str]]:
    """Split ``<event>/<action>,<action>...`` into the event and lowercased actions."""
    event, _, action_str = value.strip().partition("/")
    actions = [a.strip().lower() for a in action_str.split(",") if a.strip()]
    return event.strip().lower(), actions


def format_event_filter(event: str, actions: frozenset[str] | list[str]) -> str:
    """Inverse of ``parse_event_filter`` for a normalised action set."""
    named = sorted(a for a in actions if a != ANY_ACTION)
    if not named:
        return event
    return f"{event}/{','.join(named)}"


def compute_signature(secret: str, body: bytes, algorithm: str = "sha256") -> str:
    """Signature header value GitHub would send for ``body``."""
    digest = hmac.new(secret.encode(), body, getattr(hashlib, algorithm)).hexdigest()
    return f"{algorithm}={digest}"


def verify_signature(secret: str, headers: dict[str, str], body: bytes) -> None:
    """Raise ``SignatureError`` unless ``body`` carries a valid webhook signature.

    ``headers`` must already be lower-cased.
    """
    signature = headers.get("x-hub-signature-256")
    algorithm = "sha256"
    if not signature:
        signature = headers.get("x-hub-signature")
        algorithm = "sha1"
    if not signature:
        raise SignatureError("Could not validate external request payload; missing signature")

    prefix, _, _ = signature.partition("=")
    if prefix != algorithm:
        raise SignatureError("Could not validate external request payload; unsupported signature")

    expected = compute_signature(secret, body, algorithm)
    if not hmac.compare_digest(expected.encode(), signature.strip().encode()):
        raise SignatureError(
            "Could not validate external request payload; this may be an auth error"
        )


def _decode_payload(headers: dict[str, str], body: bytes) -> dict:
    content_type = headers.get("content-type", "").split(";")[0].strip().lower()
    raw: bytes | str = body
    if content_type == "application/x-www-form-urlencoded":
        form = parse_qs(body.decode("utf-8", errors="replace"))
        if "payload" not in form:
            raise PayloadError("Could not parse external request payload; form body has no 'payload'")
        raw = form["payload"][0]
    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise PayloadError(f"Could not parse external request payload: {e}") from e
    if not isinstance(data, dict):
        raise PayloadError("Could not parse external request payload: expected a JSON object")
    return data


class GithubSource:
    """Webhook-driven event source for GitHub App events."""

    name = "github"

    def __init__(self, config: SystemConfig, host: HostClient | None = None) -> None:
        self.config = config
        self._registry: WebhookRegistry | None = None
        self._sink: Sink | None = None

        self._webhook_secret = config.extra(CONFIG_APP_WEBHOOK_SECRET)
        if not self._webhook_secret:
            raise ConfigError([f"{ENV_PREFIX}APP_WEBHOOK_SECRET: required but missing"])

        self.github = self._build_github_client(config)
        self.reporter: CheckReporter | None = None
        if self.github is not None and host is not None:
            poll = config.extra(CONFIG_REPORT_POLL_INTERVAL, "1m")
            try:
                poll_interval = parse_duration(poll)
            except ValueError as e:
                raise ConfigError([f"{ENV_PREFIX}REPORT_POLL_INTERVAL: {e}"]) from e
            self.reporter = CheckReporter(
                host, self.github, config.host_url, poll_interval=max(poll_interval, timedelta(seconds=1))
            )
        elif self.github is None:
            log.info("github app credentials not configured; check run reporting disabled")

    @staticmethod
    def _build_github_client(config: SystemConfig) -> GithubAppClient | None:
        names = (CONFIG_APP_ID, CONFIG_APP_INSTALLATION, CONFIG_APP_KEY)
        values = {name: config.extra(name) for name in names}
        present = [name for name, value in values.items() if value]
        if not present:
            return None
        if len(present) != len(names):
            missing = [name for name in names if not values[name]]
            raise ConfigError(
                [f"{ENV_PREFIX}{name.upper()}: required when any GitHub App credential is set" for name in missing]
            )

        problems = []
        app_id = installation_id = 0
        try:
            app_id = int(values[CONFIG_APP_ID])
        except ValueError:
            problems.append(f"{ENV_PREFIX}APP_ID: malformed github app id")
        try:
            installation_id = int(values[CONFIG_APP_INSTALLATION])
        except ValueError:
            problems.append(f"{ENV_PREFIX}APP_INSTALLATION: malformed github installation id")
        key = ""
        try:
            key = base64.b64decode(values[CONFIG_APP_KEY], validate=True).decode()
        except (binascii.Error, UnicodeDecodeError):
            problems.append(f"{ENV_PREFIX}APP_KEY: could not decode base64 private key")
        if problems:
            raise ConfigError(problems)

        return GithubAppClient(
            app_id,
            installation_id,
            key,
            api_url=config.extra(CONFIG_GITHUB_API_URL, DEFAULT_API_URL),
        )

    def documentation(self) -> Documentation:
        app_params = [
            Parameter(key=name, required=False, documentation=_APP_DOC)
            for name in (CONFIG_APP_ID, CONFIG_APP_INSTALLATION, CONFIG_APP_KEY)
        ]
        return Documentation(
            body=(
                "Starts runs in response to GitHub webhooks. Subscribing with the event "
                "'pull_request_with_check' additionally reports each run's outcome back to the "
                "pull request as a check run; this needs the GitHub App credentials."
            ),
            pipeline_subscription_params=[
                Parameter(
                    key=PARAM_EVENT_FILTER,
                    required=True,
                    documentation=(
                        "The event/action combination the pipeline will be triggered upon, in the "
                        "form <event>/<action>,<action2>... Leaving out the actions triggers on any "
                        "action. Ex: 'pull_request/opened,synchronize' or 'push'."
                    ),
                ),
                Parameter(
                    key=PARAM_REPOSITORY,
                    required=True,
                    documentation=(
                        "The repository the pipeline will be alerted for, as "
                        "<organization>/<repository>. Ex: clintjedwards/gofer"
                    ),
                ),
            ],
            config_params=[
                *app_params,
                Parameter(key=CONFIG_APP_WEBHOOK_SECRET, required=True, documentation=_APP_DOC),
            ],
        )

    def create_registry(self) -> SubscriptionRegistry:
        return WebhookRegistry()

    def build_subscription(self, key: SubscriptionKey, params: dict[str, str]) -> Subscription:
        event_filter = lookup_param(params, PARAM_EVENT_FILTER)
        if not event_filter:
            raise SubscriptionValidationError(f"Required parameter '{PARAM_EVENT_FILTER}' missing")
        repository = lookup_param(params, PARAM_REPOSITORY)
        if not repository:
            raise SubscriptionValidationError(f"Required parameter '{PARAM_REPOSITORY}' missing")

        event, actions = parse_event_filter(event_filter)
        if event not in EVENTS:
            raise SubscriptionValidationError(
                f"Event '{event}' is not a valid event; must be one of: {', '.join(sorted(EVENTS))}"
            )
        repository = repository.strip()
        if not _REPOSITORY.fullmatch(repository):
            raise SubscriptionValidationError(
                f"Malformed repository '{repository}'; must be in the form <organization>/<repository>"
            )

        condition = WebhookFilter(
            event=event,
            repository=repository,
            actions=frozenset(actions) if actions else frozenset({ANY_ACTION}),
        )
        return Subscription(key=key, condition=condition, params=params)

    async def start(self, registry: SubscriptionRegistry, sink: Sink) -> None:
        if not isinstance(registry, WebhookRegistry):
            raise TypeError("github source needs a WebhookRegistry")
        self._registry = registry
        self._sink = sink

    async def stop(self) -> None:
        self._sink = None
        if self.github is not None:
            await self.github.close()

    async def external_event(self, headers: dict[str, str], body: bytes) -> None:
        if self._sink is None or self._registry is None:
            raise ExtensionError("Extension is not accepting events", status_code=503)
        log.debug("processing new webhook event")

        lowered = {k.lower(): v for k, v in headers.items()}
        verify_signature(self._webhook_secret, lowered, body)

        event = (lowered.get("x-github-event") or lowered.get("x-event-type") or "").strip().lower()
        model = model_for(event)
        if model is None:
            log.debug("event type not supported", event=event)
            return

        data = _decode_payload(lowered, body)
        try:
            payload = model.model_validate(data)
        except ValidationError as e:
            raise PayloadError(f"Could not process external request: {e.error_count()} invalid field(s)") from e

        action = payload.action or ""
        repository = payload.repository.full_name
        metadata = payload.metadata(event)
        matches = self._registry.lookup_webhook(event, repository, action)
        log.debug(
            "webhook matched subscriptions",
            event=event,
            repository=repository,
            action=action,
            matches=len(matches),
        )

        for sub in matches:
            post_dispatch = None
            if sub.condition.event == PULL_REQUEST_WITH_CHECK and isinstance(payload, PullRequestEvent):
                if self.reporter is not None:
                    post_dispatch = self.reporter.for_event(sub, payload)
                else:
                    log.warning("check run reporting not configured", **sub.key.log_fields())
            await self._sink.fire(sub, metadata, post_dispatch)
