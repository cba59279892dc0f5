"""Interval source: fires a pipeline every fixed duration."""

from __future__ import annotations

from datetime import timedelta

from gofer_extensions.api.host_client import HostClient
from gofer_extensions.api.models import Documentation, Parameter
from gofer_extensions.config.duration import parse_duration
from gofer_extensions.config.system import ConfigError, SystemConfig, lookup_param
from gofer_extensions.engine.timeframe import IntervalTimer
from gofer_extensions.errors import SubscriptionValidationError
from gofer_extensions.models.subscription import Subscription, SubscriptionKey
from gofer_extensions.sources.timed import TimedSource

PARAM_EVERY = "every"
CONFIG_MIN_DURATION = "min_duration"
DEFAULT_MIN_DURATION = timedelta(minutes=1)


class IntervalSource(TimedSource):
    name = "interval"

    def __init__(self, config: SystemConfig, host: HostClient | None = None) -> None:
        super().__init__(config, host)
        raw = config.extra(CONFIG_MIN_DURATION)
        self.min_duration = DEFAULT_MIN_DURATION
        if raw:
            try:
                self.min_duration = parse_duration(raw)
            except ValueError as e:
                raise ConfigError([f"GOFER_EXTENSION_SYSTEM_MIN_DURATION: {e}"]) from e

    def documentation(self) -> Documentation:
        return Documentation(
            body="Starts a run each time the subscription's interval elapses.",
            pipeline_subscription_params=[
                Parameter(
                    key=PARAM_EVERY,
                    required=True,
                    documentation=(
                        "Time between runs as a duration string. Ex: '1m', '60s', '3h', '3m30s'."
                    ),
                )
            ],
            config_params=[
                Parameter(
                    key=CONFIG_MIN_DURATION,
                    required=False,
                    documentation="The shortest interval a subscription may ask for. Defaults to 1m.",
                )
            ],
        )

    def build_subscription(self, key: SubscriptionKey, params: dict[str, str]) -> Subscription:
        every = lookup_param(params, PARAM_EVERY)
        if not every:
            raise SubscriptionValidationError(f"Required parameter '{PARAM_EVERY}' missing")
        try:
            duration = parse_duration(every)
        except ValueError as e:
            raise SubscriptionValidationError(f"Could not parse interval '{every}'; {e}") from e
        if duration < self.min_duration:
            raise SubscriptionValidationError(
                f"Durations cannot be less than {self.min_duration.total_seconds():g}s"
            )
        return Subscription(key=key, condition=IntervalTimer(every=duration), params=params)
