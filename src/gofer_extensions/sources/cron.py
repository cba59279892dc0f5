"""Cron source: fires a pipeline whenever the current minute is inside its cron window."""

from __future__ import annotations

from gofer_extensions.api.models import Documentation, Parameter
from gofer_extensions.config.system import lookup_param
from gofer_extensions.engine.timeframe import CronTimeframe
from gofer_extensions.errors import SubscriptionValidationError
from gofer_extensions.models.subscription import Subscription, SubscriptionKey
from gofer_extensions.sources.timed import TimedSource

PARAM_EXPRESSION = "expression"


class CronSource(TimedSource):
    name = "cron"

    def documentation(self) -> Documentation:
        return Documentation(
            body=(
                "Starts a run every minute that falls inside the subscription's cron expression. "
                "Expressions take the standard five fields (minute hour day-of-month month "
                "day-of-week) and an optional sixth field restricting the year."
            ),
            pipeline_subscription_params=[
                Parameter(
                    key=PARAM_EXPRESSION,
                    required=True,
                    documentation=(
                        "The cron expression to run on. Ex: '*/5 * * * *' or '0 9 * * mon-fri 2025'."
                    ),
                )
            ],
            config_params=[],
        )

    def build_subscription(self, key: SubscriptionKey, params: dict[str, str]) -> Subscription:
        expression = lookup_param(params, PARAM_EXPRESSION)
        if not expression:
            raise SubscriptionValidationError(f"Required parameter '{PARAM_EXPRESSION}' missing")
        try:
            timeframe = CronTimeframe.parse(expression)
        except ValueError as e:
            raise SubscriptionValidationError(
                f"Could not parse expression '{expression}'; {e}"
            ) from e
        return Subscription(key=key, condition=timeframe, params=params)
