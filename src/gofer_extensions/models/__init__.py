from gofer_extensions.models.run import (
    HostSubscription,
    Run,
    RunState,
    RunStatus,
    StartedRun,
)
from gofer_extensions.models.subscription import (
    Subscription,
    SubscriptionKey,
    TimePredicate,
    WebhookFilter,
)

__all__ = [
    "HostSubscription",
    "Run",
    "RunState",
    "RunStatus",
    "StartedRun",
    "Subscription",
    "SubscriptionKey",
    "TimePredicate",
    "WebhookFilter",
]
