from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, order=True)
class SubscriptionKey:
    """Primary key of a pipeline subscription."""

    namespace_id: str
    pipeline_id: str
    subscription_id: str

    def __str__(self) -> str:
        return f"{self.namespace_id}/{self.pipeline_id}/{self.subscription_id}"

    def log_fields(self) -> dict[str, str]:
        return {
            "namespace_id": self.namespace_id,
            "pipeline_id": self.pipeline_id,
            "pipeline_subscription_id": self.subscription_id,
        }


@runtime_checkable
class TimePredicate(Protocol):
    """Membership test over wall-clock time."""

    def admits(self, now: datetime) -> bool: ...


@dataclass(frozen=True)
class WebhookFilter:
    """Event/repository/action combination a webhook subscription listens for."""

    event: str
    repository: str
    actions: frozenset[str]

    def matches_action(self, action: str) -> bool:
        if not action:
            return True
        return "any" in self.actions or action.lower() in self.actions


@dataclass(frozen=True)
class Subscription:
    """A pipeline's standing request for an extension to start runs on its behalf."""

    key: SubscriptionKey
    condition: TimePredicate | WebhookFilter
    params: dict[str, str] = field(default_factory=dict, compare=False)
