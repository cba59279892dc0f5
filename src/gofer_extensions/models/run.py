from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class RunState(StrEnum):
    UNKNOWN = "unknown"
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"

    @classmethod
    def parse(cls, value: Any) -> "RunState":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


class RunStatus(StrEnum):
    UNKNOWN = "unknown"
    FAILED = "failed"
    SUCCESSFUL = "successful"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> "RunStatus":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class StartedRun:
    """Result of asking the host to start a run."""

    namespace_id: str
    pipeline_id: str
    run_id: int
    status_code: int
    body: dict[str, Any]


@dataclass(frozen=True)
class Run:
    """The subset of a host run the extensions care about."""

    namespace_id: str
    pipeline_id: str
    run_id: int
    state: RunState
    status: RunStatus
    started_ms: int = 0
    ended_ms: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.state == RunState.COMPLETE


@dataclass(frozen=True)
class HostSubscription:
    """A subscription record as the host reports it."""

    namespace_id: str
    pipeline_id: str
    subscription_id: str
    settings: dict[str, str]
