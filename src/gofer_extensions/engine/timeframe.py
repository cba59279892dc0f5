"""Time predicates backing the time-driven event sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from croniter import croniter

MIN_YEAR = 1970
MAX_YEAR = 2199


def _parse_year_field(text: str) -> frozenset[int] | None:
    """Parse the optional year field. ``None`` means any year."""
    if text == "*":
        return None

    years: set[int] = set()
    for part in text.split(","):
        if not part:
            raise ValueError(f"empty element in year field {text!r}")
        rng, _, step_str = part.partition("/")
        step = int(step_str) if step_str else 1
        if step < 1:
            raise ValueError(f"invalid step in year field {text!r}")
        if rng == "*":
            start, end = MIN_YEAR, MAX_YEAR
        elif "-" in rng:
            lo, hi = rng.split("-", 1)
            start, end = int(lo), int(hi)
        else:
            start = int(rng)
            end = MAX_YEAR if step_str else start
        if not MIN_YEAR <= start <= end <= MAX_YEAR:
            raise ValueError(f"year range out of bounds in {text!r}")
        years.update(range(start, end + 1, step))
    return frozenset(years)


@dataclass(frozen=True)
class CronTimeframe:
    """Allowed-window predicate built from a cron-like expression.

    Five standard fields (minute hour day-of-month month day-of-week) plus an
    optional sixth year field. Membership is tested per minute.
    """

    expression: str
    cron: str
    years: frozenset[int] | None = None

    @classmethod
    def parse(cls, expression: str) -> "CronTimeframe":
        """Canonicalise and validate an expression. Raises ``ValueError``."""
        fields = expression.lower().split()
        if not fields:
            raise ValueError("empty expression")

        if fields[0].startswith("@"):
            if len(fields) != 1 or not croniter.is_valid(fields[0]):
                raise ValueError(f"unsupported expression {expression!r}")
            return cls(expression=fields[0], cron=fields[0])

        if len(fields) not in (5, 6):
            raise ValueError(
                f"expected 5 or 6 fields (minute hour day month weekday [year]); got {len(fields)}"
            )

        cron = " ".join(fields[:5])
        if not croniter.is_valid(cron):
            raise ValueError(f"invalid cron fields {cron!r}")

        years = None
        if len(fields) == 6:
            try:
                years = _parse_year_field(fields[5])
            except ValueError as e:
                raise ValueError(f"invalid year field: {e}") from e

        return cls(expression=" ".join(fields), cron=cron, years=years)

    def admits(self, now: datetime) -> bool:
        if self.years is not None and now.year not in self.years:
            return False
        minute = now.replace(second=0, microsecond=0)
        return croniter.match(self.cron, minute)


@dataclass
class IntervalTimer:
    """Admits a time once per ``every``, on a fixed cadence from its start.

    Slots missed between scans are skipped rather than fired in a burst, and a
    late scan does not shift later slots.
    """

    every: timedelta
    next_due: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        self.next_due = self.next_due + self.every

    def admits(self, now: datetime) -> bool:
        if now < self.next_due:
            return False
        missed = (now - self.next_due) // self.every
        self.next_due += self.every * (missed + 1)
        return True
