"""
Cron expression evaluation backed by croniter.

``CronExpression`` is a small value object around a standard five-field
expression (``"*/5 * * * *"``) or one of the supported macros. Evaluation is
always done against the datetime it is given, so the caller decides the
time zone by converting the instant first.

Supported macros::

    @yearly  @annually  @monthly  @weekly  @daily  @midnight  @hourly
"""

from __future__ import annotations

from datetime import datetime, timedelta

from croniter import croniter

from cronspine.core.errors import InvalidScheduleError

MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}


class CronExpression:
    """A validated minute-resolution cron expression.

    Raises:
        InvalidScheduleError: if the expression cannot be parsed.
    """

    def __init__(self, text: str) -> None:
        text = text.strip()
        resolved = MACROS.get(text.lower(), text)
        if len(resolved.split()) != 5 or not croniter.is_valid(resolved):
            raise InvalidScheduleError(f"Invalid cron expression {text!r}")
        self.text = text
        self._resolved = resolved

    def is_due(self, moment: datetime) -> bool:
        """Whether the minute containing ``moment`` matches the expression."""
        minute = moment.replace(second=0, microsecond=0)
        it = croniter(self._resolved, minute - timedelta(seconds=1))
        return it.get_next(datetime) == minute

    def next_run_after(self, moment: datetime, nth: int = 0) -> datetime:
        """The ``nth`` (zero-based) run strictly after ``moment``."""
        it = croniter(self._resolved, moment)
        result = it.get_next(datetime)
        for _ in range(nth):
            result = it.get_next(datetime)
        return result

    def next_run_dates(self, moment: datetime, total: int) -> list[datetime]:
        it = croniter(self._resolved, moment)
        return [it.get_next(datetime) for _ in range(total)]

    def __str__(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return f"CronExpression({self.text!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CronExpression):
            return NotImplemented
        return self.text == other.text

    def __hash__(self) -> int:
        return hash(self.text)


__all__ = ["CronExpression", "MACROS"]
