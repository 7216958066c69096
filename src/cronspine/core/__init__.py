"""Core primitives: clock, cron expressions, errors, logging, settings."""

from cronspine.core.clock import Clock, FrozenClock, SystemClock
from cronspine.core.cron import CronExpression
from cronspine.core.errors import ErrorCategory, ErrorContext, SchedulerError

__all__ = [
    "Clock",
    "CronExpression",
    "ErrorCategory",
    "ErrorContext",
    "FrozenClock",
    "SchedulerError",
    "SystemClock",
]
