"""Job scheduling for the catalog sync engine."""

from CameraVault.CatalogSync.orchestrator.scheduler import JobStats, Scheduler
from CameraVault.CatalogSync.orchestrator.triggers import (
    DailyTrigger,
    IntervalTrigger,
    Trigger,
    parse_time_of_day,
)

__all__ = [
    "DailyTrigger",
    "IntervalTrigger",
    "JobStats",
    "Scheduler",
    "Trigger",
    "parse_time_of_day",
]
