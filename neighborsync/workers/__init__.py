from neighborsync.workers.unified_scheduler import (
    JobResult,
    ScheduledJob,
    ScheduleType,
    UnifiedScheduler,
)

__all__ = [
    "JobResult",
    "ScheduleType",
    "ScheduledJob",
    "UnifiedScheduler",
]
