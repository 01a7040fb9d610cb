"""
Scheduling module for the PostCare follow-up system

Contains components for storing and dispatching scheduled patient calls:
- CallSchedule: A future call with its localized message variants
- CallLog: One actual provider call and its outcome
- CallScheduler: Redis store with atomic state transitions
- RQ Tasks: Dispatch due schedules and run reminder sweeps
"""

from .models import CallSchedule, CallLog, ScheduleStatus, CallLogStatus
from .scheduler import CallScheduler

__all__ = [
    "CallSchedule",
    "CallLog",
    "ScheduleStatus",
    "CallLogStatus",
    "CallScheduler"
]
