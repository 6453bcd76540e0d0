"""Scheduled reclamation of stacks tagged for deletion."""

from .scheduler import (
    DeletionCriteria,
    ReclamationReport,
    ReclamationScheduler,
    SchedulerAlreadyRunningError,
)

__all__ = [
    'DeletionCriteria',
    'ReclamationReport',
    'ReclamationScheduler',
    'SchedulerAlreadyRunningError',
]
