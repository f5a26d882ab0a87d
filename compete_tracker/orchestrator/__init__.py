"""Orchestration and scheduling"""

from .coordinator import RefreshCoordinator, RefreshOutcome, build_coordinator
from .locks import KeyedLock
from .scheduler import JobScheduler

__all__ = ["RefreshCoordinator", "RefreshOutcome", "build_coordinator", "KeyedLock", "JobScheduler"]
