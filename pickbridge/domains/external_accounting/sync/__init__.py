from .reconciliation import ReconciliationEngine
from .scheduler import SyncScheduler

__all__ = ["ReconciliationEngine", "SyncScheduler"]
