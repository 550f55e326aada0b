"""
Maintenance operations over queues and tracking data.

- Reconciler: Rebuilds tracking entries from broker state
- Validator: Diffs tracking data against broker state
- CleanupPurger: Empties queues, error sink and tracking store
"""

from msgtransfer.maintenance.purger import CleanupPurger, PurgeSummary, QueuePurgeCounts
from msgtransfer.maintenance.reconciler import Reconciler, ReconcileSummary
from msgtransfer.maintenance.validator import (
    LocationDiff,
    QueueSnapshot,
    TimingAnalysisRow,
    ValidationReport,
    Validator,
)

__all__ = [
    "CleanupPurger",
    "PurgeSummary",
    "QueuePurgeCounts",
    "Reconciler",
    "ReconcileSummary",
    "Validator",
    "ValidationReport",
    "QueueSnapshot",
    "LocationDiff",
    "TimingAnalysisRow",
]
