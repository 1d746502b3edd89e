"""medsync - Bidirectional medication sync between a local store and a remote service."""

__version__ = "0.1.0"
__author__ = "medsync Team"

from .facade import SyncFacade
from .models import Frequency, Medication, MedicationStatus, SyncResult, SyncStatus
from .reconciler import Reconciler

__all__ = [
    "Frequency",
    "Medication",
    "MedicationStatus",
    "Reconciler",
    "SyncFacade",
    "SyncResult",
    "SyncStatus",
    "__version__",
]
