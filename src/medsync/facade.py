"""Entry points the presentation layer calls to synchronize medications.

The facade lets at most one sync run at a time: a request that arrives while
another is in flight is dropped (never queued) and reported as ``SKIPPED``.
Failures never escape; they become an ``ERROR`` result and a user-visible
``error_message``.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .models import SyncResult, SyncStatus
from .reconciler import Reconciler


logger = logging.getLogger(__name__)


class SyncFacade:
    """Busy-gated front for a :class:`Reconciler`."""

    def __init__(self, reconciler: Reconciler, max_history_entries: int = 100):
        """Initialize the facade.

        Args:
            reconciler: Reconciler doing the actual work
            max_history_entries: How many results ``sync_history`` keeps
        """
        self.reconciler = reconciler
        self.is_syncing = False
        self.error_message: Optional[str] = None
        self.sync_history: List[SyncResult] = []
        self.max_history_entries = max_history_entries

    # Sync Operations

    async def sync_one(self, medication_id: str, username: str) -> SyncResult:
        """Sync one medication. Never raises."""
        return await self._run(
            "sync_one", username,
            lambda: self.reconciler.sync_one(medication_id, username),
            medication_id=medication_id,
        )

    async def sync_all(self, username: str) -> SyncResult:
        """Sync every medication of ``username``. Never raises."""
        return await self._run("sync_all", username, lambda: self.reconciler.sync_all(username))

    async def _run(self, operation: str, username: str,
                   call: Callable[[], Awaitable[SyncResult]],
                   medication_id: Optional[str] = None) -> SyncResult:
        if self.is_syncing:
            logger.warning(f"Sync already in progress, skipping {operation} for {username}")
            result = SyncResult(status=SyncStatus.SKIPPED, operation=operation,
                                username=username, medication_id=medication_id)
            result.complete()
            return result

        self.is_syncing = True
        self.error_message = None
        try:
            result = await call()
        except Exception as e:
            self.error_message = self.describe_error(e)
            logger.error(f"{operation} failed for {username}: {e}")
            result = SyncResult(status=SyncStatus.SUCCESS, operation=operation,
                                username=username, medication_id=medication_id)
            result.add_error(self.error_message)
            result.complete()
        finally:
            self.is_syncing = False

        self._record(result)
        return result

    @staticmethod
    def describe_error(error: Exception) -> str:
        """Turn an exception into a message fit for the user."""
        message = str(error)
        return message or error.__class__.__name__

    # History

    def _record(self, result: SyncResult):
        self.sync_history.append(result)
        if len(self.sync_history) > self.max_history_entries:
            self.sync_history = self.sync_history[-self.max_history_entries:]

    @property
    def last_result(self) -> Optional[SyncResult]:
        return self.sync_history[-1] if self.sync_history else None

    def get_sync_history(self, limit: Optional[int] = None) -> List[SyncResult]:
        """Get sync history, newest first."""
        history = list(reversed(self.sync_history))
        if limit:
            history = history[:limit]
        return history

    def get_sync_status(self) -> Dict[str, Any]:
        """Summarize the facade's state for display."""
        last = self.last_result
        status = {
            'is_syncing': self.is_syncing,
            'error_message': self.error_message,
            'last_sync': last.started_at.isoformat() if last else None,
            'last_sync_status': last.status.value if last else None,
            'last_sync_duration': last.duration_seconds if last else None,
            'total_syncs': len(self.sync_history),
            'checked_at': datetime.now(timezone.utc).isoformat(),
        }
        if last:
            status['items_synced'] = last.items_synced
            status['errors'] = len(last.errors)
        return status
