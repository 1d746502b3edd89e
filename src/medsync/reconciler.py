"""Reconciliation between the local store and the remote collection.

The reconciler merges one local record against its remote counterpart, or a
whole owner's collection, using last-writer-wins on ``updated_at`` and
tombstones for deletions. After a successful sync the local store holds,
for every record, either the remote state (remote newer), a server-echoed
copy of the local state (local newer), or nothing (tombstone purged).
"""

import asyncio
import logging
from typing import Dict

from .api_models import CreateMedicationRequest, MedicationDTO, UpdateMedicationRequest
from .models import Medication, SyncResult, SyncStatus
from .remote import RemoteClient, is_not_found
from .store import LocalStore


logger = logging.getLogger(__name__)


class Reconciler:
    """Orchestrates per-record and full-collection synchronization.

    One reconciler owns the write path of its store: each sync unit runs
    under ``self.lock`` and finishes with a single commit. Failures other than
    not-found roll back the pending unit of work and propagate; nothing is
    retried here.
    """

    def __init__(self, remote: RemoteClient, store: LocalStore):
        """Initialize the reconciler.

        Args:
            remote: Client for the remote collection
            store: Local unit-of-work store
        """
        self.remote = remote
        self.store = store
        self.lock = asyncio.Lock()

    # Public API

    async def sync_one(self, medication_id: str, username: str) -> SyncResult:
        """Reconcile a single record.

        A missing local record is a no-op. A tombstone is propagated as a
        remote delete. A record unknown to the remote is created there.
        Otherwise the merge rule applies.

        Raises:
            RemoteError: For any remote failure other than not-found
        """
        result = SyncResult(status=SyncStatus.SUCCESS, operation="sync_one",
                            username=username, medication_id=medication_id)
        async with self.lock:
            try:
                await self._sync_one(medication_id, username, result)
            except BaseException:
                self.store.rollback()
                raise
        result.complete()
        return result

    async def sync_all(self, username: str) -> SyncResult:
        """Reconcile an owner's whole collection in one pass.

        Remote records are processed first, then local records the remote
        does not know about. The pass commits once at the end; if any step
        fails, none of its changes are persisted.

        Raises:
            RemoteError: For any remote failure other than not-found
        """
        result = SyncResult(status=SyncStatus.SUCCESS, operation="sync_all", username=username)
        async with self.lock:
            try:
                await self._sync_all(username, result)
            except BaseException:
                self.store.rollback()
                raise
        result.complete()
        return result

    # Sync units

    async def _sync_one(self, medication_id: str, username: str, result: SyncResult):
        local = self.store.find_by_id_and_owner(medication_id, username)
        if local is None:
            logger.debug(f"No local medication {medication_id} for {username}, nothing to sync")
            return

        if local.is_deleted:
            await self._propagate_delete(local, result)
            await self.store.commit()
            return

        try:
            remote = await self.remote.get_medication(username, local.id)
        except Exception as e:
            if not is_not_found(e):
                raise
            logger.debug(f"Medication {local.id} unknown to remote, creating it")
            await self._push_new(local, result)
        else:
            await self._merge(local, remote, result)

        await self.store.commit()

    async def _sync_all(self, username: str, result: SyncResult):
        logger.info(f"Starting full sync for {username}")
        remotes = await self.remote.list_medications(username)
        remote_by_id: Dict[str, MedicationDTO] = {r.id: r for r in remotes}
        logger.info(f"Fetched {len(remotes)} remote medications for {username}")

        # 1) Remote pass: merge, propagate tombstones, materialize new records
        for remote in remotes:
            local = self.store.find_by_id_and_owner(remote.id, username)
            if local is None:
                self.store.insert(remote.to_medication())
                result.items_pulled += 1
                logger.debug(f"Pulled new medication {remote.id}")
            elif local.is_deleted:
                await self._propagate_delete(local, result)
            else:
                await self._merge(local, remote, result)

        # 2) Local pass: tombstones and creations the remote has never seen
        for local in self.store.find_all_by_owner(username):
            if local.id in remote_by_id:
                continue
            if local.is_deleted:
                await self._propagate_delete(local, result)
            else:
                await self._push_new(local, result)

        await self.store.commit()
        logger.info(
            f"Full sync for {username} done: {result.items_created} created, "
            f"{result.items_pulled} pulled, {result.items_updated_local} updated locally, "
            f"{result.items_updated_remote} updated remotely, {result.items_deleted} deleted"
        )

    # Steps

    async def _merge(self, local: Medication, remote: MedicationDTO, result: SyncResult):
        """Apply last-writer-wins between a local record and its remote copy."""
        if remote.updated_at > local.updated_at:
            remote.apply_to(local)
            result.items_updated_local += 1
            logger.debug(f"Remote wins for {local.id}")
        elif local.updated_at > remote.updated_at:
            updated = await self.remote.update_medication(
                local.username, local.id, UpdateMedicationRequest.from_medication(local)
            )
            updated.apply_to(local)
            result.items_updated_remote += 1
            logger.debug(f"Local wins for {local.id}")
        else:
            result.items_unchanged += 1

    async def _push_new(self, local: Medication, result: SyncResult):
        """Create a local-only record remotely and adopt the server's copy."""
        created = await self.remote.create_medication(
            local.username, CreateMedicationRequest.from_medication(local)
        )
        previous_id = local.id
        created.apply_to(local)
        if created.id != previous_id:
            logger.info(f"Server assigned id {created.id} to local medication {previous_id}")
            self.store.rekey(local, previous_id)
        result.items_created += 1

    async def _propagate_delete(self, local: Medication, result: SyncResult):
        """Delete a tombstone remotely, then purge it locally.

        The local record is purged when the remote delete succeeds or the
        remote reports it already gone. Any other failure leaves the
        tombstone in place for a later sync and propagates.
        """
        try:
            await self.remote.delete_medication(local.username, local.id)
        except Exception as e:
            if not is_not_found(e):
                logger.warning(f"Remote delete of {local.id} failed, keeping tombstone: {e}")
                raise
            logger.debug(f"Medication {local.id} already gone remotely")
        self.store.delete(local)
        result.items_deleted += 1

