"""Tests for the reconciler.

Local state lives in an in-memory store whose committed rows are shared by
every session of a test; the remote is the in-memory service fake, whose
clock hands out one-second steps starting at ``at(1001)``.
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from medsync.adapters.http_client import HttpRemoteClient, MedicationAPI
from medsync.models import MedicationStatus, SyncStatus
from medsync.reconciler import Reconciler
from medsync.remote import DecodeError, RemoteStatusError, ServerError, TransportError
from medsync.store import InMemoryMedicationStore, SQLiteMedicationStore, get_db_path

from conftest import T0, at, make_dto, make_medication


def put_local(rows, *medications):
    for medication in medications:
        rows[medication.id] = medication


@pytest.fixture
def reconciler(remote, store):
    return Reconciler(remote, store)


class TestSyncOne:

    async def test_missing_local_is_noop(self, reconciler, remote):
        result = await reconciler.sync_one("nope", "alice")
        assert result.status == SyncStatus.SUCCESS
        assert result.items_synced == 0
        assert remote.calls == []

    async def test_new_local_is_created_once(self, reconciler, remote, rows):
        put_local(rows, make_medication(id="local-1"))

        result = await reconciler.sync_one("local-1", "alice")

        assert result.items_created == 1
        assert remote.calls_named("create") == [("create", "alice", "Aspirin")]
        assert "local-1" not in rows
        local = rows["srv-1"]
        server = remote.get("alice", "srv-1")
        assert local.created_at == server.created_at == at(1001)
        assert local.updated_at == server.updated_at
        assert local.status == MedicationStatus.ACTIVE

    async def test_remote_newer_overwrites_local(self, reconciler, remote, rows):
        put_local(rows, make_medication())
        remote.seed(make_dto(name="Aspirin EC", dosage="200mg", updated_at=at(10)))

        result = await reconciler.sync_one("med-1", "alice")

        assert result.items_updated_local == 1
        assert rows["med-1"].name == "Aspirin EC"
        assert rows["med-1"].dosage == "200mg"
        assert rows["med-1"].updated_at == at(10)
        assert remote.calls == [("get", "alice", "med-1")]

    async def test_local_newer_pushes_update(self, reconciler, remote, rows):
        put_local(rows, make_medication(dosage="200mg", updated_at=at(10)))
        remote.seed(make_dto())

        result = await reconciler.sync_one("med-1", "alice")

        assert result.items_updated_remote == 1
        server = remote.get("alice", "med-1")
        assert server.dosage == "200mg"
        assert rows["med-1"].updated_at == server.updated_at == at(1001)

    async def test_equal_timestamps_do_nothing(self, reconciler, remote, rows, store):
        put_local(rows, make_medication(dosage="local value"))
        remote.seed(make_dto(dosage="remote value"))

        result = await reconciler.sync_one("med-1", "alice")

        assert result.items_unchanged == 1
        assert remote.calls == [("get", "alice", "med-1")]
        assert rows["med-1"].dosage == "local value"
        assert store.commit_count == 0

    async def test_tombstone_wins_over_newer_remote(self, reconciler, remote, rows):
        # Tombstones are propagated, never merged
        put_local(rows, make_medication(status=MedicationStatus.DELETED, updated_at=at(5)))
        remote.seed(make_dto(updated_at=at(50)))

        result = await reconciler.sync_one("med-1", "alice")

        assert result.items_deleted == 1
        assert remote.get("alice", "med-1") is None
        assert rows == {}

    async def test_tombstone_deleted_remotely(self, reconciler, remote, rows):
        put_local(rows, make_medication(status=MedicationStatus.DELETED, updated_at=at(5)))
        remote.seed(make_dto())

        await reconciler.sync_one("med-1", "alice")

        assert remote.calls == [("delete", "alice", "med-1")]
        assert remote.records == {}
        assert rows == {}

    async def test_tombstone_already_gone_remotely(self, reconciler, remote, rows):
        put_local(rows, make_medication(status=MedicationStatus.DELETED, updated_at=at(5)))

        result = await reconciler.sync_one("med-1", "alice")

        assert result.items_deleted == 1
        assert rows == {}

    async def test_failed_delete_keeps_tombstone(self, store, rows):
        put_local(rows, make_medication(status=MedicationStatus.DELETED, updated_at=at(5)))
        remote = AsyncMock()
        remote.delete_medication.side_effect = ServerError("internal", "Database down", 500)
        reconciler = Reconciler(remote, store)

        with pytest.raises(ServerError):
            await reconciler.sync_one("med-1", "alice")

        assert rows["med-1"].is_deleted
        assert not store.has_changes

    async def test_fetch_failure_propagates(self, store, rows):
        put_local(rows, make_medication())
        remote = AsyncMock()
        remote.get_medication.side_effect = TransportError("offline")
        reconciler = Reconciler(remote, store)

        with pytest.raises(TransportError):
            await reconciler.sync_one("med-1", "alice")

        remote.create_medication.assert_not_called()
        assert rows["med-1"] == make_medication()

    async def test_plain_404_status_counts_as_not_found(self, store, rows):
        put_local(rows, make_medication(status=MedicationStatus.DELETED, updated_at=at(5)))
        remote = AsyncMock()
        remote.delete_medication.side_effect = RemoteStatusError(404, body="gone")
        reconciler = Reconciler(remote, store)

        result = await reconciler.sync_one("med-1", "alice")

        assert result.items_deleted == 1
        assert rows == {}


class TestSyncAll:

    async def test_pulls_remote_only_records(self, reconciler, remote, rows):
        remote.seed(make_dto(id="r-1", name="Metformin", updated_at=at(20)))

        result = await reconciler.sync_all("alice")

        assert result.items_pulled == 1
        pulled = rows["r-1"]
        assert pulled.name == "Metformin"
        assert pulled.updated_at == at(20)
        assert pulled.status == MedicationStatus.ACTIVE
        assert remote.calls == [("list", "alice")]

    async def test_pushes_local_only_records(self, reconciler, remote, rows):
        put_local(rows, make_medication(id="l-1"), make_medication(id="l-2", name="Ibuprofen"))

        result = await reconciler.sync_all("alice")

        assert result.items_created == 2
        assert len(remote.calls_named("create")) == 2
        assert set(rows) == {"srv-1", "srv-2"}
        for medication_id, local in rows.items():
            assert local.updated_at == remote.get("alice", medication_id).updated_at

    async def test_mixed_collection_converges(self, reconciler, remote, rows):
        put_local(
            rows,
            make_medication(id="both-local-newer", dosage="local", updated_at=at(30)),
            make_medication(id="both-remote-newer", dosage="local", updated_at=at(10)),
            make_medication(id="tombstone", status=MedicationStatus.DELETED, updated_at=at(5)),
            make_medication(id="tombstone-gone", status=MedicationStatus.DELETED, updated_at=at(5)),
            make_medication(id="local-only"),
            make_medication(id="other-user", username="bob"),
        )
        remote.seed(make_dto(id="both-local-newer", dosage="remote", updated_at=at(20)))
        remote.seed(make_dto(id="both-remote-newer", dosage="remote", updated_at=at(20)))
        remote.seed(make_dto(id="tombstone"))
        remote.seed(make_dto(id="remote-only"))

        result = await reconciler.sync_all("alice")

        assert result.status == SyncStatus.SUCCESS
        assert result.items_updated_remote == 1
        assert result.items_updated_local == 1
        assert result.items_deleted == 2
        assert result.items_pulled == 1
        assert result.items_created == 1

        alice_local = {k: v for k, v in rows.items() if v.username == "alice"}
        alice_remote = {mid: dto for (owner, mid), dto in remote.records.items() if owner == "alice"}
        assert set(alice_local) == set(alice_remote)
        for medication_id, dto in alice_remote.items():
            local = alice_local[medication_id]
            assert (local.name, local.dosage, local.frequency, local.updated_at) == \
                (dto.name, dto.dosage, dto.frequency, dto.updated_at)
            assert local.is_active

        assert rows["both-local-newer"].dosage == "local"
        assert rows["both-remote-newer"].dosage == "remote"
        assert "other-user" in rows

    async def test_second_run_is_idempotent(self, reconciler, remote, rows):
        put_local(rows, make_medication(id="l-1"),
                  make_medication(id="gone", status=MedicationStatus.DELETED, updated_at=at(5)))
        remote.seed(make_dto(id="r-1", updated_at=at(20)))
        await reconciler.sync_all("alice")
        snapshot = {k: v.snapshot() for k, v in rows.items()}
        remote.calls.clear()

        result = await reconciler.sync_all("alice")

        assert remote.calls == [("list", "alice")]
        assert result.items_synced == 0
        assert result.items_unchanged == 2
        assert {k: v.snapshot() for k, v in rows.items()} == snapshot

    async def test_failure_persists_nothing(self, reconciler, remote, rows):
        put_local(rows, make_medication(id="shared", dosage="local", updated_at=T0),
                  make_medication(id="local-only"))
        remote.seed(make_dto(id="shared", dosage="remote", updated_at=at(20)))
        remote.seed(make_dto(id="remote-only"))
        remote.create_medication = AsyncMock(side_effect=ServerError("internal", "Database down", 500))

        with pytest.raises(ServerError):
            await reconciler.sync_all("alice")

        assert rows["shared"].dosage == "local"
        assert "remote-only" not in rows
        assert "local-only" in rows
        assert not reconciler.store.has_changes

    async def test_list_failure_propagates(self, store, rows):
        put_local(rows, make_medication())
        remote = AsyncMock()
        remote.list_medications.side_effect = TransportError("offline")

        with pytest.raises(TransportError):
            await Reconciler(remote, store).sync_all("alice")
        assert rows["med-1"] == make_medication()


class TestDosageScenario:
    """The same medication edited on both sides at ``t`` and ``t+1``."""

    async def test_later_local_edit_wins(self, reconciler, remote, rows):
        remote.seed(make_dto(dosage="200mg", updated_at=at(100)))
        put_local(rows, make_medication(dosage="150mg", updated_at=at(101)))

        await reconciler.sync_all("alice")

        assert remote.get("alice", "med-1").dosage == "150mg"
        assert rows["med-1"].dosage == "150mg"
        assert rows["med-1"].updated_at == remote.get("alice", "med-1").updated_at

    async def test_later_remote_edit_wins(self, reconciler, remote, rows):
        remote.seed(make_dto(dosage="200mg", updated_at=at(101)))
        put_local(rows, make_medication(dosage="150mg", updated_at=at(100)))

        await reconciler.sync_all("alice")

        assert remote.get("alice", "med-1").dosage == "200mg"
        assert rows["med-1"].dosage == "200mg"
        assert remote.calls_named("update") == []

    async def test_sub_second_difference_is_respected(self, reconciler, remote, rows):
        remote.seed(make_dto(dosage="200mg", updated_at=at(100)))
        put_local(rows, make_medication(dosage="150mg", updated_at=at(100.000001)))

        await reconciler.sync_all("alice")

        assert remote.get("alice", "med-1").dosage == "150mg"


async def test_user_edit_between_syncs_is_kept(remote, rows):
    sync_store = InMemoryMedicationStore(rows)
    reconciler = Reconciler(remote, sync_store)
    put_local(rows, make_medication())
    await reconciler.sync_all("alice")
    server_id = next(iter(rows))

    edit_session = InMemoryMedicationStore(rows)
    medication = edit_session.find_by_id_and_owner(server_id, "alice")
    medication.dosage = "300mg"
    medication.touch()
    await edit_session.commit()

    await reconciler.sync_one(server_id, "alice")

    assert remote.get("alice", server_id).dosage == "300mg"


class TestUpdatedBeforeCreated:
    """A server copy whose ``updatedAt`` precedes its ``createdAt``."""

    BAD_JSON = {
        "id": "med-1",
        "username": "alice",
        "name": "Aspirin EC",
        "dosage": "200mg",
        "frequency": "daily",
        "createdAt": "2026-01-11T10:01:40Z",
        "updatedAt": "2026-01-11T10:00:50Z",
    }

    @pytest.fixture
    def db_path(self, tmp_path):
        return get_db_path(tmp_path)

    def make_remote(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/medications"):
                return httpx.Response(200, json={"data": [self.BAD_JSON]})
            return httpx.Response(200, json={"data": self.BAD_JSON})

        api = MedicationAPI(base_url="https://meds.test", api_key="secret",
                            transport=httpx.MockTransport(handler))
        return HttpRemoteClient(api)

    async def commit_local(self, db_path, medication):
        session = SQLiteMedicationStore(db_path)
        session.insert(medication)
        await session.commit()

    async def test_merge_is_rejected_and_local_row_survives(self, db_path):
        await self.commit_local(db_path, make_medication())
        store = SQLiteMedicationStore(db_path)

        async with self.make_remote() as remote:
            with pytest.raises(DecodeError):
                await Reconciler(remote, store).sync_one("med-1", "alice")

        assert not store.has_changes
        assert SQLiteMedicationStore(db_path).find_all_by_owner("alice") == [make_medication()]

    async def test_merge_during_full_sync_is_rejected(self, db_path):
        await self.commit_local(db_path, make_medication())

        async with self.make_remote() as remote:
            with pytest.raises(DecodeError):
                await Reconciler(remote, SQLiteMedicationStore(db_path)).sync_all("alice")

        assert SQLiteMedicationStore(db_path).find_by_id_and_owner("med-1", "alice") == make_medication()

    async def test_pull_is_rejected(self, db_path):
        async with self.make_remote() as remote:
            with pytest.raises(DecodeError):
                await Reconciler(remote, SQLiteMedicationStore(db_path)).sync_all("alice")

        assert SQLiteMedicationStore(db_path).find_all_by_owner("alice") == []

    def test_fake_service_refuses_seed(self, remote):
        # model_copy skips validation, like a record built by hand
        bad = make_dto().model_copy(update={"created_at": at(100), "updated_at": at(50)})

        with pytest.raises(ValueError):
            remote.seed(bad)
        assert remote.records == {}
