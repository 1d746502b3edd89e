"""Local persistence for medications.

A store instance is a unit of work: records fetched through it are tracked in
an identity map, mutated in memory, and written together by :meth:`commit`
in one transaction. Both :meth:`commit` and :meth:`rollback` end the unit of
work and detach every record, so the next read sees the database as other
sessions left it, and nothing from a failed sync pass becomes durable.

Two backends share that machinery: :class:`SQLiteMedicationStore` for the
application and :class:`InMemoryMedicationStore` for tests.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import Frequency, Medication, MedicationStatus
from .utils.datetime import format_timestamp, parse_timestamp


logger = logging.getLogger(__name__)


class LocalStore(ABC):
    """Interface the reconciler and the repository use to reach local records."""

    @abstractmethod
    def find_by_id_and_owner(self, medication_id: str, username: str) -> Optional[Medication]:
        """Get one record, or None if it does not exist."""
        pass

    @abstractmethod
    def find_all_by_owner(self, username: str) -> List[Medication]:
        """Get every record of an owner, tombstones included."""
        pass

    @abstractmethod
    def insert(self, medication: Medication):
        """Stage a new record."""
        pass

    @abstractmethod
    def delete(self, medication: Medication):
        """Stage the hard removal of a record."""
        pass

    def rekey(self, medication: Medication, previous_id: str):
        """Tell the store that a tracked record's id changed from ``previous_id``."""
        pass

    @abstractmethod
    async def commit(self):
        """Persist all staged changes atomically."""
        pass

    @abstractmethod
    def rollback(self):
        """Discard all staged changes."""
        pass

    @property
    @abstractmethod
    def has_changes(self) -> bool:
        pass


# Row-level changes handed to a backend by commit():
#   inserts: new records
#   updates: (persisted id, record) pairs; the record's id may differ
#   deletes: persisted ids
Changes = Tuple[List[Medication], List[Tuple[str, Medication]], List[str]]


class UnitOfWorkStore(LocalStore):
    """Identity map and change tracking shared by the concrete stores.

    Tracked records are keyed three ways: by the id their row is stored
    under, by their current id for lookups, and by object identity so a
    record handed back to :meth:`insert` or :meth:`delete` is found without
    a scan.
    """

    def __init__(self):
        self._identity: Dict[str, Medication] = {}
        self._snapshots: Dict[str, Dict[str, Any]] = {}
        self._persisted_ids: Dict[int, str] = {}
        self._by_id: Dict[str, Medication] = {}
        self._new: Dict[int, Medication] = {}
        self._deleted: Dict[str, Medication] = {}

    # Backend hooks

    @abstractmethod
    def _load_one(self, medication_id: str, username: str) -> Optional[Medication]:
        pass

    @abstractmethod
    def _load_owner(self, username: str) -> List[Medication]:
        pass

    @abstractmethod
    def _write(self, inserts: List[Medication], updates: List[Tuple[str, Medication]],
               deletes: List[str]):
        pass

    # Tracking

    def _track(self, medication: Medication) -> Medication:
        persisted_id = medication.id
        if persisted_id in self._identity:
            return self._identity[persisted_id]
        self._identity[persisted_id] = medication
        self._snapshots[persisted_id] = medication.snapshot()
        self._persisted_ids[id(medication)] = persisted_id
        self._by_id.setdefault(medication.id, medication)
        return medication

    def _is_live(self, medication: Medication) -> bool:
        if id(medication) in self._new:
            return True
        persisted_id = self._persisted_ids.get(id(medication))
        return persisted_id is not None and persisted_id not in self._deleted

    def _live(self) -> Iterable[Medication]:
        """Tracked and new records that are not staged for removal."""
        for persisted_id, medication in self._identity.items():
            if persisted_id not in self._deleted:
                yield medication
        yield from self._new.values()

    # LocalStore

    def find_by_id_and_owner(self, medication_id: str, username: str) -> Optional[Medication]:
        medication = self._by_id.get(medication_id)
        if medication is not None and medication.id != medication_id:
            # Renamed without rekey(); file it under its current id
            del self._by_id[medication_id]
            if self._is_live(medication):
                self._by_id.setdefault(medication.id, medication)
            medication = None
        if medication is not None and self._is_live(medication):
            return medication if medication.username == username else None

        # A tracked record that has been renamed or removed still owns its row
        if medication_id in self._identity:
            return None

        loaded = self._load_one(medication_id, username)
        if loaded is None:
            return None
        return self._track(loaded)

    def find_all_by_owner(self, username: str) -> List[Medication]:
        for loaded in self._load_owner(username):
            if loaded.id not in self._identity:
                self._track(loaded)
        return [m for m in self._live() if m.username == username]

    def rekey(self, medication: Medication, previous_id: str):
        if self._by_id.get(previous_id) is medication:
            del self._by_id[previous_id]
        if self._is_live(medication):
            self._by_id[medication.id] = medication

    def insert(self, medication: Medication):
        if self._is_live(medication):
            return
        self._new[id(medication)] = medication
        self._by_id[medication.id] = medication
        logger.debug(f"Staged insert of medication {medication.id}")

    def delete(self, medication: Medication):
        if self._by_id.get(medication.id) is medication:
            del self._by_id[medication.id]
        if self._new.pop(id(medication), None) is not None:
            return
        persisted_id = self._persisted_ids.get(id(medication))
        if persisted_id is None:
            raise KeyError(f"Medication {medication.id} is not tracked by this store")
        self._deleted[persisted_id] = medication
        logger.debug(f"Staged delete of medication {persisted_id}")

    def pending_changes(self) -> Changes:
        inserts = list(self._new.values())
        deletes = list(self._deleted)
        updates = []
        for persisted_id, medication in self._identity.items():
            if persisted_id in self._deleted:
                continue
            if medication.snapshot() != self._snapshots[persisted_id]:
                updates.append((persisted_id, medication))
        return inserts, updates, deletes

    @property
    def has_changes(self) -> bool:
        inserts, updates, deletes = self.pending_changes()
        return bool(inserts or updates or deletes)

    async def commit(self):
        inserts, updates, deletes = self.pending_changes()
        if not (inserts or updates or deletes):
            self._clear()
            return

        self._write(inserts, updates, deletes)
        logger.debug(
            f"Committed {len(inserts)} inserts, {len(updates)} updates, {len(deletes)} deletes"
        )

        # Committed records are detached; later reads see the database again
        self._clear()

    def rollback(self):
        if self._new or self._deleted:
            logger.debug("Discarding pending local changes")
        self._clear()

    def _clear(self):
        self._identity.clear()
        self._snapshots.clear()
        self._persisted_ids.clear()
        self._by_id.clear()
        self._new.clear()
        self._deleted.clear()


class InMemoryMedicationStore(UnitOfWorkStore):
    """Store whose committed rows live in a dictionary.

    Several instances may share one ``rows`` dictionary to act as separate
    sessions over the same database.
    """

    def __init__(self, rows: Optional[Dict[str, Medication]] = None):
        super().__init__()
        self.rows: Dict[str, Medication] = rows if rows is not None else {}
        self.commit_count = 0

    def _load_one(self, medication_id: str, username: str) -> Optional[Medication]:
        row = self.rows.get(medication_id)
        if row is None or row.username != username:
            return None
        return replace(row)

    def _load_owner(self, username: str) -> List[Medication]:
        rows = [row for row in self.rows.values() if row.username == username]
        rows.sort(key=lambda m: (m.created_at, m.id))
        return [replace(row) for row in rows]

    def _write(self, inserts: List[Medication], updates: List[Tuple[str, Medication]],
               deletes: List[str]):
        staged = dict(self.rows)
        for persisted_id in deletes:
            staged.pop(persisted_id, None)
        for persisted_id, medication in updates:
            staged.pop(persisted_id, None)
            if medication.id in staged:
                raise KeyError(f"Duplicate medication id {medication.id}")
            staged[medication.id] = replace(medication)
        for medication in inserts:
            if medication.id in staged:
                raise KeyError(f"Duplicate medication id {medication.id}")
            staged[medication.id] = replace(medication)
        # Swap in place so sessions sharing the dictionary see the commit
        self.rows.clear()
        self.rows.update(staged)
        self.commit_count += 1


def get_db_path(data_dir: Path) -> Path:
    """Get the medications database path inside ``data_dir``."""
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir / "medications.db"


_COLUMNS = (
    "id", "username", "name", "dosage", "frequency", "created_at", "updated_at",
    "status", "reminder_alert", "reminder_time1", "reminder_time2",
)


class SQLiteMedicationStore(UnitOfWorkStore):
    """Store persisting medications in a SQLite database."""

    def __init__(self, db_path: Path):
        """Initialize the store.

        Args:
            db_path: Database file path
        """
        super().__init__()
        self.db_path = Path(db_path)
        self._init_database()

    @contextmanager
    def get_connection(self):
        """Get a database connection that commits on success and rolls back on error."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_database(self):
        """Initialize the SQLite database with required tables."""
        try:
            with self.get_connection() as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS medications (
                        id TEXT PRIMARY KEY,
                        username TEXT NOT NULL,
                        name TEXT NOT NULL,
                        dosage TEXT NOT NULL,
                        frequency TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        status INTEGER NOT NULL DEFAULT 0,
                        reminder_alert INTEGER NOT NULL DEFAULT 0,
                        reminder_time1 TEXT,
                        reminder_time2 TEXT
                    )
                """)
                conn.execute("""
                    CREATE INDEX IF NOT EXISTS idx_medications_username
                    ON medications(username)
                """)
            logger.debug(f"Initialized medications database at {self.db_path}")
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    @staticmethod
    def _row_to_medication(row: sqlite3.Row) -> Medication:
        return Medication(
            id=row["id"],
            username=row["username"],
            name=row["name"],
            dosage=row["dosage"],
            frequency=Frequency(row["frequency"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            status=MedicationStatus(row["status"]),
            reminder_alert=bool(row["reminder_alert"]),
            reminder_time1=parse_timestamp(row["reminder_time1"]) if row["reminder_time1"] else None,
            reminder_time2=parse_timestamp(row["reminder_time2"]) if row["reminder_time2"] else None,
        )

    @staticmethod
    def _medication_to_row(medication: Medication) -> Tuple:
        return (
            medication.id,
            medication.username,
            medication.name,
            medication.dosage,
            medication.frequency.value,
            format_timestamp(medication.created_at),
            format_timestamp(medication.updated_at),
            int(medication.status),
            int(medication.reminder_alert),
            format_timestamp(medication.reminder_time1) if medication.reminder_time1 else None,
            format_timestamp(medication.reminder_time2) if medication.reminder_time2 else None,
        )

    def _load_one(self, medication_id: str, username: str) -> Optional[Medication]:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM medications WHERE id = ? AND username = ?",
                (medication_id, username),
            ).fetchone()
        return self._row_to_medication(row) if row else None

    def _load_owner(self, username: str) -> List[Medication]:
        with self.get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM medications WHERE username = ? ORDER BY created_at, id",
                (username,),
            ).fetchall()
        return [self._row_to_medication(row) for row in rows]

    def _write(self, inserts: List[Medication], updates: List[Tuple[str, Medication]],
               deletes: List[str]):
        placeholders = ", ".join("?" for _ in _COLUMNS)
        assignments = ", ".join(f"{column} = ?" for column in _COLUMNS)
        try:
            with self.get_connection() as conn:
                for persisted_id in deletes:
                    conn.execute("DELETE FROM medications WHERE id = ?", (persisted_id,))
                for persisted_id, medication in updates:
                    conn.execute(
                        f"UPDATE medications SET {assignments} WHERE id = ?",
                        self._medication_to_row(medication) + (persisted_id,),
                    )
                for medication in inserts:
                    conn.execute(
                        f"INSERT INTO medications ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                        self._medication_to_row(medication),
                    )
        except sqlite3.Error as e:
            logger.error(f"Failed to commit medications: {e}")
            raise
