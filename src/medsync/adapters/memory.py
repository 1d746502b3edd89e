"""In-memory remote client.

Behaves like the medications service: it stamps ``created_at`` and
``updated_at`` on create, advances ``updated_at`` on every update and reports
missing records with :class:`NotFoundError`. Every call is recorded in
``calls`` so tests can assert on network traffic.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..api_models import CreateMedicationRequest, MedicationDTO, UpdateMedicationRequest
from ..remote import NotFoundError, RemoteClient
from ..utils.datetime import now_utc


logger = logging.getLogger(__name__)


class InMemoryRemoteClient(RemoteClient):
    """Remote client keeping records in a dictionary."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None,
                 id_factory: Optional[Callable[[], str]] = None):
        """Initialize the fake service.

        Args:
            clock: Source of server timestamps (defaults to UTC now)
            id_factory: Source of server-assigned ids (defaults to srv-1, srv-2, ...)
        """
        self.clock = clock or now_utc
        self.id_factory = id_factory
        self.records: Dict[Tuple[str, str], MedicationDTO] = {}
        self.calls: List[Tuple[str, ...]] = []
        self._counter = 0

    def seed(self, dto: MedicationDTO):
        """Put a record on the server without recording a call.

        Raises:
            ValueError: If the record was built unvalidated with ``updated_at < created_at``
        """
        if dto.updated_at < dto.created_at:
            raise ValueError(f"Medication {dto.id} is updated before it was created")
        self.records[(dto.username, dto.id)] = dto

    def get(self, username: str, medication_id: str) -> Optional[MedicationDTO]:
        return self.records.get((username, medication_id))

    def calls_named(self, name: str) -> List[Tuple[str, ...]]:
        return [call for call in self.calls if call[0] == name]

    def _stamp(self, previous: Optional[datetime] = None) -> datetime:
        stamp = self.clock()
        if previous is not None and stamp <= previous:
            stamp = previous + timedelta(milliseconds=1)
        return stamp

    def _next_id(self) -> str:
        self._counter += 1
        return f"srv-{self._counter}"

    async def list_medications(self, username: str) -> List[MedicationDTO]:
        self.calls.append(("list", username))
        return [dto for (owner, _), dto in self.records.items() if owner == username]

    async def get_medication(self, username: str, medication_id: str) -> MedicationDTO:
        self.calls.append(("get", username, medication_id))
        dto = self.records.get((username, medication_id))
        if dto is None:
            raise NotFoundError(404, code="not_found", message=f"Medication {medication_id} not found")
        return dto

    async def create_medication(self, username: str, body: CreateMedicationRequest) -> MedicationDTO:
        self.calls.append(("create", username, body.name))
        new_id = self.id_factory() if self.id_factory else self._next_id()
        stamp = self._stamp()
        dto = MedicationDTO(
            id=new_id,
            username=username,
            name=body.name,
            dosage=body.dosage,
            frequency=body.frequency,
            created_at=stamp,
            updated_at=stamp,
        )
        self.records[(username, new_id)] = dto
        logger.debug(f"Fake service created {new_id} for {username}")
        return dto

    async def update_medication(self, username: str, medication_id: str,
                                body: UpdateMedicationRequest) -> MedicationDTO:
        self.calls.append(("update", username, medication_id))
        current = self.records.get((username, medication_id))
        if current is None:
            raise NotFoundError(404, code="not_found", message=f"Medication {medication_id} not found")
        changes = body.model_dump(exclude_none=True)
        changes["updated_at"] = self._stamp(current.updated_at)
        updated = current.model_copy(update=changes)
        self.records[(username, medication_id)] = updated
        return updated

    async def delete_medication(self, username: str, medication_id: str) -> None:
        self.calls.append(("delete", username, medication_id))
        if self.records.pop((username, medication_id), None) is None:
            raise NotFoundError(404, code="not_found", message=f"Medication {medication_id} not found")
