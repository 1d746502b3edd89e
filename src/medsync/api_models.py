"""Wire models for the remote medications API.

Responses are wrapped in ``{"data": ...}`` envelopes and failures in
``{"error": {"code": ..., "message": ...}}``. Timestamps arrive as ISO 8601
strings with or without fractional seconds.
"""

from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from .models import Frequency, Medication, MedicationStatus
from .utils.datetime import ensure_aware, parse_timestamp, format_timestamp


T = TypeVar("T")


class HealthResponse(BaseModel):
    status: str


class MedicationDTO(BaseModel):
    """A medication as the remote reports it."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    username: str
    name: str
    dosage: str
    frequency: Frequency
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def parse_timestamps(cls, value):
        if isinstance(value, str):
            return parse_timestamp(value)
        return value

    @field_validator("created_at", "updated_at")
    @classmethod
    def require_aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @model_validator(mode="after")
    def check_timestamp_order(self) -> "MedicationDTO":
        if self.updated_at < self.created_at:
            raise ValueError(
                f"updatedAt ({self.updated_at.isoformat()}) precedes "
                f"createdAt ({self.created_at.isoformat()})"
            )
        return self

    @field_serializer("created_at", "updated_at")
    def serialize_timestamps(self, value: datetime) -> str:
        return format_timestamp(value)

    def to_medication(self) -> Medication:
        """Materialize a new, active local record from this copy."""
        return Medication(
            id=self.id,
            username=self.username,
            name=self.name,
            dosage=self.dosage,
            frequency=self.frequency,
            created_at=self.created_at,
            updated_at=self.updated_at,
            status=MedicationStatus.ACTIVE,
        )

    def apply_to(self, local: Medication):
        """Overwrite every remote-owned field of ``local`` and reactivate it."""
        local.id = self.id
        local.username = self.username
        local.name = self.name
        local.dosage = self.dosage
        local.frequency = self.frequency
        local.created_at = self.created_at
        local.updated_at = self.updated_at
        local.status = MedicationStatus.ACTIVE

    @classmethod
    def from_medication(cls, medication: Medication) -> "MedicationDTO":
        return cls(
            id=medication.id,
            username=medication.username,
            name=medication.name,
            dosage=medication.dosage,
            frequency=medication.frequency,
            created_at=medication.created_at,
            updated_at=medication.updated_at,
        )


class CreateMedicationRequest(BaseModel):
    name: str
    dosage: str
    frequency: Frequency

    @classmethod
    def from_medication(cls, medication: Medication) -> "CreateMedicationRequest":
        return cls(name=medication.name, dosage=medication.dosage, frequency=medication.frequency)


class UpdateMedicationRequest(BaseModel):
    name: Optional[str] = None
    dosage: Optional[str] = None
    frequency: Optional[Frequency] = None

    @classmethod
    def from_medication(cls, medication: Medication) -> "UpdateMedicationRequest":
        return cls(name=medication.name, dosage=medication.dosage, frequency=medication.frequency)


class DataArrayResponse(BaseModel, Generic[T]):
    data: List[T]


class DataObjectResponse(BaseModel, Generic[T]):
    data: T


class DeletedPayload(BaseModel):
    id: str


class DeleteResponse(BaseModel):
    data: DeletedPayload


class ErrorBody(BaseModel):
    code: str
    message: str


class ErrorEnvelope(BaseModel):
    error: ErrorBody
