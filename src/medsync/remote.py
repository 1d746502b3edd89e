"""Remote client interface and error taxonomy.

This module defines the interface the reconciler consumes to talk to the
remote medications collection, and the exceptions every adapter raises.
Only :class:`NotFoundError` is an expected condition; every other error
aborts the current sync unit.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from .api_models import (
    CreateMedicationRequest,
    HealthResponse,
    MedicationDTO,
    UpdateMedicationRequest,
)


logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """Base exception for remote operations."""
    pass


class TransportError(RemoteError):
    """Connectivity problems or timeouts."""
    pass


class InvalidResponseError(RemoteError):
    """The transport returned something that is not an HTTP response."""
    pass


class DecodeError(RemoteError):
    """A response body did not have the expected shape."""

    def __init__(self, message: str, body: str = ""):
        super().__init__(f"Decoding error: {message}")
        self.message = message
        self.body = body


class RemoteStatusError(RemoteError):
    """The server answered with a status that was not accepted."""

    def __init__(self, status: int, body: str = "", code: Optional[str] = None,
                 message: Optional[str] = None):
        self.status = status
        self.body = body
        self.code = code
        self.message = message
        if code is not None:
            text = f"HTTP {status} {code}: {message}"
        else:
            text = f"HTTP {status}: {body}"
        super().__init__(text)

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class ServerError(RemoteStatusError):
    """The server rejected the request with a structured error envelope."""

    def __init__(self, code: str, message: str, status: int, body: str = ""):
        super().__init__(status, body=body, code=code, message=message)


class AuthenticationError(ServerError):
    """The API key was missing or refused."""
    pass


class NotFoundError(RemoteStatusError):
    """The remote record does not exist.

    Used as a control signal: on fetch it means "never pushed", on delete it
    means "already gone".
    """

    def __init__(self, status: int = 404, body: str = "", code: Optional[str] = None,
                 message: Optional[str] = None):
        super().__init__(status, body=body, code=code, message=message)


def is_not_found(error: BaseException) -> bool:
    """Check whether an error reports a missing remote record."""
    return isinstance(error, NotFoundError) or (
        isinstance(error, RemoteStatusError) and error.is_not_found
    )


class RemoteClient(ABC):
    """Typed request/response operations against a user's medications.

    Every call is scoped by the owner's username. Implementations raise
    :class:`NotFoundError` when a single record is missing and another
    :class:`RemoteError` subclass for any other failure.
    """

    async def health(self) -> HealthResponse:
        """Check that the service is reachable."""
        return HealthResponse(status="ok")

    @abstractmethod
    async def list_medications(self, username: str) -> List[MedicationDTO]:
        """Fetch the owner's complete remote collection."""
        pass

    @abstractmethod
    async def get_medication(self, username: str, medication_id: str) -> MedicationDTO:
        """Fetch one record.

        Raises:
            NotFoundError: If the record does not exist remotely
        """
        pass

    @abstractmethod
    async def create_medication(self, username: str, body: CreateMedicationRequest) -> MedicationDTO:
        """Create a record and return the server's canonical copy."""
        pass

    @abstractmethod
    async def update_medication(self, username: str, medication_id: str,
                                body: UpdateMedicationRequest) -> MedicationDTO:
        """Update a record and return the server's canonical copy."""
        pass

    @abstractmethod
    async def delete_medication(self, username: str, medication_id: str) -> None:
        """Delete a record.

        Raises:
            NotFoundError: If the record was already gone
        """
        pass

    async def aclose(self):
        """Release transport resources."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
