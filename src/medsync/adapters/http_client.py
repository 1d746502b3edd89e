"""HTTP adapter for the remote medications API.

``MedicationAPI`` is the thin httpx client that knows endpoints, headers and
status handling. ``HttpRemoteClient`` implements :class:`RemoteClient` on top
of it and turns response bodies into typed DTOs.
"""

import logging
from typing import Any, Dict, List, Optional, Set, Type, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from ..api_models import (
    CreateMedicationRequest,
    DataArrayResponse,
    DataObjectResponse,
    DeleteResponse,
    ErrorEnvelope,
    HealthResponse,
    MedicationDTO,
    UpdateMedicationRequest,
)
from ..remote import (
    AuthenticationError,
    DecodeError,
    InvalidResponseError,
    NotFoundError,
    RemoteClient,
    RemoteStatusError,
    ServerError,
    TransportError,
)


logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class MedicationAPI:
    """Medications REST API client."""

    DEFAULT_BASE_URL = "https://api-jictu6k26a-uc.a.run.app"

    def __init__(self, base_url: str = DEFAULT_BASE_URL, api_key: str = "",
                 timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Initialize the API client.

        Args:
            base_url: Service root URL
            api_key: Value sent in the ``x-api-key`` header
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self):
        await self.client.aclose()

    @staticmethod
    def collection_path(username: str, medication_id: Optional[str] = None) -> str:
        path = f"/users/{quote(username, safe='')}/medications"
        if medication_id is not None:
            path += f"/{quote(medication_id, safe='')}"
        return path

    async def request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None,
                      accepted: Set[int] = frozenset({200}), auth: bool = True) -> httpx.Response:
        """Send a request and check its status.

        Args:
            method: HTTP method
            path: Path relative to the base URL
            json: Optional JSON body
            accepted: Status codes treated as success
            auth: Whether to send the API key

        Returns:
            The accepted response

        Raises:
            NotFoundError: On 404
            AuthenticationError: On 401/403 with an error envelope
            ServerError: On any other status with an error envelope
            RemoteStatusError: On any other status without one
            TransportError: If the request could not be completed
        """
        headers = {}
        if auth:
            headers["x-api-key"] = self.api_key
        if json is not None:
            headers["Content-Type"] = "application/json"

        logger.debug(f"{method} {self.base_url}{path}")
        try:
            response = await self.client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request to {path} timed out") from e
        except httpx.RequestError as e:
            raise TransportError(f"Request to {path} failed: {e}") from e

        if not isinstance(response, httpx.Response):
            raise InvalidResponseError("Invalid response.")

        logger.debug(f"{response.status_code} {method} {path}")

        if response.status_code not in accepted:
            raise self._status_error(response)

        return response

    @staticmethod
    def _status_error(response: httpx.Response) -> RemoteStatusError:
        status = response.status_code
        body = response.text
        envelope = None
        try:
            envelope = ErrorEnvelope.model_validate_json(body)
        except ValidationError:
            pass

        if status == 404:
            if envelope:
                return NotFoundError(status, body=body, code=envelope.error.code,
                                     message=envelope.error.message)
            return NotFoundError(status, body=body)

        if envelope is None:
            return RemoteStatusError(status, body=body)

        error_cls = AuthenticationError if status in (401, 403) else ServerError
        logger.debug(f"Server error decoded: {envelope.error.code} {envelope.error.message}")
        return error_cls(envelope.error.code, envelope.error.message, status, body=body)

    # Endpoints

    async def health(self) -> httpx.Response:
        return await self.request("GET", "/health", auth=False)

    async def list_medications(self, username: str) -> httpx.Response:
        return await self.request("GET", self.collection_path(username))

    async def get_medication(self, username: str, medication_id: str) -> httpx.Response:
        return await self.request("GET", self.collection_path(username, medication_id))

    async def create_medication(self, username: str, body: Dict[str, Any]) -> httpx.Response:
        return await self.request("POST", self.collection_path(username), json=body,
                                  accepted={200, 201})

    async def update_medication(self, username: str, medication_id: str,
                                body: Dict[str, Any]) -> httpx.Response:
        return await self.request("PUT", self.collection_path(username, medication_id), json=body)

    async def delete_medication(self, username: str, medication_id: str) -> httpx.Response:
        return await self.request("DELETE", self.collection_path(username, medication_id))


def decode(response: httpx.Response, model: Type[M]) -> M:
    """Decode a response body into ``model``.

    Raises:
        DecodeError: If the body is not valid JSON of the expected shape
    """
    body = response.text
    try:
        return model.model_validate_json(body)
    except ValidationError as e:
        logger.debug(f"Decoding failed for {model.__name__}: {e}")
        raise DecodeError(str(e), body) from e


class HttpRemoteClient(RemoteClient):
    """Remote client backed by the medications REST API."""

    def __init__(self, api: MedicationAPI):
        self.api = api

    @classmethod
    def from_settings(cls, settings) -> "HttpRemoteClient":
        """Build a client from :class:`medsync.config.MedSyncSettings`."""
        return cls(MedicationAPI(
            base_url=settings.api_base_url,
            api_key=settings.api_key,
            timeout=settings.timeout_seconds,
        ))

    async def aclose(self):
        await self.api.aclose()

    async def health(self) -> HealthResponse:
        return decode(await self.api.health(), HealthResponse)

    async def list_medications(self, username: str) -> List[MedicationDTO]:
        response = await self.api.list_medications(username)
        return decode(response, DataArrayResponse[MedicationDTO]).data

    async def get_medication(self, username: str, medication_id: str) -> MedicationDTO:
        response = await self.api.get_medication(username, medication_id)
        return decode(response, DataObjectResponse[MedicationDTO]).data

    async def create_medication(self, username: str, body: CreateMedicationRequest) -> MedicationDTO:
        response = await self.api.create_medication(username, body.model_dump(mode="json"))
        created = decode(response, DataObjectResponse[MedicationDTO]).data
        logger.info(f"Created remote medication {created.id} for {username}")
        return created

    async def update_medication(self, username: str, medication_id: str,
                                body: UpdateMedicationRequest) -> MedicationDTO:
        payload = body.model_dump(mode="json", exclude_none=True)
        response = await self.api.update_medication(username, medication_id, payload)
        updated = decode(response, DataObjectResponse[MedicationDTO]).data
        logger.info(f"Updated remote medication {medication_id} for {username}")
        return updated

    async def delete_medication(self, username: str, medication_id: str) -> None:
        response = await self.api.delete_medication(username, medication_id)
        decode(response, DeleteResponse)
        logger.info(f"Deleted remote medication {medication_id} for {username}")
