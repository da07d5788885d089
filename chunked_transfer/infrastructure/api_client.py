"""HTTP implementation of the RemoteObjectClient port."""

from typing import Any, Dict, Optional, Type, TypeVar

import httpx
import pydantic

from ..application.configuration import RetryPolicy
from ..application.domain import (
    ByteRange,
    CloseAcknowledgement,
    DownloadLocation,
    ObjectState,
    ObjectStatus,
    PartAck,
    RemoteFileObject,
    RemoteObjectClient,
    UploadTarget,
)
from ..application.exceptions import PermanentTransferError, StateError

from .api_models import (
    CloseResponse,
    CommitPartResponse,
    DescribeResponse,
    DownloadResponse,
    FileNewResponse,
    UploadSlotResponse,
)
from .base_client import BaseClient, error_for_exception, error_for_response
from .decorators import retry_on_transient_error

Model = TypeVar("Model", bound=pydantic.BaseModel)

_FILE_NEW_ROUTE = "file/new"


class HttpObjectClient(BaseClient, RemoteObjectClient):
    """Talks to the object-storage API with one POST per operation."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        token: str,
        base_url: str,
        timeout: float,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initializes the API client adapter."""
        super().__init__(client, token)
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()

    async def _execute_call(
        self,
        route: str,
        payload: Dict[str, Any],
        object_id: Optional[str] = None,
        part_index: Optional[int] = None,
    ) -> Any:
        """Executes the raw HTTP POST request."""
        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            response = await self.client.post(
                f"{self.base_url}/{route}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TransportError as e:
            raise error_for_exception(
                e, object_id=object_id, part_index=part_index
            ) from e

        if response.is_error:
            raise error_for_response(
                response, object_id=object_id, part_index=part_index
            )

        try:
            return response.json()
        except ValueError as e:
            raise PermanentTransferError(
                f"Response to {route} is not JSON",
                object_id=object_id,
                part_index=part_index,
            ) from e

    def _validate(
        self, model: Type[Model], data: Any, object_id: Optional[str] = None
    ) -> Model:
        """Validates raw response data against a response model."""
        try:
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            raise PermanentTransferError(
                f"Malformed {model.__name__}: {e.error_count()} validation errors",
                object_id=object_id,
            ) from e

    async def create_file(
        self,
        container: str,
        name: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> RemoteFileObject:
        payload = {"project": container}
        if name is not None:
            payload["name"] = name
        if media_type is not None:
            payload["media"] = media_type

        raw_data = await self._execute_call(_FILE_NEW_ROUTE, payload)
        created = self._validate(FileNewResponse, raw_data)
        return RemoteFileObject(id=created.id, container=container)

    async def request_part_slot(
        self, object_id: str, part_index: int, size: int, checksum: str
    ) -> UploadTarget:
        raw_data = await self._execute_call(
            f"{object_id}/upload",
            {"index": part_index, "size": size, "md5": checksum},
            object_id=object_id,
            part_index=part_index,
        )
        slot = self._validate(UploadSlotResponse, raw_data, object_id)
        return UploadTarget(url=slot.url, headers=slot.headers, expires=slot.expires)

    async def commit_part(
        self, object_id: str, part_index: int, checksum: str
    ) -> PartAck:
        raw_data = await self._execute_call(
            f"{object_id}/commitPart",
            {"index": part_index, "md5": checksum},
            object_id=object_id,
            part_index=part_index,
        )
        commit = self._validate(CommitPartResponse, raw_data, object_id)
        return PartAck(index=commit.index, checksum=commit.md5)

    @retry_on_transient_error
    async def request_close(self, object_id: str) -> CloseAcknowledgement:
        """
        Ask the service to close an object.

        A lifecycle rejection from the service (e.g. an object without
        parts) is returned as a rejected acknowledgement, not raised.
        """

        try:
            raw_data = await self._execute_call(
                f"{object_id}/close", {}, object_id=object_id
            )
        except StateError as e:
            self.logger.info(f"Close of {object_id} rejected: {e.message}")
            return CloseAcknowledgement(accepted=False, reason=e.message)

        self._validate(CloseResponse, raw_data, object_id)
        return CloseAcknowledgement(accepted=True)

    @retry_on_transient_error
    async def poll_state(self, object_id: str) -> ObjectStatus:
        raw_data = await self._execute_call(
            f"{object_id}/describe",
            {"fields": {"state": True, "parts": True, "size": True}},
            object_id=object_id,
        )
        described = self._validate(DescribeResponse, raw_data, object_id)
        return ObjectStatus(
            state=ObjectState(described.state),
            part_count=described.parts,
            size=described.size,
        )

    async def resolve_download_location(
        self, object_id: str, byte_range: Optional[ByteRange] = None
    ) -> DownloadLocation:
        payload: Dict[str, Any] = {}
        if byte_range is not None:
            payload["range"] = {"start": byte_range.start, "end": byte_range.end}

        raw_data = await self._execute_call(
            f"{object_id}/download", payload, object_id=object_id
        )
        location = self._validate(DownloadResponse, raw_data, object_id)
        self.logger.debug(f"Resolved download location for {object_id}")
        return DownloadLocation(
            url=location.url,
            length=location.size,
            headers=location.headers,
            expires=location.expires,
        )
