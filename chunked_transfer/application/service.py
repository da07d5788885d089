"""
The core application service, containing pure transfer logic.

This module defines the main orchestrator (TransferService) through which
callers create or attach to file objects, upload into them, close them and
read them back. It wires the upload coordinator, the per-object close state
machine and the download engine to the ports they share.
"""

import logging
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional, Union

from .configuration import TransferConfiguration
from .domain import *
from .download import DownloadEngine
from .exceptions import StateError, TransferError, ValidationError
from .lifecycle import OpenFile
from .upload import ByteSource, PartUploader, ProgressCallback, UploadCoordinator, UploadSummary

logger = logging.getLogger(__name__)

FileHandle = Union[OpenFile, ClosedFile]


class TransferService:
    """Orchestrates uploads, closing and downloads of file objects."""

    def __init__(
        self,
        client: RemoteObjectClient,
        transport: DataTransport,
        hasher: Hasher,
        config: TransferConfiguration,
    ):
        """Initializes the service and its reusable transfer engines."""
        self.client = client
        self.config = config
        self.coordinator = UploadCoordinator(
            PartUploader(client, transport, hasher, config), config
        )
        self.downloads = DownloadEngine(client, transport, config)

    async def create_file(
        self,
        container: str,
        name: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> OpenFile:
        """Create a new, empty file object and return its open handle."""
        remote = await self.client.create_file(container, name, media_type)
        logger.info(f"Created file object {remote.id} in {remote.container}")
        return OpenFile.attach(self.client, self.config, remote)

    async def open_file(self, object_id: str, container: str) -> FileHandle:
        """
        Attach to an existing file object.

        Returns:
            A ClosedFile if the service reports the object as closed,
            otherwise an OpenFile that continues numbering after the parts
            already committed.
        """

        remote = RemoteFileObject(id=object_id, container=container)
        try:
            status = await self.client.poll_state(object_id)
        except TransferError as e:
            raise e.with_context(object_id=object_id)

        if status.state is ObjectState.CLOSED:
            size = status.size
            if size is None:
                location = await self.client.resolve_download_location(object_id)
                size = location.length
            return ClosedFile(
                object=remote.with_state(ObjectState.CLOSED),
                size=size,
                part_count=status.part_count,
            )

        if status.state is ObjectState.FAILED:
            raise StateError(
                "File object is in a failed state", object_id=object_id
            )

        return OpenFile.attach(
            self.client,
            self.config,
            remote.with_state(status.state),
            committed_parts=status.part_count,
        )

    async def upload(
        self,
        file: OpenFile,
        data: Optional[ByteSource],
        progress: Optional[ProgressCallback] = None,
    ) -> UploadSummary:
        return await self.coordinator.upload_bytes(file, data, progress)

    async def upload_stream(
        self,
        file: OpenFile,
        stream: Optional[BinaryIO],
        progress: Optional[ProgressCallback] = None,
    ) -> UploadSummary:
        return await self.coordinator.upload_stream(file, stream, progress)

    async def close_and_wait(self, file: FileHandle) -> ClosedFile:
        if isinstance(file, ClosedFile):
            return file
        return await file.close_and_wait()

    async def upload_file(
        self,
        container: str,
        source: Union[ByteSource, BinaryIO, None],
        name: Optional[str] = None,
        media_type: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> ClosedFile:
        """
        Create a file object, upload a source into it and close it.

        The source is validated before the object is created, so an absent
        source never reaches the remote service.

        Args:
            container: The container that will own the new object.
            source: Bytes-like buffer or readable binary stream.
            name: Optional object name.
            media_type: Optional media type, e.g. "application/json".
            progress: Optional callback receiving committed byte counts.

        Returns:
            The closed handle of the new object.
        """

        if source is None:
            raise ValidationError("Upload source must not be None")
        is_buffer = isinstance(source, (bytes, bytearray, memoryview))
        if not is_buffer and not callable(getattr(source, "read", None)):
            raise ValidationError(
                "Upload source must be bytes-like or a readable stream, "
                f"got {type(source).__name__}"
            )

        file = await self.create_file(container, name, media_type)
        if is_buffer:
            await self.upload(file, source, progress)
        else:
            await self.upload_stream(file, source, progress)
        return await file.close_and_wait()

    async def download_bytes(
        self, file: FileHandle, progress: Optional[ProgressCallback] = None
    ) -> bytes:
        return await self.downloads.read_all(file, progress)

    def download_stream(self, file: FileHandle) -> AsyncIterator[bytes]:
        return self.downloads.stream(file)

    async def download_to(
        self,
        file: FileHandle,
        sink: BinaryIO,
        progress: Optional[ProgressCallback] = None,
    ) -> int:
        return await self.downloads.download_to(file, sink, progress)

    async def download_to_path(
        self,
        file: FileHandle,
        destination: Path,
        progress: Optional[ProgressCallback] = None,
    ) -> int:
        return await self.downloads.download_to_path(file, destination, progress)
