"""
Concurrent, chunked upload of a byte source into an open file object.

PartUploader moves one part (slot, bytes, commit) and is the unit of retry.
UploadCoordinator plans the parts of a buffer or stream and dispatches them
across a bounded pool of worker tasks.
"""

import asyncio
import dataclasses
import logging
from typing import AsyncIterator, BinaryIO, Callable, List, Optional, Tuple, Union

from .configuration import TransferConfiguration
from .domain import (
    DataTransport,
    Hasher,
    PartAck,
    PartDescriptor,
    PartStatus,
    RemoteObjectClient,
    UploadPart,
)
from .exceptions import RetriesExhaustedError, StateError, ValidationError
from .lifecycle import OpenFile
from .planning import PartPlan, read_exact
from .retries import run_with_retries
from .tasks import gather_or_cancel

ByteSource = Union[bytes, bytearray, memoryview]
ProgressCallback = Callable[[int], None]

_NO_MORE_PARTS = None


@dataclasses.dataclass(frozen=True)
class UploadSummary:
    """What one upload call added to the file object."""

    object_id: str
    part_indices: Tuple[int, ...]
    bytes_uploaded: int

    @property
    def part_count(self) -> int:
        return len(self.part_indices)


class PartUploader:
    """Transfers one part and confirms its receipt."""

    def __init__(
        self,
        client: RemoteObjectClient,
        transport: DataTransport,
        hasher: Hasher,
        config: TransferConfiguration,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.client = client
        self.transport = transport
        self.hasher = hasher
        self.config = config

    async def _attempt(
        self, file: OpenFile, part: UploadPart, checksum: str
    ) -> PartAck:
        """Request a slot, send the bytes and commit, once."""
        file.lifecycle.ensure_open(part.index)
        target = await self.client.request_part_slot(
            file.id, part.index, len(part.content), checksum
        )
        await self.transport.put_part(target, part.content)

        async with file.lifecycle.commit_slot(part.index):
            ack = await self.client.commit_part(file.id, part.index, checksum)
            await file.lifecycle.record_commit(part.index, len(part.content))

        self.logger.debug(
            f"Committed part {part.index} of {file.id} "
            f"({len(part.content)} bytes)"
        )
        return ack

    async def upload(self, file: OpenFile, part: UploadPart) -> PartAck:
        """
        Upload and commit one part, retrying transient failures.

        Re-sending the same index with the same bytes is safe: the remote
        service treats a repeated commit as an overwrite of that index.

        Args:
            file: The open file object receiving the part.
            part: The part to upload; its status is updated in place.

        Returns:
            The service's acknowledgement of the commit.

        Raises:
            RetriesExhaustedError: If every attempt failed transiently.
            StateError: If the object is no longer open.
            PermanentTransferError: For permission or not-found errors.
        """

        checksum = await self.hasher.digest(part.content)
        part.status = PartStatus.IN_FLIGHT

        outcome = await run_with_retries(
            self._attempt,
            file,
            part,
            checksum,
            policy=self.config.retry,
            description=f"part {part.index} of {file.id}",
        )

        if outcome.ok:
            part.status = PartStatus.COMMITTED
            return outcome.value

        part.status = PartStatus.FAILED
        error = outcome.error.with_context(
            object_id=file.id, part_index=part.index
        )
        if outcome.retryable:
            raise RetriesExhaustedError(
                f"Upload failed after {self.config.retry.attempts} attempts: "
                f"{error.message}",
                object_id=file.id,
                part_index=part.index,
            ) from error
        raise error


class UploadCoordinator:
    """Runs the parts of one upload across a bounded pool of workers."""

    def __init__(self, uploader: PartUploader, config: TransferConfiguration):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.uploader = uploader
        self.config = config

    def _require_open(self, file):
        if not isinstance(file, OpenFile):
            raise StateError(
                f"Cannot upload to a file object that is "
                f"{file.state.value}",
                object_id=getattr(file, "id", None),
            )
        file.lifecycle.ensure_open()

    async def _produce(
        self,
        file: OpenFile,
        parts: AsyncIterator[Tuple[PartDescriptor, bytes]],
        queue: asyncio.Queue,
    ):
        """Number the planned parts and feed them to the workers."""
        async for descriptor, content in parts:
            index = await file.lifecycle.reserve_index()
            await queue.put(
                UploadPart(
                    descriptor=dataclasses.replace(descriptor, index=index),
                    content=content,
                )
            )
        for _ in range(self.config.max_concurrency):
            await queue.put(_NO_MORE_PARTS)

    async def _work(
        self,
        file: OpenFile,
        queue: asyncio.Queue,
        committed: List[UploadPart],
        progress: Optional[ProgressCallback],
    ):
        while True:
            part = await queue.get()
            if part is _NO_MORE_PARTS:
                return
            await self.uploader.upload(file, part)
            committed.append(part)
            if progress is not None:
                progress(len(part.content))

    async def _run(
        self,
        file: OpenFile,
        parts: AsyncIterator[Tuple[PartDescriptor, bytes]],
        progress: Optional[ProgressCallback],
    ) -> UploadSummary:
        committed: List[UploadPart] = []

        async with file.lifecycle.upload_lock:
            queue = asyncio.Queue(maxsize=self.config.max_concurrency)
            tasks = [asyncio.create_task(self._produce(file, parts, queue))]
            tasks += [
                asyncio.create_task(self._work(file, queue, committed, progress))
                for _ in range(self.config.max_concurrency)
            ]
            await gather_or_cancel(tasks)

        committed.sort(key=lambda part: part.index)
        summary = UploadSummary(
            object_id=file.id,
            part_indices=tuple(part.index for part in committed),
            bytes_uploaded=sum(len(part.content) for part in committed),
        )
        self.logger.info(
            f"Uploaded {summary.bytes_uploaded} bytes to {file.id} "
            f"in {summary.part_count} parts."
        )
        return summary

    async def upload_bytes(
        self,
        file: OpenFile,
        data: Optional[ByteSource],
        progress: Optional[ProgressCallback] = None,
    ) -> UploadSummary:
        """
        Upload an in-memory buffer.

        An empty buffer produces no parts; the object then fails to close.

        Raises:
            ValidationError: If `data` is None or not a bytes-like object.
                Raised before any network call.
            StateError: If the object is not open.
        """

        if data is None:
            raise ValidationError(
                "Upload source bytes must not be None", object_id=file.id
            )
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise ValidationError(
                f"Upload source must be bytes-like, got {type(data).__name__}",
                object_id=file.id,
            )
        self._require_open(file)

        view = memoryview(data).cast("B")
        plan = PartPlan(len(view), self.config.chunk_size)
        self.logger.info(
            f"Uploading {len(view)} bytes to {file.id} as {len(plan)} parts "
            f"with a concurrency limit of {self.config.max_concurrency}..."
        )

        async def parts():
            for descriptor in plan:
                yield descriptor, bytes(view[descriptor.offset:descriptor.end])

        return await self._run(file, parts(), progress)

    async def upload_stream(
        self,
        file: OpenFile,
        stream: Optional[BinaryIO],
        progress: Optional[ProgressCallback] = None,
    ) -> UploadSummary:
        """
        Upload a readable binary stream until it is exhausted.

        Each part is exactly one chunk read from the stream, except the
        final one which may be shorter. At most `max_concurrency` parts are
        buffered at any time.

        Raises:
            ValidationError: If `stream` is None or not readable. Raised
                before any network call.
            StateError: If the object is not open.
        """

        if stream is None:
            raise ValidationError(
                "Upload source stream must not be None", object_id=file.id
            )
        if not callable(getattr(stream, "read", None)):
            raise ValidationError(
                f"Upload source must be a readable stream, "
                f"got {type(stream).__name__}",
                object_id=file.id,
            )
        self._require_open(file)

        chunk_size = self.config.chunk_size
        self.logger.info(f"Uploading stream to {file.id}...")

        async def parts():
            index, offset = 1, 0
            while True:
                block = await asyncio.to_thread(read_exact, stream, chunk_size)
                if not block:
                    return
                yield PartDescriptor(index, offset, len(block)), block
                index += 1
                offset += len(block)
                if len(block) < chunk_size:
                    return

        return await self._run(file, parts(), progress)
