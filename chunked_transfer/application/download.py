"""
Range-based reading of closed file objects.

Content is fetched in ranges of at most `range_size` bytes. Whole-object
reads fetch ranges concurrently and place each one at its offset; streams
keep a bounded window of ranges in flight and yield them strictly in order.
"""

import asyncio
import collections
import contextlib
import dataclasses
import itertools
import logging
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Callable, Generator, Optional

from .configuration import TransferConfiguration
from .domain import (
    ByteRange,
    ClosedFile,
    DataTransport,
    DownloadLocation,
    PartDescriptor,
    RemoteObjectClient,
)
from .exceptions import (
    LocationExpiredError,
    RetriesExhaustedError,
    StateError,
    TransientTransferError,
    ValidationError,
)
from .planning import PartPlan
from .retries import run_with_retries
from .tasks import gather_or_cancel

ProgressCallback = Callable[[int], None]


@dataclasses.dataclass
class DownloadSession:
    """The state of one read over a closed object."""

    file: ClosedFile
    length: int
    cursor: int = 0
    location: Optional[DownloadLocation] = None
    lock: asyncio.Lock = dataclasses.field(
        default_factory=asyncio.Lock, repr=False
    )


class DownloadEngine:
    """Serves the content of closed file objects in upload order."""

    def __init__(
        self,
        client: RemoteObjectClient,
        transport: DataTransport,
        config: TransferConfiguration,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.client = client
        self.transport = transport
        self.config = config

    def _open_session(self, file) -> DownloadSession:
        if not isinstance(file, ClosedFile):
            state = getattr(file, "state", None)
            raise StateError(
                "File object must be closed before it can be read "
                f"(state: {state.value if state else 'unknown'})",
                object_id=getattr(file, "id", None),
            )
        return DownloadSession(file=file, length=file.size)

    def _plan(self, session: DownloadSession) -> PartPlan:
        return PartPlan(session.length, self.config.range_size)

    async def _location(self, session: DownloadSession) -> DownloadLocation:
        async with session.lock:
            if session.location is None or session.location.is_expired():
                self.logger.debug(
                    f"Resolving download location for {session.file.id}"
                )
                session.location = await self.client.resolve_download_location(
                    session.file.id
                )
            return session.location

    async def _invalidate(
        self, session: DownloadSession, location: DownloadLocation
    ):
        async with session.lock:
            if session.location is location:
                session.location = None

    async def _fetch_once(
        self, session: DownloadSession, descriptor: PartDescriptor
    ) -> bytes:
        byte_range = ByteRange(descriptor.offset, descriptor.end)
        location = await self._location(session)
        try:
            data = await self.transport.fetch_range(location, byte_range)
        except LocationExpiredError:
            self.logger.info(
                f"Download location for {session.file.id} expired, "
                f"re-resolving for range {byte_range}"
            )
            await self._invalidate(session, location)
            location = await self._location(session)
            data = await self.transport.fetch_range(location, byte_range)

        if len(data) != descriptor.length:
            raise TransientTransferError(
                f"Expected {descriptor.length} bytes, received {len(data)}",
                object_id=session.file.id,
                byte_range=str(byte_range),
            )
        return data

    async def _fetch(
        self, session: DownloadSession, descriptor: PartDescriptor
    ) -> bytes:
        """Fetch one range, retrying transient failures."""
        byte_range = ByteRange(descriptor.offset, descriptor.end)
        outcome = await run_with_retries(
            self._fetch_once,
            session,
            descriptor,
            policy=self.config.retry,
            description=f"range {byte_range} of {session.file.id}",
        )
        if outcome.ok:
            return outcome.value

        error = outcome.error.with_context(
            object_id=session.file.id, byte_range=str(byte_range)
        )
        if outcome.retryable:
            raise RetriesExhaustedError(
                f"Download failed after {self.config.retry.attempts} "
                f"attempts: {error.message}",
                object_id=session.file.id,
                byte_range=str(byte_range),
            ) from error
        raise error

    async def read_all(
        self, file: ClosedFile, progress: Optional[ProgressCallback] = None
    ) -> bytes:
        """
        Read a whole closed object into memory.

        Ranges are fetched concurrently, bounded by the concurrency limit,
        and each is copied to its own offset, so the result is in upload
        order whatever order the fetches complete in.

        Args:
            file: The closed file object.
            progress: Optional callback receiving byte counts as ranges land.

        Returns:
            The complete content of the object.

        Raises:
            StateError: If `file` is not a closed file object. No bytes are
                fetched in that case.
            RetriesExhaustedError: If a range kept failing transiently.
        """

        session = self._open_session(file)
        plan = self._plan(session)
        buffer = bytearray(session.length)
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        self.logger.info(
            f"Reading {session.length} bytes of {file.id} in {len(plan)} ranges..."
        )

        async def fetch_into(descriptor: PartDescriptor):
            async with semaphore:
                data = await self._fetch(session, descriptor)
            buffer[descriptor.offset:descriptor.end] = data
            session.cursor += len(data)
            if progress is not None:
                progress(len(data))

        await gather_or_cancel(
            [asyncio.create_task(fetch_into(descriptor)) for descriptor in plan]
        )
        return bytes(buffer)

    async def stream(self, file: ClosedFile) -> AsyncIterator[bytes]:
        """
        Yield the content of a closed object as ordered blocks.

        Every call starts a fresh session from offset 0. Up to
        `max_concurrency` ranges are fetched ahead of the consumer; they are
        cancelled if the consumer stops early.

        Raises:
            StateError: If `file` is not a closed file object.
        """

        session = self._open_session(file)
        descriptors = iter(self._plan(session))
        window = collections.deque(
            asyncio.create_task(self._fetch(session, descriptor))
            for descriptor in itertools.islice(
                descriptors, self.config.max_concurrency
            )
        )

        try:
            while window:
                data = await window.popleft()
                upcoming = next(descriptors, None)
                if upcoming is not None:
                    window.append(
                        asyncio.create_task(self._fetch(session, upcoming))
                    )
                session.cursor += len(data)
                yield data
        finally:
            for task in window:
                task.cancel()
            await asyncio.gather(*window, return_exceptions=True)

    async def download_to(
        self,
        file: ClosedFile,
        sink: BinaryIO,
        progress: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Stream a closed object into a writable binary sink.

        Returns:
            The number of bytes written.

        Raises:
            ValidationError: If `sink` is None or not writable.
            StateError: If `file` is not a closed file object.
        """

        if sink is None or not callable(getattr(sink, "write", None)):
            raise ValidationError(
                "Download sink must be a writable stream",
                object_id=getattr(file, "id", None),
            )

        written = 0
        async for block in self.stream(file):
            await asyncio.to_thread(sink.write, block)
            written += len(block)
            if progress is not None:
                progress(len(block))
        return written

    @contextlib.contextmanager
    def _atomic_target(self, destination: Path) -> Generator[Path, None, None]:
        """Provides a temporary '.part' path and ensures cleanup."""
        part_path = destination.with_suffix(destination.suffix + ".part")
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            yield part_path
        finally:
            part_path.unlink(missing_ok=True)

    async def download_to_path(
        self,
        file: ClosedFile,
        destination: Path,
        progress: Optional[ProgressCallback] = None,
    ) -> int:
        """Download a closed object to a file, replacing it atomically."""
        self._open_session(file)
        self.logger.info(f"Downloading {file.id} to {destination}...")
        with self._atomic_target(destination) as part_path:
            with open(part_path, "wb") as sink:
                written = await self.download_to(file, sink, progress)
            part_path.replace(destination)
        self.logger.info(f"Finished downloading {destination.name}")
        return written
