"""
This module defines the core domain models for the application.

These classes represent the pure, technology-agnostic entities and data
structures that the transfer logic operates on, together with the ports
through which the logic reaches the remote object-storage service.
"""

import dataclasses
import datetime
import enum
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .exceptions import ValidationError


class ObjectState(str, enum.Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


class PartStatus(enum.Enum):
    PENDING = "pending"
    IN_FLIGHT = "in-flight"
    COMMITTED = "committed"
    FAILED = "failed"


# --- Domain Models ---

@dataclasses.dataclass(frozen=True)
class RemoteFileObject:
    """
    A file object held by the remote service.

    The container is fixed when the object is created and never changes.
    The state recorded here is a snapshot; the live state of an open object
    is owned by its CloseStateMachine.
    """

    id: str
    container: str
    state: ObjectState = ObjectState.OPEN

    def __post_init__(self):
        if not self.id:
            raise ValidationError("A file object requires an id")
        if not self.container:
            raise ValidationError(
                "A file object requires a container", object_id=self.id
            )

    def with_state(self, state: ObjectState) -> "RemoteFileObject":
        return dataclasses.replace(self, state=state)


@dataclasses.dataclass(frozen=True)
class PartDescriptor:
    """Position of one part within the logical source."""

    index: int
    offset: int
    length: int

    @property
    def end(self) -> int:
        return self.offset + self.length


@dataclasses.dataclass
class UploadPart:
    """The bytes of one part and their transfer status."""

    descriptor: PartDescriptor
    content: bytes
    status: PartStatus = PartStatus.PENDING

    @property
    def index(self) -> int:
        return self.descriptor.index


@dataclasses.dataclass(frozen=True)
class ByteRange:
    """A half-open byte range [start, end)."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start

    def header(self) -> str:
        """Render the range as an HTTP Range header value."""
        return f"bytes={self.start}-{self.end - 1}"

    def __str__(self) -> str:
        return f"[{self.start}, {self.end})"


@dataclasses.dataclass(frozen=True)
class UploadTarget:
    """Where the bytes of one part are to be sent."""

    url: str
    headers: Dict[str, str] = dataclasses.field(default_factory=dict)
    expires: Optional[datetime.datetime] = None


@dataclasses.dataclass(frozen=True)
class DownloadLocation:
    """A possibly time-limited URL serving the content of a closed object."""

    url: str
    length: int
    headers: Dict[str, str] = dataclasses.field(default_factory=dict)
    expires: Optional[datetime.datetime] = None

    def is_expired(self, now: Optional[datetime.datetime] = None) -> bool:
        if self.expires is None:
            return False
        expires = self.expires
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=datetime.timezone.utc)
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return now >= expires


@dataclasses.dataclass(frozen=True)
class PartAck:
    index: int
    checksum: str


@dataclasses.dataclass(frozen=True)
class CloseAcknowledgement:
    accepted: bool
    reason: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class ObjectStatus:
    """State of a file object as reported by the remote service."""

    state: ObjectState
    part_count: int = 0
    size: Optional[int] = None


@dataclasses.dataclass(frozen=True)
class ClosedFile:
    """
    Handle for a closed, immutable file object.

    Only this handle is accepted by the download operations, so content is
    never served from an object that has not been closed.
    """

    object: RemoteFileObject
    size: int
    part_count: int

    @property
    def id(self) -> str:
        return self.object.id

    @property
    def state(self) -> ObjectState:
        return ObjectState.CLOSED


# --- Ports (Interfaces) ---

class RemoteObjectClient(ABC):
    """A port for the remote object-storage metadata service."""

    @abstractmethod
    async def create_file(
        self,
        container: str,
        name: Optional[str] = None,
        media_type: Optional[str] = None,
    ) -> RemoteFileObject:
        """Creates a new, open file object in a container."""
        pass

    @abstractmethod
    async def request_part_slot(
        self, object_id: str, part_index: int, size: int, checksum: str
    ) -> UploadTarget:
        """Requests an upload target for one part index."""
        pass

    @abstractmethod
    async def commit_part(
        self, object_id: str, part_index: int, checksum: str
    ) -> PartAck:
        """Confirms that the bytes of a part were received."""
        pass

    @abstractmethod
    async def request_close(self, object_id: str) -> CloseAcknowledgement:
        """Asks the service to start closing an object."""
        pass

    @abstractmethod
    async def poll_state(self, object_id: str) -> ObjectStatus:
        """Reports the current lifecycle state of an object."""
        pass

    @abstractmethod
    async def resolve_download_location(
        self, object_id: str, byte_range: Optional[ByteRange] = None
    ) -> DownloadLocation:
        """Resolves a URL from which a closed object can be read."""
        pass


class DataTransport(ABC):
    """A port for moving raw bytes to upload targets and from locations."""

    @abstractmethod
    async def put_part(self, target: UploadTarget, content: bytes):
        """Sends the bytes of one part to its upload target."""
        pass

    @abstractmethod
    async def fetch_range(
        self, location: DownloadLocation, byte_range: ByteRange
    ) -> bytes:
        """Fetches one byte range of a closed object."""
        pass


class Hasher(ABC):
    """A port for computing part checksums."""

    @abstractmethod
    async def digest(self, content: bytes) -> str:
        """Returns the hex digest of the given bytes."""
        pass
