"""Shared pytest fixtures for all tests."""

import asyncio
import collections
import hashlib
from typing import Dict, List, Optional, Set

import pytest

from chunked_transfer.application.configuration import RetryPolicy, TransferConfiguration
from chunked_transfer.application.domain import (
    CloseAcknowledgement,
    DataTransport,
    DownloadLocation,
    ObjectState,
    ObjectStatus,
    PartAck,
    RemoteFileObject,
    RemoteObjectClient,
    UploadTarget,
)
from chunked_transfer.application.exceptions import (
    LocationExpiredError,
    PermanentTransferError,
    StateError,
    TransientTransferError,
)
from chunked_transfer.application.service import TransferService
from chunked_transfer.infrastructure.checksums import Md5Hasher

_SCHEME = "fake://"


class FakeObject:
    """Server-side record of one file object."""

    def __init__(self, object_id: str, container: str):
        self.id = object_id
        self.container = container
        self.state = ObjectState.OPEN
        self.staged: Dict[int, bytes] = {}
        self.parts: Dict[int, bytes] = {}
        self.polls_until_closed = 0
        self.content = b""


class FakeObjectService(RemoteObjectClient, DataTransport):
    """
    In-memory stand-in for the object-storage service and its data URLs.

    Every call is counted in `calls`. Failures can be injected per part
    index (uploads) or per number of calls (downloads).
    """

    def __init__(self):
        self.objects: Dict[str, FakeObject] = {}
        self.calls = collections.Counter()
        self.commit_order: List[int] = []
        self.put_delays: Dict[int, float] = {}
        self.transient_put_failures: Dict[int, int] = {}
        self.permanent_put_failures: Set[int] = set()
        self.fetch_delays: Dict[int, float] = {}
        self.fetch_order: List[int] = []
        self.transient_fetch_failures = 0
        self.expired_fetches = 0
        self.polls_before_closed = 1
        self.close_rejection: Optional[str] = None
        self._location_generation = 0

    @property
    def network_calls(self) -> int:
        return sum(self.calls.values())

    def _get(self, object_id: str) -> FakeObject:
        if object_id not in self.objects:
            raise PermanentTransferError("ResourceNotFound", object_id=object_id)
        return self.objects[object_id]

    def add_closed_object(self, container: str, parts: List[bytes]) -> str:
        object_id = f"file-{len(self.objects) + 1:024d}"
        obj = FakeObject(object_id, container)
        obj.parts = {index: part for index, part in enumerate(parts, start=1)}
        obj.content = b"".join(parts)
        obj.state = ObjectState.CLOSED
        self.objects[object_id] = obj
        return object_id

    async def create_file(self, container, name=None, media_type=None):
        self.calls["create_file"] += 1
        object_id = f"file-{len(self.objects) + 1:024d}"
        self.objects[object_id] = FakeObject(object_id, container)
        return RemoteFileObject(id=object_id, container=container)

    async def request_part_slot(self, object_id, part_index, size, checksum):
        self.calls["request_part_slot"] += 1
        obj = self._get(object_id)
        if obj.state is not ObjectState.OPEN:
            raise StateError("InvalidState: object is not open", object_id=object_id)
        return UploadTarget(url=f"{_SCHEME}{object_id}/{part_index}")

    async def put_part(self, target, content):
        self.calls["put_part"] += 1
        object_id, index = target.url[len(_SCHEME):].rsplit("/", 1)
        index = int(index)

        await asyncio.sleep(self.put_delays.get(index, 0))
        if index in self.permanent_put_failures:
            raise PermanentTransferError("PermissionDenied", object_id=object_id)
        if self.transient_put_failures.get(index, 0) > 0:
            self.transient_put_failures[index] -= 1
            raise TransientTransferError("connection reset", object_id=object_id)
        self._get(object_id).staged[index] = bytes(content)

    async def commit_part(self, object_id, part_index, checksum):
        self.calls["commit_part"] += 1
        obj = self._get(object_id)
        if obj.state is not ObjectState.OPEN:
            raise StateError("InvalidState: object is not open", object_id=object_id)
        staged = obj.staged.get(part_index)
        if staged is None or hashlib.md5(staged).hexdigest() != checksum:
            raise PermanentTransferError("checksum mismatch", object_id=object_id)
        obj.parts[part_index] = staged
        self.commit_order.append(part_index)
        return PartAck(index=part_index, checksum=checksum)

    async def request_close(self, object_id):
        self.calls["request_close"] += 1
        obj = self._get(object_id)
        if self.close_rejection is not None:
            return CloseAcknowledgement(accepted=False, reason=self.close_rejection)
        if not obj.parts:
            return CloseAcknowledgement(
                accepted=False, reason="An object needs at least one part"
            )
        if obj.state is ObjectState.OPEN:
            obj.state = ObjectState.CLOSING
            obj.polls_until_closed = self.polls_before_closed
        return CloseAcknowledgement(accepted=True)

    async def poll_state(self, object_id):
        self.calls["poll_state"] += 1
        obj = self._get(object_id)
        if obj.state is ObjectState.CLOSING:
            if obj.polls_until_closed <= 0:
                obj.content = b"".join(obj.parts[i] for i in sorted(obj.parts))
                obj.state = ObjectState.CLOSED
            else:
                obj.polls_until_closed -= 1
        size = len(obj.content) if obj.state is ObjectState.CLOSED else None
        return ObjectStatus(state=obj.state, part_count=len(obj.parts), size=size)

    async def resolve_download_location(self, object_id, byte_range=None):
        self.calls["resolve_download_location"] += 1
        obj = self._get(object_id)
        if obj.state is not ObjectState.CLOSED:
            raise StateError("InvalidState: object is not closed", object_id=object_id)
        self._location_generation += 1
        return DownloadLocation(
            url=f"{_SCHEME}{object_id}?generation={self._location_generation}",
            length=len(obj.content),
        )

    async def fetch_range(self, location, byte_range):
        self.calls["fetch_range"] += 1
        await asyncio.sleep(self.fetch_delays.get(byte_range.start, 0))
        if self.expired_fetches > 0:
            self.expired_fetches -= 1
            raise LocationExpiredError("ExpiredToken")
        if self.transient_fetch_failures > 0:
            self.transient_fetch_failures -= 1
            raise TransientTransferError("read timeout")
        self.fetch_order.append(byte_range.start)
        object_id = location.url[len(_SCHEME):].split("?")[0]
        return self._get(object_id).content[byte_range.start:byte_range.end]


def fast_configuration(**overrides) -> TransferConfiguration:
    """A configuration with tiny chunks and no waiting between retries."""
    values = dict(
        chunk_size=4,
        max_concurrency=3,
        retry=RetryPolicy(
            max_retries=2, backoff_multiplier=0, backoff_min=0, backoff_max=0
        ),
        close_poll_interval=0,
        close_poll_max_interval=0,
        close_timeout=5,
    )
    values.update(overrides)
    return TransferConfiguration(**values)


@pytest.fixture
def remote():
    """
    Create an empty fake object service.

    Returns:
        FakeObjectService acting as both client and transport
    """
    return FakeObjectService()


@pytest.fixture
def make_service(remote):
    """
    Build TransferService instances against the fake service.

    Args:
        remote: The fake object service fixture

    Returns:
        Factory accepting TransferConfiguration overrides
    """

    def factory(**overrides) -> TransferService:
        return TransferService(
            client=remote,
            transport=remote,
            hasher=Md5Hasher(),
            config=fast_configuration(**overrides),
        )

    return factory


@pytest.fixture
def service(make_service):
    """TransferService with the default fast configuration."""
    return make_service()
