"""
Lifecycle coordination for a single file object.

The CloseStateMachine is the only place where the state of an open object
is read and written. Part uploads ask it for an index and for permission to
commit, and report each commit back; they never change the state
themselves. Closing waits for in-flight commits, checks the committed
parts, asks the remote service to close and then polls until the service
reports the object as closed.
"""

import asyncio
import contextlib
import dataclasses
import logging
from typing import AsyncIterator, Dict, List, Optional

from .configuration import TransferConfiguration
from .domain import ClosedFile, ObjectState, RemoteFileObject, RemoteObjectClient
from .exceptions import CloseTimeoutError, StateError, TransferError


class CloseStateMachine:
    """Drives one object through open -> closing -> closed (or failed)."""

    def __init__(
        self,
        client: RemoteObjectClient,
        config: TransferConfiguration,
        remote: RemoteFileObject,
        committed_parts: int = 0,
    ):
        """
        Initializes the state machine.

        Args:
            client: The remote service port.
            config: Poll interval and close timeout come from here.
            remote: The object being driven; its state is the start state.
            committed_parts: Parts 1..N already committed remotely before
                this handle was created.
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self.client = client
        self.config = config
        self.remote = remote
        self.upload_lock = asyncio.Lock()

        self._state = remote.state
        self._condition = asyncio.Condition()
        self._inflight_commits = 0
        self._preexisting = committed_parts
        self._next_index = committed_parts + 1
        self._committed: Dict[int, int] = {}
        self._closed: Optional[ClosedFile] = None

    @property
    def state(self) -> ObjectState:
        return self._state

    @property
    def committed_part_count(self) -> int:
        return self._preexisting + len(self._committed)

    @property
    def committed_bytes(self) -> int:
        return sum(self._committed.values())

    def ensure_open(self, part_index: Optional[int] = None):
        if self._state is not ObjectState.OPEN:
            raise StateError(
                f"File object is {self._state.value}; parts can only be "
                "added while it is open",
                object_id=self.remote.id,
                part_index=part_index,
            )

    async def reserve_index(self) -> int:
        """Hand out the next part index, appending after earlier uploads."""
        async with self._condition:
            self.ensure_open()
            index = self._next_index
            self._next_index += 1
            return index

    @contextlib.asynccontextmanager
    async def commit_slot(self, part_index: int) -> AsyncIterator[None]:
        """
        Hold the object open while a part is being committed.

        A close requested meanwhile waits until the slot is released.
        """
        async with self._condition:
            self.ensure_open(part_index)
            self._inflight_commits += 1
        try:
            yield
        finally:
            async with self._condition:
                self._inflight_commits -= 1
                self._condition.notify_all()

    async def record_commit(self, part_index: int, length: int):
        async with self._condition:
            self._committed[part_index] = length

    def _missing_parts(self) -> List[int]:
        expected = range(self._preexisting + 1, self._next_index)
        return [index for index in expected if index not in self._committed]

    def _validate_parts(self):
        if self.committed_part_count < 1:
            raise StateError(
                "A file object needs at least one committed part to be closed",
                object_id=self.remote.id,
            )
        missing = self._missing_parts()
        if missing:
            raise StateError(
                f"Cannot close a file object with uncommitted parts {missing}",
                object_id=self.remote.id,
            )

    async def _request_close(self):
        try:
            ack = await self.client.request_close(self.remote.id)
        except TransferError as e:
            raise e.with_context(object_id=self.remote.id)

        if not ack.accepted:
            raise StateError(
                f"Close rejected: {ack.reason or 'no reason given'}",
                object_id=self.remote.id,
            )
        self._state = ObjectState.CLOSING
        self.logger.info(f"Close of {self.remote.id} accepted, waiting...")

    def _timed_out(self) -> CloseTimeoutError:
        self._state = ObjectState.FAILED
        return CloseTimeoutError(
            f"File object did not close within {self.config.close_timeout}s",
            object_id=self.remote.id,
        )

    async def _wait_until_closed(self) -> ClosedFile:
        """
        Poll until the service reports the object as closed.

        The close timeout bounds the whole wait, including polls that hang.
        An object still reported as open or closing is polled again until
        the deadline.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.close_timeout
        delay = self.config.close_poll_interval

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise self._timed_out()
            try:
                status = await asyncio.wait_for(
                    self.client.poll_state(self.remote.id), timeout=remaining
                )
            except asyncio.TimeoutError:
                raise self._timed_out() from None
            except TransferError as e:
                self._state = ObjectState.FAILED
                raise e.with_context(object_id=self.remote.id)

            if status.state is ObjectState.CLOSED:
                self._state = ObjectState.CLOSED
                self._closed = ClosedFile(
                    object=self.remote.with_state(ObjectState.CLOSED),
                    size=(
                        status.size
                        if status.size is not None
                        else self.committed_bytes
                    ),
                    part_count=status.part_count or self.committed_part_count,
                )
                self.logger.info(
                    f"File object {self.remote.id} is closed "
                    f"({self._closed.part_count} parts, {self._closed.size} bytes)"
                )
                return self._closed

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise self._timed_out()

            self.logger.debug(
                f"{self.remote.id} is {status.state.value}, polling again "
                f"in {min(delay, remaining):.2f}s"
            )
            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, self.config.close_poll_max_interval)

    async def close_and_wait(self) -> ClosedFile:
        """
        Close the object and block until the remote service confirms it.

        Returns:
            The closed handle. Closing an already closed object returns the
            same handle without contacting the service.

        Raises:
            StateError: If no part was committed, parts are missing, or the
                service rejects the close. The state stays open.
            CloseTimeoutError: If the object is not closed within the close
                timeout. The state becomes failed; closing may be retried.
        """

        async with self._condition:
            if self._state is ObjectState.CLOSED and self._closed is not None:
                self.logger.info(f"{self.remote.id} is already closed.")
                return self._closed

            if self._state is ObjectState.OPEN:
                await self._condition.wait_for(
                    lambda: self._inflight_commits == 0
                )
                self._validate_parts()
                await self._request_close()

            return await self._wait_until_closed()


@dataclasses.dataclass(frozen=True)
class OpenFile:
    """Handle for a file object that still accepts parts."""

    object: RemoteFileObject
    lifecycle: CloseStateMachine

    @classmethod
    def attach(
        cls,
        client: RemoteObjectClient,
        config: TransferConfiguration,
        remote: RemoteFileObject,
        committed_parts: int = 0,
    ) -> "OpenFile":
        return cls(
            object=remote,
            lifecycle=CloseStateMachine(client, config, remote, committed_parts),
        )

    @property
    def id(self) -> str:
        return self.object.id

    @property
    def state(self) -> ObjectState:
        return self.lifecycle.state

    async def close_and_wait(self) -> ClosedFile:
        return await self.lifecycle.close_and_wait()
