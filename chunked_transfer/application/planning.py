"""
Splitting of a byte source into ordered, non-overlapping parts.

Nothing in this module performs network I/O.
"""

from typing import BinaryIO, Iterator

from .domain import PartDescriptor
from .exceptions import ValidationError


class PartPlan:
    """
    The parts covering `total_length` bytes in pieces of `chunk_size`.

    The plan is lazy and restartable: every iteration yields descriptors
    1..ceil(total_length / chunk_size) afresh. A zero-length source has no
    parts.
    """

    def __init__(self, total_length: int, chunk_size: int):
        if not isinstance(chunk_size, int) or chunk_size <= 0:
            raise ValidationError(
                f"chunk_size must be a positive integer, got {chunk_size!r}"
            )
        if total_length < 0:
            raise ValidationError(
                f"total_length must not be negative, got {total_length}"
            )
        self.total_length = total_length
        self.chunk_size = chunk_size

    def __len__(self) -> int:
        return -(-self.total_length // self.chunk_size)

    def __iter__(self) -> Iterator[PartDescriptor]:
        for position in range(len(self)):
            offset = position * self.chunk_size
            yield PartDescriptor(
                index=position + 1,
                offset=offset,
                length=min(self.chunk_size, self.total_length - offset),
            )

    def __repr__(self) -> str:
        return (
            f"PartPlan(total_length={self.total_length}, "
            f"chunk_size={self.chunk_size}, parts={len(self)})"
        )


def read_exact(stream: BinaryIO, size: int) -> bytes:
    """
    Read exactly `size` bytes from a blocking stream.

    Raw streams may return short reads before the end of the data, so this
    keeps reading until the block is full. Fewer bytes are returned only
    when the stream is exhausted.
    """
    buffer = bytearray()
    while len(buffer) < size:
        block = stream.read(size - len(buffer))
        if not block:
            break
        buffer += block
    return bytes(buffer)
