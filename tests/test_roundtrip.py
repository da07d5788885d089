"""End-to-end upload, close and download against the fake service."""

import io
import random

import pytest

from chunked_transfer.application.exceptions import StateError

MiB = 1024 * 1024
CHUNK = 4


def _payload(length: int, seed: int = 0) -> bytes:
    return random.Random(seed).randbytes(length)


@pytest.mark.parametrize(
    "length",
    [1, CHUNK - 1, CHUNK, CHUNK + 1, 2 * CHUNK, 5 * CHUNK, 7 * CHUNK + 3],
)
async def test_bytes_round_trip(service, length):
    data = _payload(length)
    file = await service.create_file("project-1")

    await service.upload(file, data)
    closed = await service.close_and_wait(file)

    assert await service.download_bytes(closed) == data
    assert closed.size == length


@pytest.mark.parametrize("length", [1, CHUNK, CHUNK + 1, 9 * CHUNK + 1])
async def test_stream_round_trip(service, length):
    data = _payload(length, seed=length)
    file = await service.create_file("project-1")

    await service.upload_stream(file, io.BytesIO(data))
    closed = await service.close_and_wait(file)

    streamed = b"".join([block async for block in service.download_stream(closed)])
    assert streamed == data


async def test_zero_length_fails_at_close(service):
    file = await service.create_file("project-1")

    summary = await service.upload(file, b"")

    assert summary.part_count == 0
    with pytest.raises(StateError):
        await service.close_and_wait(file)


async def test_repeated_downloads_are_identical(service):
    closed = await service.upload_file("project-1", b"Test")

    first = await service.download_bytes(closed)
    second = await service.download_bytes(closed)

    assert first == second == b"Test"


@pytest.mark.parametrize("chunk_size, parts", [(5 * MiB, 3), (7 * MiB, 2)])
async def test_chunk_size_only_changes_part_count(make_service, chunk_size, parts):
    data = _payload(12 * MiB, seed=12)
    service = make_service(chunk_size=chunk_size)
    file = await service.create_file("project-1")

    summary = await service.upload(file, data)
    closed = await service.close_and_wait(file)

    assert summary.part_count == parts
    assert await service.download_bytes(closed) == data


async def test_out_of_order_commits_reassemble_in_index_order(make_service, remote):
    part_count = 12
    service = make_service(max_concurrency=part_count)
    delays = list(range(part_count))
    random.Random(3).shuffle(delays)
    remote.put_delays = {
        index: delay * 0.005 for index, delay in enumerate(delays, start=1)
    }
    data = _payload(part_count * CHUNK, seed=99)

    file = await service.create_file("project-1")
    await service.upload(file, data)
    closed = await service.close_and_wait(file)

    assert remote.commit_order != sorted(remote.commit_order)
    assert await service.download_bytes(closed) == data
