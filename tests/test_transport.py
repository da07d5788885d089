"""Unit tests for HttpDataTransport."""

import datetime

import httpx
import pytest

from chunked_transfer.application.domain import ByteRange, DownloadLocation, UploadTarget
from chunked_transfer.application.exceptions import (
    LocationExpiredError,
    PermanentTransferError,
    TransientTransferError,
)
from chunked_transfer.infrastructure.transport import HttpDataTransport

CONTENT = b"0123456789"


def make_transport(handler) -> HttpDataTransport:
    return HttpDataTransport(
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        timeout=5,
        block_size=3,
    )


def ranged_handler(request):
    start, end = request.headers["Range"].removeprefix("bytes=").split("-")
    return httpx.Response(206, content=CONTENT[int(start):int(end) + 1])


async def test_put_part_sends_bytes_and_target_headers():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["body"] = request.content
        seen["headers"] = request.headers
        return httpx.Response(200)

    target = UploadTarget(url="https://upload.test/p1", headers={"x-token": "t"})
    await make_transport(handler).put_part(target, b"abcd")

    assert seen["method"] == "PUT"
    assert seen["body"] == b"abcd"
    assert seen["headers"]["x-token"] == "t"
    assert seen["headers"]["Content-Length"] == "4"


async def test_put_part_server_error_is_transient():
    transport = make_transport(lambda request: httpx.Response(500))

    with pytest.raises(TransientTransferError):
        await transport.put_part(UploadTarget(url="https://upload.test/p1"), b"abcd")


async def test_fetch_range_sends_range_header():
    location = DownloadLocation(url="https://dl.test/f", length=len(CONTENT))

    data = await make_transport(ranged_handler).fetch_range(location, ByteRange(2, 7))

    assert data == b"23456"


async def test_fetch_range_trims_full_body_reply():
    transport = make_transport(lambda request: httpx.Response(200, content=CONTENT))
    location = DownloadLocation(url="https://dl.test/f", length=len(CONTENT))

    assert await transport.fetch_range(location, ByteRange(4, 8)) == b"4567"


async def test_expired_signature_is_location_expired():
    transport = make_transport(
        lambda request: httpx.Response(403, content=b"<Error>Request has expired</Error>")
    )
    location = DownloadLocation(url="https://dl.test/f", length=len(CONTENT))

    with pytest.raises(LocationExpiredError) as excinfo:
        await transport.fetch_range(location, ByteRange(0, 4))

    assert excinfo.value.byte_range == "[0, 4)"


async def test_past_expiry_fails_without_request():
    calls = []

    def handler(request):
        calls.append(request)
        return ranged_handler(request)

    location = DownloadLocation(
        url="https://dl.test/f",
        length=len(CONTENT),
        expires=datetime.datetime(2000, 1, 1, tzinfo=datetime.timezone.utc),
    )

    with pytest.raises(LocationExpiredError):
        await make_transport(handler).fetch_range(location, ByteRange(0, 4))

    assert calls == []


async def test_forbidden_without_expiry_is_permanent():
    transport = make_transport(lambda request: httpx.Response(403, content=b"denied"))
    location = DownloadLocation(url="https://dl.test/f", length=len(CONTENT))

    with pytest.raises(PermanentTransferError):
        await transport.fetch_range(location, ByteRange(0, 4))


async def test_read_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    location = DownloadLocation(url="https://dl.test/f", length=len(CONTENT))

    with pytest.raises(TransientTransferError):
        await make_transport(handler).fetch_range(location, ByteRange(0, 4))
