"""HTTP implementation of the DataTransport port."""

import logging

import httpx

from ..application.domain import ByteRange, DataTransport, DownloadLocation, UploadTarget
from ..application.exceptions import LocationExpiredError

from .base_client import error_for_exception, error_for_response

_EXPIRY_MARKER = b"expired"


class HttpDataTransport(DataTransport):
    """
    Moves part and range bytes over plain HTTP.

    Upload targets and download locations are pre-authorized URLs handed out
    by the metadata service, so no token is attached here; any headers the
    service asked for are sent as given.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: float,
        block_size: int = 1024 * 1024,
    ):
        """Initializes the transport adapter."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.client = client
        self.timeout = timeout
        self.block_size = block_size

    async def put_part(self, target: UploadTarget, content: bytes):
        """
        Send the bytes of one part to its upload target.

        Raises:
            TransientTransferError: On network failures, timeouts, 429/5xx.
            PermanentTransferError: On other non-2xx responses.
        """

        headers = {
            "Content-Type": "application/octet-stream",
            **target.headers,
            "Content-Length": str(len(content)),
        }
        try:
            response = await self.client.put(
                target.url, content=content, headers=headers, timeout=self.timeout
            )
        except httpx.TransportError as e:
            raise error_for_exception(e) from e

        if response.is_error:
            raise error_for_response(response)

    def _is_expiry(self, location: DownloadLocation, response: httpx.Response) -> bool:
        if response.status_code != 403:
            return False
        body = response.content.lower()
        return location.is_expired() or _EXPIRY_MARKER in body

    async def _read_body(self, response: httpx.Response, byte_range: ByteRange) -> bytes:
        """Collect the body of a ranged response, trimming a full-body reply."""
        body = bytearray()
        async for block in response.aiter_bytes(self.block_size):
            body += block

        if response.status_code == 200 and len(body) > byte_range.length:
            # the server ignored the Range header and sent everything
            return bytes(body[byte_range.start:byte_range.end])
        return bytes(body)

    async def fetch_range(
        self, location: DownloadLocation, byte_range: ByteRange
    ) -> bytes:
        """
        Fetch one byte range from a download location.

        Raises:
            LocationExpiredError: If the location is past its expiry or the
                server rejects it as expired.
            TransientTransferError: On network failures, timeouts, 429/5xx.
            PermanentTransferError: On other non-2xx responses.
        """

        context = dict(byte_range=str(byte_range))
        if location.is_expired():
            raise LocationExpiredError("Download location has expired", **context)

        headers = {**location.headers, "Range": byte_range.header()}
        try:
            async with self.client.stream(
                "GET", location.url, headers=headers, timeout=self.timeout
            ) as response:
                if response.is_error:
                    await response.aread()
                    if self._is_expiry(location, response):
                        raise LocationExpiredError(
                            f"HTTP {response.status_code}: location expired",
                            **context,
                        )
                    raise error_for_response(response, **context)
                return await self._read_body(response, byte_range)
        except httpx.TransportError as e:
            raise error_for_exception(e, **context) from e
