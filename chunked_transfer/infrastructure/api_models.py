"""
Pydantic models for validating the responses of the object-storage API.

These models serve as a strict contract for the expected JSON data, ensuring
that any deviation from this structure is caught at the infrastructure layer
before being passed to the application core.
"""

import datetime
from typing import Dict, Literal, Optional

from pydantic import BaseModel


class FileNewResponse(BaseModel):
    """Returned when a new file object has been created."""

    id: str


class UploadSlotResponse(BaseModel):
    """Where to send the bytes of one part, plus the headers to send."""

    url: str
    headers: Dict[str, str] = {}
    expires: Optional[datetime.datetime] = None


class CommitPartResponse(BaseModel):
    index: int
    md5: str


class CloseResponse(BaseModel):
    id: str


class DescribeResponse(BaseModel):
    """
    The lifecycle fields of a file object.

    `size` is only reported once the object is closed.
    """

    id: str
    state: Literal["open", "closing", "closed"]
    parts: int = 0
    size: Optional[int] = None


class DownloadResponse(BaseModel):
    """A time-limited location serving the content of a closed object."""

    url: str
    size: int
    headers: Dict[str, str] = {}
    expires: Optional[datetime.datetime] = None


class ApiErrorDetail(BaseModel):
    type: str
    message: str = ""


class ApiErrorResponse(BaseModel):
    """Represents the error envelope returned with non-2xx responses."""

    error: ApiErrorDetail
