# storage/dto.py
from datetime import datetime
from enum import Enum
from typing import BinaryIO, Iterator, Optional

from pydantic import BaseModel, ConfigDict


class FileType(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"


class FileProperties(BaseModel):
    """
    A standardized Data Transfer Object for the properties of a file or folder,
    abstracting away backend-specific representations.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    type: FileType
    size: Optional[int] = None
    modified: Optional[datetime] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def is_dir(self) -> bool:
        return self.type == FileType.DIRECTORY


class StreamContent:
    """
    A readable byte stream plus its declared length, e.g. for a download.

    The caller owns the stream and must close it; use it as a context manager.
    """

    def __init__(self, stream: BinaryIO, size: int):
        self.stream = stream
        self.size = size
        self.closed = False

    def read(self, n: int = -1) -> bytes:
        return self.stream.read(n)

    def iter_chunks(self, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
        while True:
            chunk = self.stream.read(chunk_size)
            if not chunk:
                return
            yield chunk

    def close(self):
        if not self.closed:
            self.closed = True
            self.stream.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
