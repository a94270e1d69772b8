# storage/base.py
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import BinaryIO, Iterable, List, Optional

from ..backend_path import BackendPath
from .dto import FileProperties, FileType, StreamContent


class Connector(ABC):
    """
    Abstract base class for a storage backend connector.
    Defines the common interface that all connectors (e.g., local disk, Dropbox)
    must implement.

    Every operation receives paths already mapped by a BackendPathBuilder, and
    names already validated by the calling layer. Connectors only do backend I/O.
    """

    def __init__(self, image_extensions: Optional[Iterable[str]] = None):
        self.image_extensions = frozenset(ext.lower() for ext in (image_extensions or ()))

    def init(self):
        """Called once after construction. Subclasses may verify their backend here."""
        logging.info(f"*** {self.__class__.__name__} successfully initialized.")

    @abstractmethod
    def get_folder(self, backend_dir: BackendPath, need_size: bool = False) -> List[FileProperties]:
        """
        Lists the entries of a folder.

        :param backend_dir: The folder to list.
        :param need_size: Whether sizes of sub-folders must be computed.
        :return: The entries in a stable order.
        :raises NotFoundError: if the folder does not exist.
        :raises AccessError: if the folder cannot be read.
        """
        pass

    @abstractmethod
    def get_info(self, backend_path: BackendPath, need_size: bool = False) -> FileProperties:
        """
        Returns the properties of a single file or folder.

        :raises NotFoundError: if the path does not exist.
        """
        pass

    @abstractmethod
    def rename(self, old_backend_path: BackendPath, sanitized_new_name: str) -> bool:
        """
        Renames a file or folder inside its parent folder.

        :raises NotFoundError: if the source does not exist.
        :raises NameConflictError: if the target name already exists.
        """
        pass

    @abstractmethod
    def create_folder(self, backend_dir: BackendPath, sanitized_name: str):
        """
        Creates a folder named ``sanitized_name`` in ``backend_dir``.

        :raises NameConflictError: if the name already exists.
        :raises AccessError: if the folder cannot be created.
        """
        pass

    @abstractmethod
    def delete(self, backend_path: BackendPath) -> bool:
        """
        Deletes a file or a folder including its content.

        :raises NotFoundError: if the path does not exist.
        """
        pass

    @abstractmethod
    def upload(self, backend_dir: BackendPath, sanitized_name: str, stream: BinaryIO, overwrite: bool = False):
        """
        Writes the content of ``stream`` to a file in ``backend_dir``.

        The stream may raise QuotaExceededError while being read; nothing may be
        left behind in that case.

        :raises NameConflictError: if the file exists and ``overwrite`` is false.
        :raises AccessError: if the file cannot be written.
        """
        pass

    @abstractmethod
    def download(self, backend_path: BackendPath) -> StreamContent:
        """
        Opens a file for reading. The caller owns (and must close) the stream.

        :raises NotFoundError: if the file does not exist.
        """
        pass

    @abstractmethod
    def edit_file(self, backend_path: BackendPath, max_bytes: Optional[int] = None) -> str:
        """
        Returns the decoded text content of a file.

        :param max_bytes: largest file size that may be loaded, or None for no limit.
        :raises NotFoundError: if the file does not exist.
        :raises UnsupportedOperationError: if the content is binary or larger than max_bytes.
        """
        pass

    # --- Helpers for implementations ---

    def build_for_image(self, name: str, width: int, height: int, size: int, modified: Optional[datetime]) -> FileProperties:
        return FileProperties(
            name=name, type=FileType.FILE, width=width, height=height, size=size, modified=modified
        )

    def build_for_file(self, name: str, size: int, modified: Optional[datetime]) -> FileProperties:
        return FileProperties(name=name, type=FileType.FILE, size=size, modified=modified)

    def build_for_directory(self, name: str, modified: Optional[datetime], size: Optional[int] = None) -> FileProperties:
        return FileProperties(name=name, type=FileType.DIRECTORY, size=size, modified=modified)

    def build_stream_content(self, stream: BinaryIO, size: int) -> StreamContent:
        return StreamContent(stream, size)

    def is_image_extension(self, ext: Optional[str]) -> bool:
        if not ext:
            return False
        return ext.lower() in self.image_extensions
