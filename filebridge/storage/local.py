# storage/local.py
import errno
import logging
import os
import shutil
import tempfile
import threading
from datetime import datetime
from typing import BinaryIO, Callable, Dict, Iterable, List, Optional, Tuple

from ..backend_path import BackendPath
from ..exceptions import (
    AccessError,
    FilemanagerError,
    InvalidNameError,
    NameConflictError,
    NotFoundError,
    QuotaExceededError,
    UnsupportedOperationError,
)
from ..images import image_dimensions
from ..paths import extension
from .base import Connector
from .dto import FileProperties, StreamContent

DimensionProvider = Callable[[str], Optional[Tuple[int, int]]]


class _DirectoryLocks:
    """One lock per directory; commits into the same directory are serialized."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def get(self, directory: str) -> threading.Lock:
        key = os.path.normcase(os.path.abspath(directory))
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())


def _modified(st: os.stat_result) -> datetime:
    return datetime.fromtimestamp(st.st_mtime)


def _directory_size(path: str) -> int:
    total = 0
    for dirpath, _, filenames in os.walk(path):
        for filename in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, filename)).st_size
            except OSError as e:
                logging.warning(f"Skipping {filename} while sizing {path}: {e}")
    return total


def _translate_os_error(error: OSError, path: str) -> FilemanagerError:
    if isinstance(error, (FileNotFoundError, NotADirectoryError)):
        return NotFoundError(f"Not found: {path}")
    if isinstance(error, FileExistsError):
        return NameConflictError(f"Already exists: {path}")
    if isinstance(error, PermissionError):
        return AccessError(f"Access denied: {path}")
    if error.errno == errno.ENAMETOOLONG:
        return InvalidNameError(f"Name too long: {path}")
    if error.errno == errno.ENOSPC:
        return QuotaExceededError(f"No space left for {path}")
    return AccessError(f"Cannot access {path}: {error}")


def _discard(path: str):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


class LocalConnector(Connector):
    """
    Connector for a local filesystem, implementing the Connector interface.
    Backend paths are absolute filesystem paths.
    """

    def __init__(
        self,
        image_extensions: Optional[Iterable[str]] = None,
        dimension_provider: DimensionProvider = image_dimensions,
        encoding: str = "utf-8",
        chunk_size: int = 64 * 1024,
    ):
        super().__init__(image_extensions)
        self.dimension_provider = dimension_provider
        self.encoding = encoding
        self.chunk_size = chunk_size
        self._locks = _DirectoryLocks()

    def _properties(self, path: str, name: str, need_size: bool) -> FileProperties:
        st = os.stat(path)
        if os.path.isdir(path):
            size = _directory_size(path) if need_size else None
            return self.build_for_directory(name, _modified(st), size)

        if self.is_image_extension(extension(name)):
            dimensions = self.dimension_provider(path)
            if dimensions is not None:
                width, height = dimensions
                return self.build_for_image(name, width, height, st.st_size, _modified(st))
        return self.build_for_file(name, st.st_size, _modified(st))

    def get_folder(self, backend_dir: BackendPath, need_size: bool = False) -> List[FileProperties]:
        path = backend_dir.path
        if not os.path.isdir(path):
            raise NotFoundError(f"Directory not found: {path}")
        try:
            logging.info(f"Listing local directory '{path}'")
            with os.scandir(path) as it:
                entries = sorted(it, key=lambda entry: entry.name)
        except OSError as e:
            raise _translate_os_error(e, path) from e

        result = []
        for entry in entries:
            try:
                result.append(self._properties(entry.path, entry.name, need_size))
            except OSError as e:
                # Broken links or entries removed while listing.
                logging.warning(f"Skipping unreadable entry '{entry.path}': {e}")
        return result

    def get_info(self, backend_path: BackendPath, need_size: bool = False) -> FileProperties:
        path = backend_path.path
        if not os.path.exists(path):
            raise NotFoundError(f"Not found: {path}")
        try:
            return self._properties(path, os.path.basename(path.rstrip(os.sep)), need_size)
        except OSError as e:
            raise _translate_os_error(e, path) from e

    def rename(self, old_backend_path: BackendPath, sanitized_new_name: str) -> bool:
        source = old_backend_path.path.rstrip(os.sep)
        parent = os.path.dirname(source)
        target = os.path.join(parent, sanitized_new_name)

        with self._locks.get(parent):
            if os.path.lexists(target):
                raise NameConflictError(f"Target already exists: {target}")
            if not os.path.lexists(source):
                raise NotFoundError(f"Not found: {source}")
            try:
                logging.info(f"Renaming {source} to {target}...")
                os.rename(source, target)
            except OSError as e:
                raise _translate_os_error(e, source) from e
        return True

    def create_folder(self, backend_dir: BackendPath, sanitized_name: str):
        path = os.path.join(backend_dir.path, sanitized_name)
        try:
            logging.info(f"Creating directory {path}...")
            os.mkdir(path)
        except OSError as e:
            raise _translate_os_error(e, path) from e

    def delete(self, backend_path: BackendPath) -> bool:
        path = backend_path.path.rstrip(os.sep)
        if not os.path.lexists(path):
            raise NotFoundError(f"Not found: {path}")
        try:
            logging.info(f"Deleting {path}...")
            if os.path.isdir(path) and not os.path.islink(path):
                shutil.rmtree(path)
            else:
                os.remove(path)
        except OSError as e:
            raise _translate_os_error(e, path) from e
        return True

    def upload(self, backend_dir: BackendPath, sanitized_name: str, stream: BinaryIO, overwrite: bool = False):
        directory = backend_dir.path
        if not os.path.isdir(directory):
            raise NotFoundError(f"Directory not found: {directory}")
        target = os.path.join(directory, sanitized_name)
        if not overwrite and os.path.lexists(target):
            raise NameConflictError(f"File already exists: {target}")

        try:
            tmp = tempfile.NamedTemporaryFile(dir=directory, prefix=".upload-", delete=False)
        except OSError as e:
            raise _translate_os_error(e, directory) from e

        logging.info(f"Uploading to {target}...")
        try:
            with tmp:
                while True:
                    chunk = stream.read(self.chunk_size)
                    if not chunk:
                        break
                    tmp.write(chunk)
            with self._locks.get(directory):
                if not overwrite and os.path.lexists(target):
                    raise NameConflictError(f"File already exists: {target}")
                os.replace(tmp.name, target)
        except OSError as e:
            _discard(tmp.name)
            raise _translate_os_error(e, target) from e
        except BaseException:
            _discard(tmp.name)
            raise
        logging.info(f"Upload to {target} completed.")

    def download(self, backend_path: BackendPath) -> StreamContent:
        path = backend_path.path
        if not os.path.isfile(path):
            raise NotFoundError(f"File not found: {path}")
        try:
            stream = open(path, "rb")
        except OSError as e:
            raise _translate_os_error(e, path) from e
        return self.build_stream_content(stream, os.fstat(stream.fileno()).st_size)

    def edit_file(self, backend_path: BackendPath, max_bytes: Optional[int] = None) -> str:
        path = backend_path.path
        if not os.path.isfile(path):
            raise NotFoundError(f"File not found: {path}")
        try:
            with open(path, "rb") as f:
                data = f.read() if max_bytes is None else f.read(max_bytes + 1)
        except OSError as e:
            raise _translate_os_error(e, path) from e

        if max_bytes is not None and len(data) > max_bytes:
            raise UnsupportedOperationError(f"File is too large to edit: {path}")
        if b"\x00" in data:
            raise UnsupportedOperationError(f"Binary content cannot be edited: {path}")
        try:
            return data.decode(self.encoding)
        except UnicodeDecodeError as e:
            raise UnsupportedOperationError(f"Binary content cannot be edited: {path}") from e
