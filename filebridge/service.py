# service.py
import logging
import shutil
import tempfile
from contextlib import contextmanager
from typing import BinaryIO, Callable, Optional

from .backend_path import BackendPathBuilder
from .capabilities import (
    Capability,
    CapabilityPolicy,
    capabilities_for,
    is_permitted,
    is_upload_allowed,
)
from .config import FilemanagerConfig
from .exceptions import (
    AccessError,
    FilemanagerError,
    InvalidNameError,
    InvalidPathError,
    QuotaExceededError,
    UnsupportedOperationError,
)
from .images import is_valid_image
from .paths import VirtualPath, join, normalize
from .responses import (
    DEFAULT_DATE_FORMAT,
    FilemanagerAction,
    build_create_folder,
    build_delete,
    build_edit,
    build_error,
    build_file_info,
    build_folder,
    build_rename,
    build_replace,
    build_upload,
    entry_path,
)
from .storage.base import Connector
from .storage.dto import FileProperties, StreamContent
from .validation import NameValidator, sanitize_name

PreviewResolver = Callable[[VirtualPath], Optional[str]]


class LimitedStream:
    """
    Wraps an upload body and raises QuotaExceededError on the first read that
    crosses ``limit`` bytes, so oversized bodies are never fully buffered.
    """

    def __init__(self, stream: BinaryIO, limit: Optional[int]):
        self.stream = stream
        self.limit = limit
        self.consumed = 0

    def read(self, n: int = -1) -> bytes:
        if self.limit is not None and (n is None or n < 0):
            # Never read more than one byte past the limit.
            n = self.limit - self.consumed + 1
        data = self.stream.read(n)
        self.consumed += len(data)
        if self.limit is not None and self.consumed > self.limit:
            raise QuotaExceededError(f"Upload exceeds the maximum size of {self.limit} bytes.")
        return data


def stream_to(content: StreamContent, write: Callable[[bytes], object], chunk_size: int = 64 * 1024) -> int:
    """
    Copies a download to ``write`` chunk by chunk. The stream is closed on every
    exit path, including a failing or cancelled writer.
    """
    written = 0
    try:
        for chunk in content.iter_chunks(chunk_size):
            write(chunk)
            written += len(chunk)
    finally:
        content.close()
    if written != content.size:
        logging.warning(f"Download wrote {written} bytes but {content.size} were declared.")
    return written


def _as_dir(path: VirtualPath) -> VirtualPath:
    if path.is_dir:
        return path
    return VirtualPath(path=path.path + "/", is_dir=True)


class Filemanager:
    """
    Runs file-manager actions: normalizes and validates the request, checks
    capabilities, calls the connector and wraps the result in an envelope.

    JSON actions never raise FilemanagerError; they return an ErrorResponse.
    """

    def __init__(
        self,
        config: FilemanagerConfig,
        connector: Connector,
        path_builder: BackendPathBuilder,
        validator: NameValidator,
        policy: CapabilityPolicy,
        preview_resolver: Optional[PreviewResolver] = None,
        date_format: str = DEFAULT_DATE_FORMAT,
        icons_path: str = "images/fileicons/",
        force_single_extension: bool = False,
        secure_image_uploads: bool = False,
    ):
        self.config = config
        self.connector = connector
        self.path_builder = path_builder
        self.validator = validator
        self.policy = policy
        self.preview_resolver = preview_resolver
        self.date_format = date_format
        self.icons_path = icons_path
        self.force_single_extension = force_single_extension
        self.secure_image_uploads = secure_image_uploads

    def _run(self, action: FilemanagerAction, fn):
        try:
            return fn()
        except FilemanagerError as e:
            logging.warning(f"Action '{action.value}' failed: {e.message}")
            return build_error(action, e)

    # --- helpers ---

    def _preview(self, path: VirtualPath) -> Optional[str]:
        if self.preview_resolver is not None:
            return self.preview_resolver(path)
        if path.is_dir:
            return f"{self.icons_path}_Open.png"
        ext = path.extension
        if ext and ext in self.config.images.extensions:
            return path.path
        if ext:
            return f"{self.icons_path}{ext}.png"
        return f"{self.icons_path}default.png"

    def _file_info(self, parent: VirtualPath, properties: FileProperties):
        entry = VirtualPath(
            path=entry_path(parent, properties.name, properties.is_dir), is_dir=properties.is_dir
        )
        return build_file_info(
            parent,
            properties,
            capabilities_for(entry, self.policy),
            self._preview(entry),
            self.date_format,
        )

    def _is_visible(self, properties: FileProperties) -> bool:
        if properties.is_dir:
            return self.validator.check_dirname(properties.name)
        return self.validator.check_filename(properties.name)

    def _check_name(self, name: str, is_dir: bool):
        allowed = self.validator.check_dirname(name) if is_dir else self.validator.check_filename(name)
        if not allowed:
            raise InvalidNameError(f"Name not allowed: {name}")

    def _require(self, path: VirtualPath, capability: Capability):
        if not is_permitted(path, capability, self.policy):
            raise AccessError(f"Action '{capability.value}' is not permitted for {path.path}")

    def _check_upload(self, name: str, content_length: Optional[int]):
        if not is_upload_allowed(name, self.policy):
            raise AccessError(f"Uploading files of this type is not allowed: {name}")
        limit = self.config.max_upload_bytes
        if limit is not None and content_length is not None and content_length > limit:
            raise QuotaExceededError(f"Upload exceeds the maximum size of {limit} bytes.")

    @contextmanager
    def _upload_body(self, name: str, stream: BinaryIO):
        """Yields the size-limited body; image uploads are verified first when secured."""
        body = LimitedStream(stream, self.config.max_upload_bytes)
        ext = VirtualPath(path="/" + name, is_dir=False).extension
        if not (self.secure_image_uploads and ext in self.config.images.extensions):
            yield body
            return

        with tempfile.SpooledTemporaryFile(max_size=1024 * 1024) as spool:
            shutil.copyfileobj(body, spool)
            spool.seek(0)
            if not is_valid_image(spool):
                raise UnsupportedOperationError(f"Uploaded file is not a valid image: {name}")
            yield spool

    # --- actions ---

    def get_folder(self, raw_path: str, need_size: bool = False):
        def action():
            directory = _as_dir(normalize(raw_path))
            logging.info(f"Listing folder {directory.path}")
            entries = self.connector.get_folder(self.path_builder.to_backend(directory), need_size)
            return build_folder(
                self._file_info(directory, props) for props in entries if self._is_visible(props)
            )

        return self._run(FilemanagerAction.GET_FOLDER, action)

    def get_info(self, raw_path: str, need_size: bool = False):
        def action():
            path = normalize(raw_path)
            properties = self.connector.get_info(self.path_builder.to_backend(path), need_size)
            if path.is_root:
                properties = properties.model_copy(update={"name": ""})
            return self._file_info(path.parent, properties)

        return self._run(FilemanagerAction.GET_INFO, action)

    def rename(self, raw_path: str, new_name: str):
        def action():
            old = normalize(raw_path)
            if old.is_root:
                raise InvalidPathError("The root folder cannot be renamed.")
            name = new_name.strip()
            join(old.parent, name, is_dir=old.is_dir)

            # The backend decides whether the source is a folder, not the trailing separator.
            is_dir = self.connector.get_info(self.path_builder.to_backend(old)).is_dir
            if is_dir:
                old = _as_dir(old)
            new = join(old.parent, name, is_dir=is_dir)
            self._check_name(name, is_dir)
            self._require(old, Capability.RENAME)

            logging.info(f"Renaming {old.path} to {new.path}")
            self.connector.rename(self.path_builder.to_backend(old), name)
            return build_rename(old, new)

        return self._run(FilemanagerAction.RENAME, action)

    def delete(self, raw_path: str):
        def action():
            path = normalize(raw_path)
            if path.is_root:
                raise AccessError("The root folder cannot be deleted.")
            self._require(path, Capability.DELETE)

            logging.info(f"Deleting {path.path}")
            self.connector.delete(self.path_builder.to_backend(path))
            return build_delete(path)

        return self._run(FilemanagerAction.DELETE, action)

    def add_folder(self, raw_parent: str, name: str):
        def action():
            parent = _as_dir(normalize(raw_parent))
            folder_name = name.strip()
            join(parent, folder_name, is_dir=True)
            self._check_name(folder_name, is_dir=True)

            logging.info(f"Creating folder {folder_name} in {parent.path}")
            self.connector.create_folder(self.path_builder.to_backend(parent), folder_name)
            return build_create_folder(parent, folder_name)

        return self._run(FilemanagerAction.ADD_FOLDER, action)

    def upload(self, raw_dir: str, name: str, stream: BinaryIO, content_length: Optional[int] = None):
        def action():
            directory = _as_dir(normalize(raw_dir))
            file_name = sanitize_name(name, self.force_single_extension)
            join(directory, file_name)
            self._check_name(file_name, is_dir=False)
            self._check_upload(file_name, content_length)

            logging.info(f"Uploading {file_name} to {directory.path}")
            with self._upload_body(file_name, stream) as body:
                self.connector.upload(self.path_builder.to_backend(directory), file_name, body)
            return build_upload(directory, file_name)

        return self._run(FilemanagerAction.UPLOAD, action)

    def replace(self, raw_path: str, stream: BinaryIO, content_length: Optional[int] = None):
        def action():
            path = normalize(raw_path)
            if path.is_dir:
                raise InvalidPathError(f"Only files can be replaced: {path.path}")
            self._require(path, Capability.REPLACE)
            self._check_upload(path.name, content_length)

            properties = self.connector.get_info(self.path_builder.to_backend(path))
            if properties.is_dir:
                raise InvalidPathError(f"Only files can be replaced: {path.path}")

            logging.info(f"Replacing {path.path}")
            with self._upload_body(path.name, stream) as body:
                self.connector.upload(
                    self.path_builder.to_backend(path.parent), path.name, body, overwrite=True
                )
            return build_replace(path)

        return self._run(FilemanagerAction.REPLACE, action)

    def edit(self, raw_path: str):
        def action():
            path = normalize(raw_path)
            if path.is_dir:
                raise InvalidPathError(f"Only files can be edited: {path.path}")
            content = self.connector.edit_file(self.path_builder.to_backend(path), self.config.max_upload_bytes)
            return build_edit(path, content)

        return self._run(FilemanagerAction.EDIT, action)

    def download(self, raw_path: str) -> StreamContent:
        """
        Opens a file for download. Unlike the JSON actions this raises
        FilemanagerError, since a download has no JSON body.
        """
        path = normalize(raw_path)
        if path.is_dir:
            raise InvalidPathError(f"Only files can be downloaded: {path.path}")
        self._require(path, Capability.DOWNLOAD)
        logging.info(f"Downloading {path.path}")
        return self.connector.download(self.path_builder.to_backend(path))
