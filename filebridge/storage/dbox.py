# storage/dbox.py
import logging
import posixpath
from typing import BinaryIO, Iterable, List, Optional

import dropbox
from dropbox.exceptions import ApiError
from dropbox.files import (
    CommitInfo,
    DeletedMetadata,
    FolderMetadata as DropboxFolderMetadata,
    UploadSessionCursor,
    WriteMode,
)

from ..backend_path import BackendPath
from ..exceptions import (
    AccessError,
    FilemanagerError,
    NameConflictError,
    NotFoundError,
    QuotaExceededError,
    UnsupportedOperationError,
)
from .base import Connector
from .dto import FileProperties, StreamContent


def _lookup_not_found(error) -> bool:
    """True for errors wrapping a LookupError('not_found') under the 'path' tag."""
    return error.is_path() and error.get_path().is_not_found()


def _translate_write_error(write_error, path: str) -> FilemanagerError:
    if write_error.is_conflict():
        return NameConflictError(f"Already exists: {path}")
    if write_error.is_insufficient_space():
        return QuotaExceededError(f"Insufficient space for {path}")
    if write_error.is_no_write_permission():
        return AccessError(f"No write permission for {path}")
    return AccessError(f"Cannot write {path}: {write_error}")


class _ResponseStream:
    """File-like view of a streamed HTTP response; closing releases the connection."""

    def __init__(self, response):
        self._response = response

    def read(self, n: int = -1) -> bytes:
        if n is None or n < 0:
            return self._response.raw.read()
        return self._response.raw.read(n)

    def close(self):
        self._response.close()


class DropboxConnector(Connector):
    """
    Connector for the Dropbox API, implementing the Connector interface.
    Backend paths are Dropbox paths; the root folder is the empty string.
    Directory sizes are never computed.
    """

    def __init__(
        self,
        app_key,
        app_secret,
        refresh_token,
        image_extensions: Optional[Iterable[str]] = None,
        chunk_size: int = 8 * 1024 * 1024,
        encoding: str = "utf-8",
    ):
        super().__init__(image_extensions)
        self.chunk_size = chunk_size
        self.encoding = encoding
        try:
            self.dbx = dropbox.Dropbox(
                app_key=app_key,
                app_secret=app_secret,
                oauth2_refresh_token=refresh_token,
            )
            # Verify successful authentication by requesting current user info
            self.dbx.users_get_current_account()
            logging.info("Dropbox client initialized successfully.")
        except Exception as e:
            logging.error(
                f"Failed to initialize Dropbox client. Check your credentials. Error: {e}"
            )
            raise

    @staticmethod
    def _key(backend_path: BackendPath) -> str:
        path = backend_path.path.rstrip("/")
        return path  # "" addresses the Dropbox root

    def _properties(self, entry) -> FileProperties:
        if isinstance(entry, DropboxFolderMetadata):
            return self.build_for_directory(entry.name, None)
        return self.build_for_file(entry.name, entry.size, entry.server_modified)

    def get_folder(self, backend_dir: BackendPath, need_size: bool = False) -> List[FileProperties]:
        key = self._key(backend_dir)
        try:
            logging.info(f"Listing files in Dropbox path: '{key}'")
            result = self.dbx.files_list_folder(key)  # Non-recursive
            all_entries = list(result.entries)
            while result.has_more:
                logging.info("Found more files, continuing listing...")
                result = self.dbx.files_list_folder_continue(result.cursor)
                all_entries.extend(result.entries)
        except ApiError as e:
            logging.error(f"Failed to list files in Dropbox path '{key}': {e}")
            if _lookup_not_found(e.error):
                raise NotFoundError(f"Directory not found: {key}") from e
            raise AccessError(f"Cannot list {key}: {e}") from e

        entries = [e for e in all_entries if not isinstance(e, DeletedMetadata)]
        return [self._properties(e) for e in sorted(entries, key=lambda e: e.name)]

    def get_info(self, backend_path: BackendPath, need_size: bool = False) -> FileProperties:
        key = self._key(backend_path)
        if key == "":
            return self.build_for_directory("", None)
        try:
            metadata = self.dbx.files_get_metadata(key)
        except ApiError as e:
            if _lookup_not_found(e.error):
                raise NotFoundError(f"Not found: {key}") from e
            logging.error(f"Error accessing Dropbox path '{key}': {e}")
            raise AccessError(f"Cannot access {key}: {e}") from e
        if isinstance(metadata, DeletedMetadata):
            raise NotFoundError(f"Not found: {key}")
        return self._properties(metadata)

    def rename(self, old_backend_path: BackendPath, sanitized_new_name: str) -> bool:
        from_path = self._key(old_backend_path)
        to_path = posixpath.join(posixpath.dirname(from_path), sanitized_new_name)
        try:
            logging.info(f"Moving {from_path} to {to_path}...")
            self.dbx.files_move_v2(from_path, to_path, autorename=False)
        except ApiError as e:
            logging.error(f"Failed to move file from '{from_path}' to '{to_path}': {e}")
            error = e.error
            if error.is_from_lookup() and error.get_from_lookup().is_not_found():
                raise NotFoundError(f"Not found: {from_path}") from e
            if error.is_to():
                raise _translate_write_error(error.get_to(), to_path) from e
            raise AccessError(f"Cannot rename {from_path}: {e}") from e
        return True

    def create_folder(self, backend_dir: BackendPath, sanitized_name: str):
        path = posixpath.join(self._key(backend_dir) or "/", sanitized_name)
        try:
            logging.info(f"Creating Dropbox folder {path}...")
            self.dbx.files_create_folder_v2(path, autorename=False)
        except ApiError as e:
            logging.error(f"Failed to create Dropbox folder '{path}': {e}")
            if e.error.is_path():
                raise _translate_write_error(e.error.get_path(), path) from e
            raise AccessError(f"Cannot create {path}: {e}") from e

    def delete(self, backend_path: BackendPath) -> bool:
        key = self._key(backend_path)
        try:
            logging.info(f"Deleting {key}...")
            self.dbx.files_delete_v2(key)
        except ApiError as e:
            logging.error(f"Failed to delete path '{key}': {e}")
            error = e.error
            if error.is_path_lookup() and error.get_path_lookup().is_not_found():
                raise NotFoundError(f"Not found: {key}") from e
            raise AccessError(f"Cannot delete {key}: {e}") from e
        return True

    def upload(self, backend_dir: BackendPath, sanitized_name: str, stream: BinaryIO, overwrite: bool = False):
        """
        Uploads a stream to Dropbox. Content that fits into one chunk is sent in a
        single request, anything larger goes through an upload session. An
        aborted session is never committed.
        """
        remote_path = posixpath.join(self._key(backend_dir) or "/", sanitized_name)
        mode = WriteMode("overwrite") if overwrite else WriteMode("add")

        try:
            chunk = stream.read(self.chunk_size)
            next_chunk = stream.read(self.chunk_size)
            if not next_chunk:
                logging.info(f"Uploading to {remote_path} (single upload)...")
                self.dbx.files_upload(chunk, remote_path, mode=mode, autorename=False)
                return

            logging.info(f"Starting chunked upload to {remote_path}...")
            session = self.dbx.files_upload_session_start(chunk)
            cursor = UploadSessionCursor(session_id=session.session_id, offset=len(chunk))
            commit_info = CommitInfo(path=remote_path, mode=mode, autorename=False)
            while True:
                chunk, next_chunk = next_chunk, stream.read(self.chunk_size)
                if not next_chunk:
                    logging.info(f"Uploading final chunk for {remote_path}...")
                    self.dbx.files_upload_session_finish(chunk, cursor, commit_info)
                    break
                logging.info(f"Uploading chunk for {remote_path} (offset: {cursor.offset})...")
                self.dbx.files_upload_session_append_v2(chunk, cursor)
                cursor.offset += len(chunk)
            logging.info(f"Chunked upload completed for {remote_path}.")
        except ApiError as e:
            logging.error(f"Failed to upload file to '{remote_path}': {e}")
            # Session start/append errors have no 'path' tag
            if hasattr(e.error, "is_path") and e.error.is_path():
                reason = e.error.get_path()
                # files_upload wraps the WriteError in UploadWriteFailed
                reason = getattr(reason, "reason", reason)
                raise _translate_write_error(reason, remote_path) from e
            raise AccessError(f"Cannot upload {remote_path}: {e}") from e

    def download(self, backend_path: BackendPath) -> StreamContent:
        key = self._key(backend_path)
        try:
            logging.info(f"Downloading {key}...")
            metadata, response = self.dbx.files_download(key)
        except ApiError as e:
            logging.error(f"Failed to download file '{key}': {e}")
            if _lookup_not_found(e.error):
                raise NotFoundError(f"File not found: {key}") from e
            raise AccessError(f"Cannot download {key}: {e}") from e
        return self.build_stream_content(_ResponseStream(response), metadata.size)

    def edit_file(self, backend_path: BackendPath, max_bytes: Optional[int] = None) -> str:
        with self.download(backend_path) as content:
            if max_bytes is not None and content.size is not None and content.size > max_bytes:
                raise UnsupportedOperationError(f"File is too large to edit: {backend_path.path}")
            data = content.read()
        if b"\x00" in data:
            raise UnsupportedOperationError(f"Binary content cannot be edited: {backend_path.path}")
        try:
            return data.decode(self.encoding)
        except UnicodeDecodeError as e:
            raise UnsupportedOperationError(f"Binary content cannot be edited: {backend_path.path}") from e
