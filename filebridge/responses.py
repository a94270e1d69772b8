# responses.py
"""Typed response envelopes for the file-manager widget.

Each envelope serializes itself explicitly in ``to_wire()``; field names and
their order are part of the wire protocol. ``render()`` produces the response
body, wrapped in ``<textarea>`` for the upload transport where required.
"""
import json
from enum import Enum
from typing import ClassVar, Dict, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .capabilities import Capability
from .exceptions import FilemanagerError
from .paths import SEPARATOR, VirtualPath, extension
from .storage.dto import FileProperties

TYPE_UNKNOWN = "txt"
TYPE_DIR = "dir"
DEFAULT_DATE_FORMAT = "%d.%m.%Y %H:%M"


class FilemanagerAction(str, Enum):
    GET_FOLDER = "getfolder"
    GET_INFO = "getinfo"
    RENAME = "rename"
    DELETE = "delete"
    ADD_FOLDER = "addfolder"
    UPLOAD = "add"
    DOWNLOAD = "download"
    EDIT = "editfile"
    REPLACE = "replace"


TEXTAREA_ACTIONS = frozenset({FilemanagerAction.UPLOAD, FilemanagerAction.REPLACE})


class Envelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    ACTION: ClassVar[FilemanagerAction]

    @property
    def action(self) -> FilemanagerAction:
        return self.ACTION

    def to_wire(self) -> Dict[str, object]:
        raise NotImplementedError

    def render(self) -> str:
        body = json.dumps(self.to_wire(), ensure_ascii=False)
        if self.action in TEXTAREA_ACTIONS:
            return f"<textarea>{body}</textarea>"
        return body


class FileInfoResponse(Envelope):
    ACTION: ClassVar[FilemanagerAction] = FilemanagerAction.GET_INFO

    path: str
    filename: str
    file_type: str
    preview: Optional[str] = None
    properties: FileProperties
    capabilities: Optional[Tuple[str, ...]] = None
    date_format: str = DEFAULT_DATE_FORMAT

    @property
    def is_dir(self) -> bool:
        return self.properties.is_dir

    def _wire_properties(self) -> Dict[str, object]:
        props = self.properties
        result = {}
        if props.modified is not None:
            result["Date Modified"] = props.modified.strftime(self.date_format)
        if props.width is not None:
            result["Width"] = props.width
        if props.height is not None:
            result["Height"] = props.height
        if props.size is not None:
            result["Size"] = props.size
        return result

    def to_wire(self) -> Dict[str, object]:
        wire = {
            "Path": self.path,
            "Filename": self.filename,
            "File Type": self.file_type,
        }
        if self.preview is not None:
            wire["Preview"] = self.preview
        wire["Properties"] = self._wire_properties()
        # No restriction and an empty restriction look the same to the widget.
        if self.capabilities:
            wire["Capabilities"] = list(self.capabilities)
        return wire


class FolderResponse(Envelope):
    ACTION: ClassVar[FilemanagerAction] = FilemanagerAction.GET_FOLDER

    entries: Tuple[FileInfoResponse, ...] = ()

    def to_wire(self) -> Dict[str, object]:
        return {entry.path: entry.to_wire() for entry in self.entries}


class DeleteResponse(Envelope):
    ACTION: ClassVar[FilemanagerAction] = FilemanagerAction.DELETE

    path: str

    def to_wire(self) -> Dict[str, object]:
        return {"Path": self.path}


class RenameResponse(Envelope):
    ACTION: ClassVar[FilemanagerAction] = FilemanagerAction.RENAME

    old_path: str
    old_name: str
    new_path: str
    new_name: str

    def to_wire(self) -> Dict[str, object]:
        return {
            "Old Path": self.old_path,
            "Old Name": self.old_name,
            "New Path": self.new_path,
            "New Name": self.new_name,
        }


class CreateFolderResponse(Envelope):
    ACTION: ClassVar[FilemanagerAction] = FilemanagerAction.ADD_FOLDER

    parent: str
    name: str

    def to_wire(self) -> Dict[str, object]:
        return {"Parent": self.parent, "Name": self.name}


class UploadResponse(Envelope):
    ACTION: ClassVar[FilemanagerAction] = FilemanagerAction.UPLOAD

    path: str
    name: str

    def to_wire(self) -> Dict[str, object]:
        return {"Path": self.path, "Name": self.name}


class ReplaceResponse(UploadResponse):
    ACTION: ClassVar[FilemanagerAction] = FilemanagerAction.REPLACE


class EditResponse(Envelope):
    ACTION: ClassVar[FilemanagerAction] = FilemanagerAction.EDIT

    path: str
    content: str

    def to_wire(self) -> Dict[str, object]:
        return {"Path": self.path, "Content": self.content}


class ErrorResponse(Envelope):
    error_action: FilemanagerAction
    code: int
    message: str

    @property
    def action(self) -> FilemanagerAction:
        return self.error_action

    def to_wire(self) -> Dict[str, object]:
        return {"Code": self.code, "Message": self.message}


# --- Builders ---


def entry_path(parent: VirtualPath, name: str, is_dir: bool) -> str:
    """
    The client-visible path of an entry: parent directory plus name, with a
    trailing separator if and only if the entry is a directory.
    """
    if not name:
        return parent.path
    path = parent.path.rstrip(SEPARATOR) + SEPARATOR + name
    if is_dir and not path.endswith(SEPARATOR):
        path += SEPARATOR
    elif not is_dir:
        path = path.rstrip(SEPARATOR)
    return path


def file_type(properties: FileProperties) -> str:
    if properties.is_dir:
        return TYPE_DIR
    return extension(properties.name) or TYPE_UNKNOWN


def build_file_info(
    parent: VirtualPath,
    properties: FileProperties,
    capabilities: Optional[Iterable[Capability]] = None,
    preview: Optional[str] = None,
    date_format: str = DEFAULT_DATE_FORMAT,
) -> FileInfoResponse:
    wire_capabilities = None
    if capabilities is not None:
        wire_capabilities = tuple(Capability(c).value.lower() for c in capabilities)
    return FileInfoResponse(
        path=entry_path(parent, properties.name, properties.is_dir),
        filename=properties.name,
        file_type=file_type(properties),
        preview=preview,
        properties=properties,
        capabilities=wire_capabilities,
        date_format=date_format,
    )


def build_folder(entries: Iterable[FileInfoResponse]) -> FolderResponse:
    return FolderResponse(entries=tuple(entries))


def build_delete(path: VirtualPath) -> DeleteResponse:
    return DeleteResponse(path=path.path)


def build_rename(old: VirtualPath, new: VirtualPath) -> RenameResponse:
    return RenameResponse(old_path=old.path, old_name=old.name, new_path=new.path, new_name=new.name)


def build_create_folder(parent: VirtualPath, name: str) -> CreateFolderResponse:
    return CreateFolderResponse(parent=parent.path, name=name)


def build_upload(directory: VirtualPath, name: str) -> UploadResponse:
    return UploadResponse(path=directory.path, name=name)


def build_replace(path: VirtualPath) -> ReplaceResponse:
    return ReplaceResponse(path=path.parent.path, name=path.name)


def build_edit(path: VirtualPath, content: str) -> EditResponse:
    return EditResponse(path=path.path, content=content)


def build_error(action: FilemanagerAction, error: FilemanagerError) -> ErrorResponse:
    return ErrorResponse(error_action=action, code=error.code, message=error.message)
