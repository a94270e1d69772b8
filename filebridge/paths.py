# paths.py
"""Virtual paths as seen by the file-manager widget.

A virtual path always starts with the separator. Directory paths end with the
separator, file paths do not. The root ``/`` is always a directory.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from .exceptions import InvalidPathError, PathTraversalError

SEPARATOR = "/"


class VirtualPath(BaseModel):
    """A normalized, client-visible path."""

    model_config = ConfigDict(frozen=True)

    path: str
    is_dir: bool

    def __str__(self) -> str:
        return self.path

    @property
    def is_root(self) -> bool:
        return self.path == SEPARATOR

    @property
    def segments(self) -> List[str]:
        return [p for p in self.path.split(SEPARATOR) if p]

    @property
    def name(self) -> str:
        """The last segment, or an empty string for the root."""
        segments = self.segments
        return segments[-1] if segments else ""

    @property
    def parent(self) -> "VirtualPath":
        """The containing directory. The root is its own parent."""
        segments = self.segments
        if len(segments) <= 1:
            return VirtualPath(path=SEPARATOR, is_dir=True)
        return VirtualPath(
            path=SEPARATOR + SEPARATOR.join(segments[:-1]) + SEPARATOR, is_dir=True
        )

    @property
    def extension(self) -> Optional[str]:
        return extension(self)


def _has_control_chars(value: str) -> bool:
    return any(ord(ch) < 32 or ord(ch) == 127 for ch in value)


def _check_segment(segment: str, raw: str):
    if segment == "..":
        raise PathTraversalError(f"Parent directory segment in path: {raw!r}")
    if not segment.strip():
        raise InvalidPathError(f"Empty segment in path: {raw!r}")


def normalize(raw: Optional[str], separator: str = SEPARATOR) -> VirtualPath:
    """Normalize a raw client path into a VirtualPath.

    Repeated separators are collapsed, a missing leading separator is added and
    ``.`` segments are dropped. A trailing separator marks a directory.

    :raises InvalidPathError: for empty input, control characters or blank segments.
    :raises PathTraversalError: for any ``..`` segment.
    """
    if raw is None or raw == "":
        raise InvalidPathError("Path is empty.")
    if _has_control_chars(raw):
        raise InvalidPathError(f"Control characters in path: {raw!r}")

    value = raw if separator == SEPARATOR else raw.replace(separator, SEPARATOR)
    is_dir = value.endswith(SEPARATOR)

    segments = []
    for part in value.split(SEPARATOR):
        if part == "" or part == ".":
            continue
        _check_segment(part, raw)
        segments.append(part)

    if not segments:
        return VirtualPath(path=SEPARATOR, is_dir=True)

    path = SEPARATOR + SEPARATOR.join(segments)
    if is_dir:
        path += SEPARATOR
    return VirtualPath(path=path, is_dir=is_dir)


def extension(path) -> Optional[str]:
    """Return the lower-cased extension of the last segment, or None.

    Accepts a VirtualPath or a plain name/path string. Directories, names
    without a dot and dot-files such as ``.bashrc`` have no extension.
    """
    if isinstance(path, VirtualPath):
        if path.is_dir:
            return None
        name = path.name
    else:
        if path.endswith(SEPARATOR):
            return None
        name = path.rsplit(SEPARATOR, 1)[-1]

    idx = name.rfind(".")
    if idx <= 0 or idx == len(name) - 1:
        return None
    return name[idx + 1:].lower()


def join(dir_path: VirtualPath, name: str, is_dir: bool = False) -> VirtualPath:
    """Append a child name to a directory path with exactly one separator."""
    if not dir_path.is_dir:
        raise InvalidPathError(f"Not a directory path: {dir_path.path}")
    if not name or SEPARATOR in name or _has_control_chars(name):
        raise InvalidPathError(f"Invalid child name: {name!r}")
    if name == ".":
        raise InvalidPathError(f"Invalid child name: {name!r}")
    _check_segment(name, name)

    path = dir_path.path.rstrip(SEPARATOR) + SEPARATOR + name
    if is_dir:
        path += SEPARATOR
    return VirtualPath(path=path, is_dir=is_dir)
