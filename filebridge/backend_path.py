# backend_path.py
"""Mapping between virtual paths and backend paths.

A backend path is only ever produced by a BackendPathBuilder. Request handling
code never assembles one by hand.
"""
import logging
import os
import posixpath
from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict

from .exceptions import InvalidPathError, PathTraversalError
from .paths import SEPARATOR, VirtualPath, normalize


class BackendPath(BaseModel):
    """A backend-addressable path (filesystem path, object key, ...)."""

    model_config = ConfigDict(frozen=True)

    path: str
    is_dir: bool

    def __str__(self) -> str:
        return self.path


class BackendPathBuilder(ABC):
    """
    Translates virtual paths to backend paths and back.
    For every virtual path p: ``to_virtual(to_backend(p)) == p``.
    """

    @abstractmethod
    def to_backend(self, virtual: VirtualPath) -> BackendPath:
        """
        Maps a normalized virtual path onto the backend.

        :param virtual: The normalized client path.
        :return: The backend path, guaranteed to be inside the configured root.
        """
        pass

    @abstractmethod
    def to_virtual(self, backend: BackendPath) -> VirtualPath:
        """
        Maps a backend path back to the client-visible path.

        :param backend: A backend path inside the configured root.
        :return: The normalized virtual path.
        """
        pass


class RootPathBuilder(BackendPathBuilder):
    """
    The default one-to-one mapping below a backend root.

    ``flavor="local"`` joins with ``os.path`` for filesystem connectors,
    ``flavor="posix"`` joins with ``posixpath`` for key-based stores like Dropbox.
    """

    def __init__(self, root: str, flavor: str = "local"):
        if flavor == "local":
            self._pathmod = os.path
            self.root = os.path.abspath(root)
        elif flavor == "posix":
            self._pathmod = posixpath
            self.root = posixpath.normpath(SEPARATOR + (root or "").strip(SEPARATOR))
        else:
            raise ValueError(f"Unknown path flavor: {flavor}")
        self.flavor = flavor
        sep = self._pathmod.sep
        self._root_prefix = self.root if self.root.endswith(sep) else self.root + sep
        logging.info(f"{self.__class__.__name__} initialized with root '{self.root}'.")

    def _inside_root(self, path: str) -> bool:
        return path == self.root or path.startswith(self._root_prefix)

    def _resolves_inside_root(self, path: str) -> bool:
        """Follows symlinks on a local filesystem; a link may not lead out of the root."""
        if self.flavor != "local":
            return True
        real_root = os.path.realpath(self.root)
        real_path = os.path.realpath(path)
        return real_path == real_root or real_path.startswith(real_root.rstrip(os.sep) + os.sep)

    def to_backend(self, virtual: VirtualPath) -> BackendPath:
        segments = virtual.segments
        sep = self._pathmod.sep
        for segment in segments:
            if sep != SEPARATOR and sep in segment:
                raise InvalidPathError(f"Backend separator in path segment: {segment!r}")

        path = self._pathmod.normpath(self._pathmod.join(self.root, *segments))
        if not self._inside_root(path) or not self._resolves_inside_root(path):
            raise PathTraversalError(f"Path escapes the backend root: {virtual.path}")
        return BackendPath(path=path, is_dir=virtual.is_dir)

    def to_virtual(self, backend: BackendPath) -> VirtualPath:
        path = self._pathmod.normpath(backend.path)
        if not self._inside_root(path):
            raise PathTraversalError(f"Backend path outside of root: {backend.path}")

        rel = self._pathmod.relpath(path, self.root)
        if rel == ".":
            return VirtualPath(path=SEPARATOR, is_dir=True)
        virtual = SEPARATOR + SEPARATOR.join(rel.split(self._pathmod.sep))
        if backend.is_dir:
            virtual += SEPARATOR
        return normalize(virtual)


class UserRootPathBuilder(RootPathBuilder):
    """Isolates each user below ``<root>/<user_id>``."""

    def __init__(self, root: str, user_id: str, flavor: str = "local"):
        if (
            not user_id
            or user_id in (".", "..")
            or SEPARATOR in user_id
            or os.sep in user_id
        ):
            raise InvalidPathError(f"Invalid user id for path isolation: {user_id!r}")
        pathmod = posixpath if flavor == "posix" else os.path
        super().__init__(pathmod.join(root or SEPARATOR, user_id), flavor)
        self.user_id = user_id
