# exceptions.py


class ConfigurationError(Exception):
    """An operator mistake in the configuration (bad regex, missing property).

    Raised at startup and never turned into a response envelope.
    """
    pass


class FilemanagerError(Exception):
    """Base for request-time errors that resolve to an error envelope."""

    code = -1

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class InvalidPathError(FilemanagerError):
    """The requested path is malformed (control characters, empty segments)."""
    code = 1


class PathTraversalError(FilemanagerError):
    """The requested path tries to leave its root."""
    code = 2


class InvalidNameError(FilemanagerError):
    """A file or folder name is rejected by the exclude rules."""
    code = 3


class NotFoundError(FilemanagerError):
    """The file or folder does not exist on the backend."""
    code = 4


class AccessError(FilemanagerError):
    """The backend refused access, or the action is not permitted."""
    code = 5


class NameConflictError(FilemanagerError):
    """The target name already exists."""
    code = 6


class QuotaExceededError(FilemanagerError):
    """An upload exceeds the configured maximum size."""
    code = 7


class UnsupportedOperationError(FilemanagerError):
    """The backend cannot perform the action on this resource (e.g. editing binary content)."""
    code = 8
