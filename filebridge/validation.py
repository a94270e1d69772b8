# validation.py
import logging
import re
from typing import Iterable, Optional, Pattern

from .config import Exclude
from .exceptions import ConfigurationError


def _compile(regex: Optional[str]) -> Optional[Pattern]:
    """Compiles an exclude regex, stripping one leading '/' delimiter. Blank means none."""
    if regex is None or not regex.strip():
        return None
    if regex.startswith("/"):
        regex = regex[1:]
    try:
        return re.compile(regex)
    except re.error as e:
        raise ConfigurationError(f"Regex [{regex}] could not be parsed!") from e


def is_allowed(name: str, exclude_set: Optional[Iterable[str]], exclude_regex: Optional[str]) -> bool:
    """
    Checks a file or directory name against an exclude set and an exclude regex.

    A name in the exclude set is always rejected. Otherwise the regex rejects the
    name if it matches anywhere in it (search, not full match).

    :raises ConfigurationError: if the regex is malformed.
    """
    if exclude_set and name in exclude_set:
        return False
    pattern = _compile(exclude_regex)
    if pattern is None:
        return True
    return pattern.search(name) is None


class NameValidator:
    """
    Validates file and directory names against the ``exclude`` configuration.
    Both regexes are compiled up front, so a bad rule fails at startup.
    """

    def __init__(self, exclude: Exclude):
        self._files = exclude.disallowed_files
        self._dirs = exclude.disallowed_dirs
        self._files_pattern = _compile(exclude.disallowed_files_regex)
        self._dirs_pattern = _compile(exclude.disallowed_dirs_regex)

    @staticmethod
    def _check(name: str, names, pattern: Optional[Pattern]) -> bool:
        if name in names:
            return False
        return pattern is None or pattern.search(name) is None

    def check_filename(self, name: str) -> bool:
        allowed = self._check(name, self._files, self._files_pattern)
        if not allowed:
            logging.warning(f"File name '{name}' is excluded by configuration.")
        return allowed

    def check_dirname(self, name: str) -> bool:
        allowed = self._check(name, self._dirs, self._dirs_pattern)
        if not allowed:
            logging.warning(f"Directory name '{name}' is excluded by configuration.")
        return allowed


def sanitize_name(name: str, force_single_extension: bool = False) -> str:
    """Trims the name and, if requested, replaces all but the last dot with '_'."""
    name = name.strip()
    if not force_single_extension:
        return name
    idx = name.rfind(".")
    if idx <= 0:
        return name
    return name[:idx].replace(".", "_") + name[idx:]
