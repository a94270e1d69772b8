# capabilities.py
from enum import Enum
from typing import Callable, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from .config import FilemanagerConfig, UploadPolicy
from .exceptions import ConfigurationError
from .paths import VirtualPath, extension


class Capability(str, Enum):
    SELECT = "select"
    DOWNLOAD = "download"
    RENAME = "rename"
    DELETE = "delete"
    REPLACE = "replace"


ALL_CAPABILITIES: Tuple[Capability, ...] = tuple(Capability)

# Returns the capabilities for a path, or None when the folder has no override.
FolderRules = Callable[[VirtualPath], Optional[Tuple[Capability, ...]]]


def parse_capabilities(value: Optional[str]) -> Optional[Tuple[Capability, ...]]:
    """
    Parses a comma-separated capability list such as "select,delete,rename".
    A blank value means no restriction (None).

    :raises ConfigurationError: on unknown capability names.
    """
    if value is None or not value.strip():
        return None
    result = []
    for item in value.split(","):
        item = item.strip().lower()
        if not item:
            continue
        try:
            capability = Capability(item)
        except ValueError as e:
            raise ConfigurationError(f"Unknown capability: {item!r}") from e
        if capability not in result:
            result.append(capability)
    return tuple(result) or None


class CapabilityPolicy(BaseModel):
    """All inputs of capability negotiation. Built once at startup."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    default_capabilities: Optional[Tuple[Capability, ...]] = None
    upload_policy: UploadPolicy = UploadPolicy.ALLOW_ALL
    upload_restrictions: FrozenSet[str] = frozenset()
    folder_rules: Optional[FolderRules] = None

    @classmethod
    def from_config(
        cls,
        config: FilemanagerConfig,
        default_capabilities: Optional[str],
        folder_rules: Optional[FolderRules] = None,
    ) -> "CapabilityPolicy":
        return cls(
            default_capabilities=parse_capabilities(default_capabilities),
            upload_policy=config.security.upload_policy,
            upload_restrictions=config.security.upload_restrictions,
            folder_rules=folder_rules,
        )


def is_upload_allowed(name: str, policy: CapabilityPolicy) -> bool:
    """
    Checks the extension of ``name`` against the upload policy.

    With DISALLOW_ALL only the listed extensions may be uploaded. With ALLOW_ALL
    everything may be uploaded except the listed extensions.
    """
    ext = extension(name)
    listed = ext is not None and ext in policy.upload_restrictions
    if policy.upload_policy == UploadPolicy.DISALLOW_ALL:
        return listed
    return not listed


def capabilities_for(
    path: VirtualPath, policy: CapabilityPolicy
) -> Optional[Tuple[Capability, ...]]:
    """
    Derives the allowed capabilities of a file or directory.

    Returns None when no restriction applies. An empty tuple denies everything;
    on the wire it is omitted just like None. Pure: no I/O.
    """
    capabilities = policy.default_capabilities
    if policy.folder_rules is not None:
        override = policy.folder_rules(path)
        if override is not None:
            capabilities = tuple(override)

    if not path.is_dir and not is_upload_allowed(path.name, policy):
        base = capabilities if capabilities is not None else ALL_CAPABILITIES
        capabilities = tuple(c for c in base if c != Capability.REPLACE)

    return capabilities


def is_permitted(path: VirtualPath, capability: Capability, policy: CapabilityPolicy) -> bool:
    capabilities = capabilities_for(path, policy)
    return capabilities is None or capability in capabilities
