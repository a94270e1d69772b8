import logging
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class UploadPolicy(str, Enum):
    ALLOW_ALL = "ALLOW_ALL"
    DISALLOW_ALL = "DISALLOW_ALL"


def _split_list(value: Optional[str], lower: bool = False) -> FrozenSet[str]:
    """Split a comma-separated setting into a set, dropping blanks."""
    if not value:
        return frozenset()
    items = (item.strip() for item in value.split(","))
    return frozenset(item.lower() if lower else item for item in items if item)


class Settings(BaseSettings):
    """
    Process-wide configuration, read once from the environment (prefix ``FM_``)
    and an optional ``.env`` file. Instances are immutable.
    """

    model_config = SettingsConfigDict(
        env_prefix="FM_", env_file=".env", extra="ignore", frozen=True
    )

    # --- General Settings ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None
    CONNECTOR_IMPL: str = "local"  # "local" or "dropbox"
    PATH_BUILDER_IMPL: str = "default"  # "default" or "user"
    BACKEND_ROOT: Optional[str] = None
    USER_ID: Optional[str] = None

    # --- Filemanager policy ---
    DEFAULT_CAPABILITIES: str = "select,delete,rename,download,replace"
    MAX_UPLOAD_SIZE_MB: Optional[int] = None
    FORCE_SINGLE_EXTENSION: bool = False
    SECURE_IMAGE_UPLOADS: bool = False
    FILEMANAGER_CONFIG_FILE: Optional[str] = None
    IMAGE_EXTENSIONS: str = "jpg,jpeg,gif,png"
    DISALLOWED_FILES: str = ".htaccess,web.config"
    DISALLOWED_DIRS: str = ""
    DISALLOWED_FILES_REGEX: Optional[str] = r"/^\."
    DISALLOWED_DIRS_REGEX: Optional[str] = r"/^\."
    UPLOAD_POLICY: UploadPolicy = UploadPolicy.ALLOW_ALL
    UPLOAD_RESTRICTIONS: str = ""

    # --- Presentation ---
    DATE_FORMAT: str = "%d.%m.%Y %H:%M"
    ICONS_PATH: str = "images/fileicons/"
    DEFAULT_ENCODING: str = "utf-8"

    # --- Dropbox Settings (optional) ---
    DROPBOX_APP_KEY: Optional[str] = None
    DROPBOX_APP_SECRET: Optional[str] = None
    DROPBOX_REFRESH_TOKEN: Optional[str] = None
    DROPBOX_TOKEN_FILE: Optional[str] = None
    DROPBOX_UPLOAD_CHUNK_SIZE: int = 8 * 1024 * 1024  # 8 MB default

    @model_validator(mode="after")
    def check_connector_settings(self):
        if self.CONNECTOR_IMPL == "local":
            if not self.BACKEND_ROOT:
                raise ValueError("BACKEND_ROOT is required when CONNECTOR_IMPL is 'local'")
        elif self.CONNECTOR_IMPL == "dropbox":
            for key in ("DROPBOX_APP_KEY", "DROPBOX_APP_SECRET"):
                if not getattr(self, key):
                    raise ValueError(f"{key} is required when CONNECTOR_IMPL is 'dropbox'")
            if not self.DROPBOX_REFRESH_TOKEN and not self.DROPBOX_TOKEN_FILE:
                logging.warning(
                    "DROPBOX_REFRESH_TOKEN not set. Will attempt to load it from DROPBOX_TOKEN_FILE."
                )
        else:
            raise ValueError("Invalid CONNECTOR_IMPL. Must be 'local' or 'dropbox'.")

        if self.PATH_BUILDER_IMPL not in ("default", "user"):
            raise ValueError("Invalid PATH_BUILDER_IMPL. Must be 'default' or 'user'.")
        if self.PATH_BUILDER_IMPL == "user" and not self.USER_ID:
            raise ValueError("USER_ID is required when PATH_BUILDER_IMPL is 'user'")
        return self


# --- Filemanager (widget) configuration ---


class Exclude(BaseModel):
    """The ``exclude`` section: disallowed names, scoped for files and directories."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    disallowed_files: FrozenSet[str] = Field(default_factory=frozenset, alias="unallowed_files")
    disallowed_dirs: FrozenSet[str] = Field(default_factory=frozenset, alias="unallowed_dirs")
    disallowed_files_regex: Optional[str] = Field(None, alias="unallowed_files_REGEXP")
    disallowed_dirs_regex: Optional[str] = Field(None, alias="unallowed_dirs_REGEXP")


class Images(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    extensions: FrozenSet[str] = Field(
        frozenset({"jpg", "jpeg", "gif", "png"}), alias="imagesExt"
    )

    @field_validator("extensions")
    @classmethod
    def lower_extensions(cls, value):
        return frozenset(ext.lower() for ext in value)


class Security(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    upload_policy: UploadPolicy = Field(UploadPolicy.ALLOW_ALL, alias="uploadPolicy")
    upload_restrictions: FrozenSet[str] = Field(default_factory=frozenset, alias="uploadRestrictions")

    @field_validator("upload_restrictions")
    @classmethod
    def lower_restrictions(cls, value):
        return frozenset(ext.lower() for ext in value)


class Upload(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    # Megabytes. The widget also accepts "auto", which means no limit here.
    file_size_limit: Optional[int] = Field(None, alias="fileSizeLimit")

    @field_validator("file_size_limit", mode="before")
    @classmethod
    def ignore_auto(cls, value):
        if isinstance(value, str) and not value.strip().isdigit():
            return None
        return value


class FilemanagerConfig(BaseModel):
    """
    The immutable filemanager policy handed to validators, capability
    negotiation and the service. Built once by ``build_filemanager_config``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    exclude: Exclude = Field(default_factory=Exclude)
    images: Images = Field(default_factory=Images)
    security: Security = Field(default_factory=Security)
    upload: Upload = Field(default_factory=Upload)

    @property
    def max_upload_bytes(self) -> Optional[int]:
        if self.upload.file_size_limit is None:
            return None
        return self.upload.file_size_limit * 1024 * 1024


def load_filemanager_config(path) -> FilemanagerConfig:
    """Parse the widget's JSON configuration file."""
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read filemanager config '{path}': {e}") from e
    try:
        config = FilemanagerConfig.model_validate_json(content)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid filemanager config '{path}': {e}") from e
    logging.info(f"{path} successfully loaded")
    return config


def build_filemanager_config(settings: Settings) -> FilemanagerConfig:
    """
    Builds the filemanager policy from the JSON file named by
    FILEMANAGER_CONFIG_FILE, or from the flat settings when no file is set.
    MAX_UPLOAD_SIZE_MB, when set, overrides the file's size limit.
    """
    if settings.FILEMANAGER_CONFIG_FILE:
        config = load_filemanager_config(settings.FILEMANAGER_CONFIG_FILE)
    else:
        config = FilemanagerConfig(
            exclude=Exclude(
                disallowed_files=_split_list(settings.DISALLOWED_FILES),
                disallowed_dirs=_split_list(settings.DISALLOWED_DIRS),
                disallowed_files_regex=settings.DISALLOWED_FILES_REGEX,
                disallowed_dirs_regex=settings.DISALLOWED_DIRS_REGEX,
            ),
            images=Images(extensions=_split_list(settings.IMAGE_EXTENSIONS, lower=True)),
            security=Security(
                upload_policy=settings.UPLOAD_POLICY,
                upload_restrictions=_split_list(settings.UPLOAD_RESTRICTIONS, lower=True),
            ),
        )

    if settings.MAX_UPLOAD_SIZE_MB is not None:
        config = config.model_copy(
            update={"upload": Upload(file_size_limit=settings.MAX_UPLOAD_SIZE_MB)}
        )
    return config


def load_settings(**overrides) -> Settings:
    """Builds Settings, reporting validation failures as ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings: {e}") from e


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached instance of the application settings.
    The first call to this function will initialize the settings.
    """
    return load_settings()
