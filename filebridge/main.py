# main.py
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from .backend_path import BackendPathBuilder, RootPathBuilder, UserRootPathBuilder
from .capabilities import CapabilityPolicy
from .config import FilemanagerConfig, Settings, build_filemanager_config, get_settings
from .exceptions import ConfigurationError, FilemanagerError
from .responses import ErrorResponse, FilemanagerAction, build_error
from .service import Filemanager, stream_to
from .storage.base import Connector
from .storage.dbox import DropboxConnector
from .storage.local import LocalConnector
from .validation import NameValidator


def setup_logging(settings: Settings):
    """Configures logging to console and, if LOG_FILE is set, to a file."""
    log_level_name = settings.LOG_LEVEL.upper()
    log_level = getattr(logging, log_level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers to prevent duplicate logs on re-runs
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Console output goes to stderr; stdout carries the responses
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if settings.LOG_FILE:
        try:
            file_handler = logging.FileHandler(settings.LOG_FILE)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except IOError as e:
            root_logger.error(f"Failed to set up file logging to {settings.LOG_FILE}: {e}")

    # Reducing "noise" from third-party libraries
    logging.getLogger("dropbox").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def _read_token_file(path: str) -> Optional[str]:
    token_file = Path(path)
    if not token_file.is_file():
        logging.warning(f"Dropbox token file not found: {token_file}")
        return None
    content = token_file.read_text().strip()
    if content:
        logging.info(f"Found refresh token in file: {token_file}")
    return content or None


def _init_dropbox_connector(settings: Settings, config: FilemanagerConfig) -> DropboxConnector:
    """
    Initializes the Dropbox connector by trying the token from the environment
    and then the token file.
    """

    def connect(refresh_token):
        return DropboxConnector(
            app_key=settings.DROPBOX_APP_KEY,
            app_secret=settings.DROPBOX_APP_SECRET,
            refresh_token=refresh_token,
            image_extensions=config.images.extensions,
            chunk_size=settings.DROPBOX_UPLOAD_CHUNK_SIZE,
            encoding=settings.DEFAULT_ENCODING,
        )

    # 1. Token from the environment variable (primary for production)
    if settings.DROPBOX_REFRESH_TOKEN:
        try:
            logging.info("Attempting to connect to Dropbox using token from environment variable...")
            return connect(settings.DROPBOX_REFRESH_TOKEN)
        except Exception:
            logging.warning(
                "Failed to connect using token from environment variable. It might be invalid or expired."
            )

    # 2. Token file (fallback for local dev)
    if settings.DROPBOX_TOKEN_FILE:
        token = _read_token_file(settings.DROPBOX_TOKEN_FILE)
        if token:
            try:
                logging.info(f"Attempting to connect to Dropbox using token from '{settings.DROPBOX_TOKEN_FILE}'...")
                return connect(token)
            except Exception as e:
                logging.error(f"Failed to connect using token from file. Error: {e}", exc_info=True)

    raise ConfigurationError("Could not establish a connection to Dropbox.")


def initialize_path_builder(settings: Settings) -> BackendPathBuilder:
    flavor = "posix" if settings.CONNECTOR_IMPL == "dropbox" else "local"
    root = settings.BACKEND_ROOT or "/"
    if settings.PATH_BUILDER_IMPL == "user":
        try:
            builder = UserRootPathBuilder(root, settings.USER_ID, flavor=flavor)
        except FilemanagerError as e:
            raise ConfigurationError(f"Invalid USER_ID: {e.message}") from e
        if flavor == "local":
            os.makedirs(builder.root, exist_ok=True)
        return builder
    return RootPathBuilder(root, flavor=flavor)


def initialize_connector(settings: Settings, config: FilemanagerConfig) -> Connector:
    if settings.CONNECTOR_IMPL == "dropbox":
        logging.info("Using Dropbox connector.")
        connector = _init_dropbox_connector(settings, config)
    elif settings.CONNECTOR_IMPL == "local":
        logging.info("Using local filesystem connector.")
        if not os.path.isdir(settings.BACKEND_ROOT):
            raise ConfigurationError(f"BACKEND_ROOT is not a directory: {settings.BACKEND_ROOT}")
        connector = LocalConnector(
            image_extensions=config.images.extensions,
            encoding=settings.DEFAULT_ENCODING,
        )
    else:
        raise ConfigurationError(f"Unknown CONNECTOR_IMPL: {settings.CONNECTOR_IMPL}")
    connector.init()
    return connector


def build_service(settings: Settings) -> Filemanager:
    """
    Builds every startup object. Any configuration problem raises
    ConfigurationError here, before the first request is handled.
    """
    config = build_filemanager_config(settings)
    validator = NameValidator(config.exclude)
    policy = CapabilityPolicy.from_config(config, settings.DEFAULT_CAPABILITIES)
    connector = initialize_connector(settings, config)
    path_builder = initialize_path_builder(settings)
    return Filemanager(
        config,
        connector,
        path_builder,
        validator,
        policy,
        date_format=settings.DATE_FORMAT,
        icons_path=settings.ICONS_PATH,
        force_single_extension=settings.FORCE_SINGLE_EXTENSION,
        secure_image_uploads=settings.SECURE_IMAGE_UPLOADS,
    )


def check_configuration(settings: Settings) -> bool:
    try:
        build_service(settings)
    except ConfigurationError as e:
        logging.critical(f"Configuration check failed: {e}")
        return False
    logging.info("Configuration check passed.")
    return True


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve file-manager actions against a storage backend.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("check", help="Validate the configuration and exit.")

    ls = sub.add_parser("ls", help="List a folder.")
    ls.add_argument("path", nargs="?", default="/")
    ls.add_argument("--size", action="store_true", help="Compute folder sizes.")

    info = sub.add_parser("info", help="Show file or folder info.")
    info.add_argument("path")
    info.add_argument("--size", action="store_true", help="Compute folder sizes.")

    mkdir = sub.add_parser("mkdir", help="Create a folder.")
    mkdir.add_argument("parent")
    mkdir.add_argument("name")

    rename = sub.add_parser("rename", help="Rename a file or folder.")
    rename.add_argument("path")
    rename.add_argument("new_name")

    rm = sub.add_parser("rm", help="Delete a file or folder.")
    rm.add_argument("path")

    upload = sub.add_parser("upload", help="Upload a local file into a folder.")
    upload.add_argument("directory")
    upload.add_argument("file")
    upload.add_argument("--name", help="Target name (defaults to the local file name).")

    replace = sub.add_parser("replace", help="Replace an existing file with a local file.")
    replace.add_argument("path")
    replace.add_argument("file")

    download = sub.add_parser("download", help="Download a file.")
    download.add_argument("path")
    download.add_argument("-o", "--output", help="Output file (defaults to stdout).")

    edit = sub.add_parser("edit", help="Print the text content of a file.")
    edit.add_argument("path")
    return parser


def _download(service: Filemanager, path: str, output: Optional[str]) -> int:
    try:
        content = service.download(path)
    except FilemanagerError as e:
        print(build_error(FilemanagerAction.DOWNLOAD, e).render())
        return 1
    if output:
        with open(output, "wb") as f:
            stream_to(content, f.write)
    else:
        stream_to(content, sys.stdout.buffer.write)
        sys.stdout.buffer.flush()
    return 0


def run_command(service: Filemanager, args) -> int:
    if args.command == "download":
        return _download(service, args.path, args.output)

    if args.command == "ls":
        response = service.get_folder(args.path, need_size=args.size)
    elif args.command == "info":
        response = service.get_info(args.path, need_size=args.size)
    elif args.command == "mkdir":
        response = service.add_folder(args.parent, args.name)
    elif args.command == "rename":
        response = service.rename(args.path, args.new_name)
    elif args.command == "rm":
        response = service.delete(args.path)
    elif args.command == "upload":
        with open(args.file, "rb") as f:
            name = args.name or os.path.basename(args.file)
            response = service.upload(args.directory, name, f, content_length=os.fstat(f.fileno()).st_size)
    elif args.command == "replace":
        with open(args.file, "rb") as f:
            response = service.replace(args.path, f, content_length=os.fstat(f.fileno()).st_size)
    elif args.command == "edit":
        response = service.edit(args.path)
    else:
        raise ValueError(f"Unknown command: {args.command}")

    print(response.render())
    return 1 if isinstance(response, ErrorResponse) else 0


def main(argv=None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(settings)

    if args.command == "check":
        return 0 if check_configuration(settings) else 1

    try:
        service = build_service(settings)
    except ConfigurationError as e:
        logging.critical(f"Startup failed: {e}")
        return 1
    return run_command(service, args)


if __name__ == "__main__":
    sys.exit(main())
