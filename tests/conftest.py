# tests/conftest.py
import io
import logging

import pytest
from PIL import Image

from filebridge.backend_path import RootPathBuilder
from filebridge.capabilities import CapabilityPolicy
from filebridge.config import build_filemanager_config, get_settings, load_settings
from filebridge.service import Filemanager
from filebridge.storage.local import LocalConnector
from filebridge.validation import NameValidator


def make_png(width=3, height=2) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color="red").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_bytes():
    """Factory for the bytes of a real PNG image."""
    return make_png


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """get_settings() is cached; every test starts from a clean slate."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def restore_root_logger():
    """Removes the handlers setup_logging() installs on the root logger."""
    root_logger = logging.getLogger()
    handlers = list(root_logger.handlers)
    level = root_logger.level
    yield
    for handler in list(root_logger.handlers):
        if handler not in handlers and type(handler) in (logging.StreamHandler, logging.FileHandler):
            root_logger.removeHandler(handler)
            handler.close()
    root_logger.setLevel(level)


@pytest.fixture
def backend_root(tmp_path):
    """
    A small backend tree:

        /images/photo.jpg   (a real 3x2 image)
        /images/archive/
        /docs/readme.txt
        /README
        /.hidden
    """
    root = tmp_path / "root"
    (root / "images" / "archive").mkdir(parents=True)
    (root / "images" / "photo.jpg").write_bytes(make_png(3, 2))
    (root / "docs").mkdir()
    (root / "docs" / "readme.txt").write_text("hello", encoding="utf-8")
    (root / "README").write_text("read me", encoding="utf-8")
    (root / ".hidden").write_text("secret", encoding="utf-8")
    return root


@pytest.fixture
def settings(backend_root):
    return load_settings(CONNECTOR_IMPL="local", BACKEND_ROOT=str(backend_root), _env_file=None)


@pytest.fixture
def fm_config(settings):
    return build_filemanager_config(settings)


@pytest.fixture
def path_builder(backend_root):
    return RootPathBuilder(str(backend_root))


@pytest.fixture
def local_connector(fm_config):
    return LocalConnector(image_extensions=fm_config.images.extensions)


@pytest.fixture
def make_service(settings, fm_config, path_builder, local_connector):
    """Factory for a Filemanager on the local backend; keyword args override defaults."""

    def factory(config=None, connector=None, capabilities=None, policy=None, **kwargs):
        config = config or fm_config
        if policy is None:
            policy = CapabilityPolicy.from_config(
                config, capabilities if capabilities is not None else settings.DEFAULT_CAPABILITIES
            )
        return Filemanager(
            config,
            connector or local_connector,
            path_builder,
            NameValidator(config.exclude),
            policy,
            **kwargs,
        )

    return factory


@pytest.fixture
def service(make_service):
    return make_service()
