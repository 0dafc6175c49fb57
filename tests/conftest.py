# tests/conftest.py
import logging
from typing import AsyncGenerator, Dict, List

import pytest
import pytest_asyncio

from async_filestore.config import FileStoreConfig
from async_filestore.db_implementations.filestore import (FileStore,
                                                         create_datastore,
                                                         destroy_datastore)

# Autosave ticks are pushed out of the way; tests save explicitly or close().
TEST_AUTOSAVE_INTERVAL = 60_000


@pytest.fixture(scope="session")
def logger():
    """Create a test logger."""
    _logger = logging.getLogger("test_filestore_logger")
    if not _logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.setLevel(logging.DEBUG)
        _logger.addHandler(handler)
        _logger.setLevel(logging.DEBUG)
        _logger.propagate = False
    return logging.LoggerAdapter(_logger, {})


@pytest.fixture
def config(tmp_path) -> FileStoreConfig:
    return FileStoreConfig.model_validate(
        {
            "env": "test",
            "database": {
                "path": str(tmp_path / "workspace"),
                "autosave_interval": TEST_AUTOSAVE_INTERVAL,
            },
        }
    )


@pytest_asyncio.fixture
async def store(config) -> AsyncGenerator[FileStore, None]:
    """A store connected to the 'content' database."""
    _store = create_datastore(config)
    await _store.connect("content", "users")
    yield _store
    await destroy_datastore(_store)


@pytest.fixture
def users() -> List[Dict]:
    return [
        {"name": "Ernie", "age": 7, "colour": "yellow"},
        {"name": "Oscar", "age": 9, "colour": "green"},
        {"name": "BigBird", "age": 13, "colour": "yellow"},
    ]
