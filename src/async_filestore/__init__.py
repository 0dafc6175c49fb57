# src/async_filestore/__init__.py

"""
Async FileStore Library Initialization.

This package provides an asynchronous document store backed by an embedded,
file-persisted database, exposing the find/insert/update/delete contract of
a data-layer host.

It initializes a logger with a NullHandler and makes the store, its
configuration, the query/update/projection helpers and exceptions available
at the top level.
"""

import logging

__version__ = "0.1.0"

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
# Library logs are discarded unless the consuming application configures
# logging for "async_filestore".
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False

# --------------------------------------------------------------------------
# Core Interface and Exception Exports
# --------------------------------------------------------------------------
from .base.interfaces import DataStore
from .base.exceptions import (KeyAlreadyExistsException,
                              NotConnectedException, ObjectNotFoundException,
                              ProjectionValidationException,
                              UnsupportedOperatorException)

# --------------------------------------------------------------------------
# Query, Projection and Update Exports
# --------------------------------------------------------------------------
from .base.query import (QueryOptions, SortParameters, get_sort_parameters,
                         prepare_query)
from .base.projection import Projection, project
from .base.update import Update, apply_update

# --------------------------------------------------------------------------
# Configuration and Store Exports
# --------------------------------------------------------------------------
from .config import DatabaseConfig, FileStoreConfig, load_config
from .db_implementations.filestore import (ConnectionState, FileStore,
                                           create_datastore,
                                           destroy_datastore)

__all__ = [
    # Core
    "DataStore",
    "FileStore",
    "ConnectionState",
    "create_datastore",
    "destroy_datastore",
    # Exceptions
    "ObjectNotFoundException",
    "KeyAlreadyExistsException",
    "NotConnectedException",
    "ProjectionValidationException",
    "UnsupportedOperatorException",
    # Query
    "QueryOptions",
    "SortParameters",
    "get_sort_parameters",
    "prepare_query",
    # Projection
    "Projection",
    "project",
    # Update
    "Update",
    "apply_update",
    # Configuration
    "DatabaseConfig",
    "FileStoreConfig",
    "load_config",
    # Logging
    "logger",
    "__version__",
]
