import logging
from pathlib import Path
from typing import Optional, Union

import sentry_sdk

from net.cloudmon.errors import ConfigurationUnavailable
from net.cloudmon.store.base import PersistenceBackend
from net.cloudmon.store.file import FileBackend, ensure_data_dir
from net.cloudmon.store.relational import (
    PROBE_TIMEOUT,
    QUERY_TIMEOUT,
    RelationalBackend,
)

logger = logging.getLogger(__name__)


async def select_persistence_backend(
    database_url: Optional[str],
    data_dir: Union[str, Path],
    probe_timeout: float = PROBE_TIMEOUT,
    query_timeout: float = QUERY_TIMEOUT,
) -> PersistenceBackend:
    """
    Choose the persistence backend for the lifetime of the process.

    The data directory is always created first; failing to create it is fatal.
    When a database URL is configured it is tried exactly once. Any failure is
    logged and the file backend is used from then on, with no retry.
    """
    ensure_data_dir(data_dir)

    if not database_url:
        logger.info("Storage mode: file (%s)", data_dir)
        return FileBackend(data_dir)

    try:
        backend = await RelationalBackend.connect(
            database_url, probe_timeout, query_timeout
        )
    except ConfigurationUnavailable as e:
        sentry_sdk.capture_exception(e)
        logger.warning("%s", e)
        logger.warning("Falling back to file storage in %s", data_dir)
        return FileBackend(data_dir)

    logger.info("Storage mode: %s", backend.kind)
    return backend
