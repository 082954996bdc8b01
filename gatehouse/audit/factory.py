"""Audit backend factory — backend selection and initialization.

Backend selection:
  1. config.audit.backend == "none"   → NullAuditBackend (events only logged at DEBUG)
  2. otherwise ("sqlite", the default) → LocalSQLiteBackend

LocalSQLiteBackend path:
  Default: config.audit.path (~/.gatehouse/audit.db)
  Override: GATEHOUSE_AUDIT_DB_PATH environment variable

LocalSQLiteBackend.initialize() raises RuntimeError on an incompatible
schema version; the FastAPI lifespan propagates it to refuse startup.
"""

from __future__ import annotations

import os

from gatehouse.audit.protocol import AuditBackend, NullAuditBackend
from gatehouse.config import Config
from gatehouse.utils.logger import get_logger

logger = get_logger(__name__)

_ENV_AUDIT_DB_PATH = "GATEHOUSE_AUDIT_DB_PATH"


async def create_audit_backend(config: Config) -> AuditBackend:
    """Create and initialize the configured audit backend.

    Raises:
      RuntimeError: If the SQLite schema version is incompatible.
    """
    if config.audit.backend == "none":
        logger.info("audit_backend_selected", backend="NullAuditBackend")
        return NullAuditBackend()
    return await _create_local_sqlite_backend(config)


async def _create_local_sqlite_backend(config: Config) -> AuditBackend:
    from gatehouse.audit.sqlite_backend import LocalSQLiteBackend

    db_path = os.getenv(_ENV_AUDIT_DB_PATH, config.audit.path)
    backend = LocalSQLiteBackend(db_path=db_path)
    await backend.initialize()

    logger.info("audit_backend_selected", backend="LocalSQLiteBackend", db_path=db_path)
    return backend
