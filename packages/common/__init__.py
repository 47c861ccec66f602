# Common utilities

from packages.common.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ConflictError,
    ContentGenerationError,
    DatabaseError,
    DataIntegrityError,
    MemoryDeckError,
    MigrationError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from packages.common.logging import (
    clear_request_id,
    configure_logging,
    get_logger,
    get_request_id,
    log_context,
    set_request_id,
)

__all__ = [
    "AuthorizationError",
    "ConfigurationError",
    "ConflictError",
    "ContentGenerationError",
    "DataIntegrityError",
    "DatabaseError",
    "MemoryDeckError",
    "MigrationError",
    "NotFoundError",
    "TransientStoreError",
    "ValidationError",
    "clear_request_id",
    "configure_logging",
    "get_logger",
    "get_request_id",
    "log_context",
    "set_request_id",
]
