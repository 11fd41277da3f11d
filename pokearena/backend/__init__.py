"""Backend package for the trainer battle server."""

from .config import BackendSettings, load_settings
from .errors import (
    AlreadyFinishedError,
    ConflictError,
    CoreError,
    DuplicateTicketError,
    InsufficientDeviceError,
    NotFoundError,
    ResourceExhaustedError,
    UnknownSpeciesError,
    ValidationError,
)
from .stats import derive_stats
from .store import DocumentStore, InMemoryDocumentStore, PostgresDocumentStore, create_store

__all__ = [
    "AlreadyFinishedError",
    "BackendSettings",
    "ConflictError",
    "CoreError",
    "create_store",
    "derive_stats",
    "DocumentStore",
    "DuplicateTicketError",
    "InMemoryDocumentStore",
    "InsufficientDeviceError",
    "load_settings",
    "NotFoundError",
    "PostgresDocumentStore",
    "ResourceExhaustedError",
    "UnknownSpeciesError",
    "ValidationError",
]
