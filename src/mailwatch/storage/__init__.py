"""Object storage for cursors and sync artifacts."""

from mailwatch.storage.objects import (
    GCSObjectStore,
    LocalObjectStore,
    ObjectNotFoundError,
    ObjectStore,
    build_object_store,
)

__all__ = [
    "GCSObjectStore",
    "LocalObjectStore",
    "ObjectNotFoundError",
    "ObjectStore",
    "build_object_store",
]
