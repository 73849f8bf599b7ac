"""
Persistence Service Factory

Provides a single entry point for obtaining the persistence service.
The backend is chosen once by the BackendSelector; the rest of the
application never knows which one is active.

Usage:
    from app.storage import get_persistence_service

    service = get_persistence_service()
    await service.start()
    order = await service.create_order(4, lines)

Runtime switching:
    - save_database_config(config): persist + rebuild on the new backend
    - clear_database_config(): purge + full reload of every cached factory

Version: 1.0.0
"""

import logging
from functools import lru_cache

from app.core.config import get_settings
from app.schemas import DatabaseConfig
from app.storage.base import (
    DiagnosticsResult,
    InsufficientStockError,
    OrderNotFoundError,
    PayloadTooLargeError,
    ProductNotFoundError,
    StorageBackend,
    StorageError,
    Subscription,
)
from app.storage.local import LocalBackend
from app.storage.local_store import LocalKeyValueStore
from app.storage.remote import RemoteBackend
from app.storage.selector import BackendSelector
from app.storage.service import PersistenceService

logger = logging.getLogger(__name__)


@lru_cache()
def get_local_store() -> LocalKeyValueStore:
    """
    Process-wide local store.

    Cached so that its in-memory mirror is shared by the selector and
    the local backend.
    """
    settings = get_settings()
    return LocalKeyValueStore(
        settings.local_store_directory,
        prefix=settings.local_key_prefix,
        lock_timeout=settings.local_lock_timeout,
    )


@lru_cache()
def get_backend_selector() -> BackendSelector:
    """Selector initialized once with the startup config."""
    selector = BackendSelector(get_settings(), get_local_store())
    selector.initialize()
    return selector


@lru_cache()
def get_persistence_service() -> PersistenceService:
    """
    Get the configured persistence service instance.

    The instance is cached (singleton pattern); ``start()`` must be
    awaited once before use (the application lifespan does it).
    """
    selector = get_backend_selector()
    logger.info(f"Persistence Service: Using {type(selector.backend).__name__}")
    return PersistenceService(selector.backend)


def reset_persistence_service() -> None:
    """
    Clear every cached storage object.

    Useful for testing. The next call rebuilds store, selector and service.
    """
    get_persistence_service.cache_clear()
    get_backend_selector.cache_clear()
    get_local_store.cache_clear()
    logger.debug("Persistence service cache cleared")


async def save_database_config(config: DatabaseConfig) -> PersistenceService:
    """
    Persist a remote config and move the running service onto it.

    Returns:
        PersistenceService: The started replacement service
    """
    await get_persistence_service().close()

    if not get_backend_selector().save_config(config):
        logger.warning("Saved database config could not be used, staying on local storage")

    get_persistence_service.cache_clear()
    service = get_persistence_service()
    await service.start()
    return service


async def clear_database_config() -> PersistenceService:
    """
    Forget the remote config and reload storage from scratch.

    Every cached factory is dropped, so the new service resolves its
    config exactly like a fresh process would.
    """
    await get_persistence_service().close()
    get_backend_selector().clear_config()

    get_persistence_service.cache_clear()
    get_backend_selector.cache_clear()
    service = get_persistence_service()
    await service.start()
    return service


__all__ = [
    "get_local_store",
    "get_backend_selector",
    "get_persistence_service",
    "reset_persistence_service",
    "save_database_config",
    "clear_database_config",
    "BackendSelector",
    "PersistenceService",
    "StorageBackend",
    "LocalBackend",
    "RemoteBackend",
    "LocalKeyValueStore",
    "Subscription",
    "DiagnosticsResult",
    "StorageError",
    "PayloadTooLargeError",
    "InsufficientStockError",
    "OrderNotFoundError",
    "ProductNotFoundError",
]
