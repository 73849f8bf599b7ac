"""
Backend Selector

Decides once, at startup, where the data lives.

Config resolution order:
    1. Config passed explicitly by the caller
    2. Default config from settings (REMOTE_DATABASE_URL), unless it is
       empty or still holds the placeholder marker
    3. Config previously saved by staff in the local store

A config with a database URL builds the RemoteBackend. Anything else,
including a remote backend that fails to build, leaves the process in
local mode; there is no automatic retry.

Version: 1.0.0
"""

import json
import logging
from typing import Optional

from pydantic import ValidationError

from app.core.config import Settings
from app.schemas import DatabaseConfig
from app.storage.base import StorageBackend
from app.storage.local import LocalBackend
from app.storage.local_store import LocalKeyValueStore
from app.storage.remote import RemoteBackend

logger = logging.getLogger(__name__)

DB_CONFIG_KEY = "db_config"


class BackendSelector:
    """
    Chooses between the remote and the local backend.

    Attributes:
        backend: The active backend (local until a remote one is built)
        config: The config the remote backend was built from, if any
    """

    def __init__(self, settings: Settings, store: LocalKeyValueStore):
        self.settings = settings
        self.store = store
        self.config: Optional[DatabaseConfig] = None
        self.backend: StorageBackend = self._local_backend()

    @property
    def is_remote(self) -> bool:
        return self.backend.mode == "remote"

    def _local_backend(self) -> LocalBackend:
        return LocalBackend(self.store, poll_interval=self.settings.local_poll_interval_seconds)

    def _default_config(self) -> Optional[DatabaseConfig]:
        url = self.settings.default_database_url
        if url is None:
            return None
        logger.info("Using the default remote database from settings")
        return DatabaseConfig(
            database_url=url,
            redis_url=self.settings.remote_redis_url,
            project_id=self.settings.remote_project_id,
        )

    def saved_config(self) -> Optional[DatabaseConfig]:
        """Config stored by staff, or None. Malformed entries are discarded."""
        raw = self.store.get_item(DB_CONFIG_KEY)
        if not raw:
            return None
        try:
            return DatabaseConfig.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Invalid saved database config, discarding it: {e}")
            self.store.remove_item(DB_CONFIG_KEY)
            return None

    def initialize(self, config: Optional[DatabaseConfig] = None) -> bool:
        """
        Resolve a config and build the matching backend.

        Args:
            config: Explicit config; takes precedence over everything else

        Returns:
            bool: True if the remote backend is now active
        """
        if config is None:
            config = self._default_config()
        if config is None:
            config = self.saved_config()

        if config is None or not config.is_usable:
            logger.info("No remote database configured, using local storage")
            self.config = None
            self.backend = self._local_backend()
            return False

        try:
            self.backend = RemoteBackend(
                config,
                default_redis_url=self.settings.remote_redis_url,
                max_document_bytes=self.settings.max_document_bytes,
                namespace=self.settings.change_feed_namespace,
                echo=self.settings.remote_echo_sql,
            )
        except Exception as e:
            logger.error(f"Failed to initialize remote database: {e}")
            self.config = None
            self.backend = self._local_backend()
            return False

        self.config = config
        logger.info("Remote database initialized successfully")
        return True

    def save_config(self, config: DatabaseConfig) -> bool:
        """Persist a staff-entered config and initialize with it."""
        self.store.set_item(DB_CONFIG_KEY, config.model_dump_json())
        logger.info(f"Database config saved (project={config.project_id or 'default'})")
        return self.initialize(config)

    def clear_config(self) -> None:
        """Forget the saved config and fall back to local storage."""
        self.store.remove_item(DB_CONFIG_KEY)
        self.config = None
        self.backend = self._local_backend()
        logger.info("Database config cleared")
