from app.core.config import Settings
from app.schemas import DatabaseConfig
from app.storage.local import LocalBackend
from app.storage.remote import RemoteBackend
from app.storage.selector import DB_CONFIG_KEY, BackendSelector


def _settings(tmp_path, **overrides) -> Settings:
    values = {"data_directory": str(tmp_path), "remote_database_url": ""}
    values.update(overrides)
    return Settings(**values)


def _sqlite_config(tmp_path, project_id="saved") -> DatabaseConfig:
    return DatabaseConfig(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'remote.db'}",
        project_id=project_id,
    )


def test_no_config_means_local(tmp_path, store):
    selector = BackendSelector(_settings(tmp_path), store)

    assert selector.initialize() is False
    assert isinstance(selector.backend, LocalBackend)
    assert selector.is_remote is False


def test_placeholder_default_is_ignored(tmp_path, store):
    selector = BackendSelector(_settings(tmp_path, remote_database_url="CHANGE_ME"), store)

    assert selector.initialize() is False


def test_default_config_from_settings(tmp_path, store):
    url = f"sqlite+aiosqlite:///{tmp_path / 'default.db'}"
    selector = BackendSelector(_settings(tmp_path, remote_database_url=url), store)

    assert selector.initialize() is True
    assert isinstance(selector.backend, RemoteBackend)
    assert selector.config.database_url == url


def test_saved_config_is_used_and_survives_restart(tmp_path, store):
    selector = BackendSelector(_settings(tmp_path), store)
    assert selector.save_config(_sqlite_config(tmp_path)) is True

    restarted = BackendSelector(_settings(tmp_path), store)
    assert restarted.initialize() is True
    assert restarted.config.project_id == "saved"


def test_explicit_config_wins(tmp_path, store):
    selector = BackendSelector(_settings(tmp_path), store)
    selector.save_config(_sqlite_config(tmp_path, project_id="saved"))

    selector.initialize(_sqlite_config(tmp_path, project_id="explicit"))

    assert selector.config.project_id == "explicit"


def test_unusable_config_stays_local(tmp_path, store):
    selector = BackendSelector(_settings(tmp_path), store)

    assert selector.initialize(DatabaseConfig(database_url="")) is False
    assert selector.backend.mode == "local"


def test_broken_remote_falls_back_to_local(tmp_path, store):
    selector = BackendSelector(_settings(tmp_path), store)

    assert selector.initialize(DatabaseConfig(database_url="nosuchdialect://x")) is False
    assert selector.backend.mode == "local"
    assert selector.config is None


def test_malformed_saved_config_is_discarded(tmp_path, store):
    store.set_item(DB_CONFIG_KEY, "{broken")
    selector = BackendSelector(_settings(tmp_path), store)

    assert selector.saved_config() is None
    assert store.get_item(DB_CONFIG_KEY) is None


def test_clear_config(tmp_path, store):
    selector = BackendSelector(_settings(tmp_path), store)
    selector.save_config(_sqlite_config(tmp_path))

    selector.clear_config()

    assert store.get_item(DB_CONFIG_KEY) is None
    assert selector.is_remote is False
    assert selector.initialize() is False
