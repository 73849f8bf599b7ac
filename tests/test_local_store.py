from pathlib import Path

from app.storage.local_store import LocalKeyValueStore


def test_values_survive_a_new_store_instance(tmp_path):
    first = LocalKeyValueStore(tmp_path, prefix="venue_app")
    first.set_item("products", "[]")

    second = LocalKeyValueStore(tmp_path, prefix="venue_app")
    assert second.get_item("products") == "[]"
    assert (tmp_path / "venue_app_products.json").exists()


def test_missing_key_returns_none(store):
    assert store.get_item("orders") is None


def test_remove_item(store):
    store.set_item("db_config", "{}")
    store.remove_item("db_config")
    store.remove_item("db_config")

    assert store.get_item("db_config") is None


def test_blocked_disk_falls_back_to_memory(tmp_path):
    blocker = tmp_path / "not_a_directory"
    blocker.write_text("x")
    store = LocalKeyValueStore(blocker / "store", prefix="p")

    store.set_item("tables", '{"4": {}}')

    assert store.get_item("tables") == '{"4": {}}'
    assert store.is_persistent() is False


def test_is_persistent_on_writable_directory(store):
    assert store.is_persistent() is True


def test_write_from_another_process_is_read(tmp_path):
    store = LocalKeyValueStore(tmp_path, prefix="p")
    store.set_item("orders", "[]")

    (tmp_path / "p_orders.json").write_text('[{"changed": true}]', encoding="utf-8")

    assert store.get_item("orders") == '[{"changed": true}]'


def test_failed_write_over_existing_file_is_served_from_memory(tmp_path):
    store = LocalKeyValueStore(tmp_path, prefix="p")
    store.set_item("products", '[{"stock": 10}]')
    blocker = tmp_path / "p_products.json.tmp"
    blocker.mkdir()

    store.set_item("products", '[{"stock": 7}]')

    assert store.get_item("products") == '[{"stock": 7}]'
    assert (tmp_path / "p_products.json").read_text(encoding="utf-8") == '[{"stock": 10}]'

    blocker.rmdir()
    store.set_item("products", '[{"stock": 6}]')

    assert LocalKeyValueStore(tmp_path, prefix="p").get_item("products") == '[{"stock": 6}]'


def test_failed_delete_is_not_undone_by_the_file(tmp_path, monkeypatch):
    store = LocalKeyValueStore(tmp_path, prefix="p")
    store.set_item("tables", "{}")

    unlink = Path.unlink

    def refuse(self, missing_ok=False):
        if self.name == "p_tables.json":
            raise PermissionError("read-only volume")
        return unlink(self, missing_ok=missing_ok)

    monkeypatch.setattr(Path, "unlink", refuse)
    store.remove_item("tables")

    assert store.get_item("tables") is None
