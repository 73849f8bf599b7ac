"""
Shared fixtures.

Every test runs against its own data directory, in development mode,
with no remote database and no Gemini key configured.
"""

import pytest

from app.core.config import get_settings
from app.schemas import Category, Product
from app.services.report import reset_report_generator
from app.storage import reset_persistence_service
from app.storage.local import LocalBackend
from app.storage.local_store import LocalKeyValueStore


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("ENV_MODE", "development")
    monkeypatch.setenv("DEBUG", "false")
    monkeypatch.setenv("DATA_DIRECTORY", str(tmp_path / "data"))
    monkeypatch.setenv("REMOTE_DATABASE_URL", "")
    monkeypatch.setenv("LOCAL_POLL_INTERVAL_SECONDS", "0.05")
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.delenv("API_KEY", raising=False)

    get_settings.cache_clear()
    reset_persistence_service()
    reset_report_generator()
    yield
    get_settings.cache_clear()
    reset_persistence_service()
    reset_report_generator()


@pytest.fixture
def store(tmp_path) -> LocalKeyValueStore:
    return LocalKeyValueStore(tmp_path / "store", prefix="test", lock_timeout=1.0)


@pytest.fixture
async def local_backend(store):
    backend = LocalBackend(store, poll_interval=0.05)
    yield backend
    await backend.close()


def make_product(
    name: str = "Suco",
    price: float = 5.0,
    stock: int = 10,
    category: Category = Category.BEBIDAS,
    **kwargs,
) -> Product:
    return Product(name=name, price=price, stock=stock, category=category, **kwargs)
