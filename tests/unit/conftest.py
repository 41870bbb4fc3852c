"""Shared fixtures for adminkit unit tests."""

from __future__ import annotations

import pytest

from adminkit.runtime.collaborators import (
    AdminServices,
    MemorySettingsStore,
    StaticTemplateLocator,
    User,
    UserPermissionOracle,
)
from adminkit.runtime.config import AdminConfig
from adminkit.runtime.schema_cache import reset_schema_caches
from adminkit.runtime.storage import MemoryStorage
from adminkit.specs.column import ColumnDescriptor

WIDGET_COLUMNS = [
    ColumnDescriptor(name="ID", type="int(10) unsigned", default=0, primary_key=True),
    ColumnDescriptor(name="Name", type="varchar(40)", default=""),
    ColumnDescriptor(name="OwnerID", type="int(10) unsigned", default=0),
    ColumnDescriptor(name="Price", type="dollar", default=0.0),
    ColumnDescriptor(name="Phone", type="phone", default=""),
    ColumnDescriptor(name="Active", type="boolean", default=0),
    ColumnDescriptor(name="Status", type="enum('Open','Closed')", default="open"),
    ColumnDescriptor(name="Tags", type="set('Red','Green','Blue')", default=""),
]

OWNER_COLUMNS = [
    ColumnDescriptor(name="ID", type="int(10) unsigned", default=0, primary_key=True),
    ColumnDescriptor(name="Name", type="varchar(40)", default=""),
]


@pytest.fixture(autouse=True)
def _reset_schema_caches():
    """Every test starts with empty schema caches."""
    reset_schema_caches()
    yield
    reset_schema_caches()


@pytest.fixture()
def widget_columns() -> list[ColumnDescriptor]:
    return list(WIDGET_COLUMNS)


@pytest.fixture()
def storage() -> MemoryStorage:
    """Memory storage holding the Widget and Owner tables."""
    store = MemoryStorage()
    store.create_table("Widget", WIDGET_COLUMNS)
    store.create_table("Owner", OWNER_COLUMNS)
    return store


@pytest.fixture()
def seeded_storage(storage: MemoryStorage) -> MemoryStorage:
    """Storage with one owner and three widgets."""
    storage.insert("Owner", {"Name": "Alice"})
    storage.insert("Widget", {"Name": "Bolt", "OwnerID": 1, "Price": 1.5, "Status": "open"})
    storage.insert("Widget", {"Name": "Nut", "OwnerID": 1, "Price": 0.25, "Status": "closed"})
    storage.insert("Widget", {"Name": "Washer", "OwnerID": 0, "Price": 0.1, "Status": "open"})
    return storage


@pytest.fixture()
def config(tmp_path) -> AdminConfig:
    return AdminConfig(db_path=tmp_path / "data.db", log_dir=tmp_path / "logs")


@pytest.fixture()
def admin_user() -> User:
    return User(id=1, name="Admin", is_admin=True)


@pytest.fixture()
def make_services(storage, config):
    """Factory for per-request services running as ``user``."""

    def _make(user: User | None = None, templates=None, settings=None) -> AdminServices:
        return AdminServices(
            storage=storage,
            permissions=UserPermissionOracle(user),
            config=config,
            templates=templates or StaticTemplateLocator([]),
            settings=settings or MemorySettingsStore(),
            base_uri="/admin",
        )

    return _make
