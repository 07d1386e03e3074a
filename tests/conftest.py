"""Shared pytest fixtures and utilities for store back-office tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Optional
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from store_backoffice import backend, catalog, constants, data_manager, runtime  # noqa: E402
from store_backoffice.notifications import Notifier  # noqa: E402
from store_backoffice.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_USER_ID = "user-1"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Store]\n"
    "StoreName = {store_name}\n"
    "Currency = USD\n\n"
    "[Session]\n"
    "UserID = {user_id}\n"
)


def make_product(
    sku: str,
    *,
    name: Optional[str] = None,
    category: str = "tools",
    price: str = "10.00",
    cost: str = "6.00",
    stock: int = 20,
    sales_count: int = 0,
) -> data_manager.ProductRow:
    """Build a product row with sensible defaults for tests."""

    return data_manager.ProductRow(
        sku=sku,
        name=name or f"Product {sku}",
        category=category,
        price=Decimal(price),
        cost=Decimal(cost),
        stock=stock,
        sales_count=sales_count,
        status=data_manager.product_status(stock),
    )


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    user_id: str
    schema_version: str
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized store workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        seed_user_id: str | None = None,
        filename: str = "store_data.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, seed_user_id=seed_user_id, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh, empty store workbook."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = constants.EXPECTED_SCHEMA_VERSION,
        user_id: str = DEFAULT_USER_ID,
        seed: bool = False,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(
            subdir=f"bundle_{bundle_id}",
            seed_user_id=user_id if seed and user_id else None,
        )
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                user_id=user_id,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            user_id=user_id,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> Iterator[runtime.RuntimeContext]:
    """Load the runtime context for tests through the public API."""

    context = runtime.load_runtime_context(config_file)
    runtime.ensure_schema_version(context)
    yield context
    context.catalog.close()


@pytest.fixture
def workbook_backend(workbook_path: Path) -> backend.WorkbookBackend:
    """A workbook backend over a fresh, empty workbook."""

    return backend.WorkbookBackend(workbook_path)


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def mock_backend() -> Mock:
    """Return a mock backend whose catalog starts empty."""

    mocked = Mock(spec=backend.Backend)
    mocked.fetch_products.return_value = []
    mocked.subscribe.return_value = Mock(name="unsubscribe")
    return mocked


@pytest.fixture
def store_factory(workbook_backend: backend.WorkbookBackend, notifier: Notifier) -> Callable[..., catalog.CatalogStore]:
    """Create an opened catalog store over the workbook backend, pre-seeded."""

    def _create(*products: data_manager.ProductRow, user_id: str = DEFAULT_USER_ID) -> catalog.CatalogStore:
        for product in products:
            workbook_backend.insert_product(user_id, product)
        store = catalog.CatalogStore(workbook_backend, user_id, notifier)
        store.open()
        return store

    return _create
