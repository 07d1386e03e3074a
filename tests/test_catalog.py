"""Tests for the catalog store: snapshot reads, writes, and stock reduction."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from unittest.mock import Mock

import pytest

from store_backoffice import data_manager, notifications
from store_backoffice.backend import BackendError, ChangeEvent, StockConflictError, WorkbookBackend
from store_backoffice.cart import CartLine
from store_backoffice.catalog import CatalogStore, validate_product
from store_backoffice.constants import ChangeKind
from store_backoffice.notifications import Level

from conftest import make_product


def _line(sku: str, quantity: int, price: str = "10.00") -> CartLine:
    return CartLine(sku=sku, name=f"Product {sku}", price=Decimal(price), quantity=quantity)


def _levels(notifier):
    return [entry.level for entry in notifier.entries]


# -- validation -------------------------------------------------------------


@pytest.mark.parametrize(
    "overrides",
    [
        {"sku": "  "},
        {"price": Decimal("0")},
        {"cost": Decimal("-1")},
        {"stock": -1},
        {"sales_count": -3},
    ],
)
def test_validate_product_rejects_bad_fields(overrides):
    with pytest.raises(ValueError):
        validate_product(replace(make_product("A"), **overrides))


# -- reads ------------------------------------------------------------------


def test_open_loads_snapshot_in_name_order(store_factory):
    store = store_factory(make_product("B", name="Wrench"), make_product("A", name="Anvil"))
    assert [product.sku for product in store.products] == ["A", "B"]


def test_get_product_is_idempotent_and_side_effect_free(store_factory, notifier):
    store = store_factory(make_product("A"))
    first = store.get_product("A")
    assert store.get_product("A") == first
    assert store.get_product("missing") is None
    assert notifier.entries == []


def test_search_matches_name_or_sku_case_insensitively(store_factory):
    store = store_factory(
        make_product("P1001", name="Power Drill", category="tools"),
        make_product("L3021", name="Flashlight", category="lighting"),
        make_product("P2045", name="Screwdriver", category="tools"),
    )

    assert [p.sku for p in store.search("drill")] == ["P1001"]
    assert [p.sku for p in store.search("p20")] == ["P2045"]
    assert [p.sku for p in store.search("", category="tools")] == ["P1001", "P2045"]
    assert store.search("light", category="tools") == []
    assert store.categories() == ["lighting", "tools"]


def test_refresh_failure_keeps_previous_snapshot(mock_backend, notifier):
    mock_backend.fetch_products.return_value = [make_product("A")]
    store = CatalogStore(mock_backend, "user-1", notifier)
    store.open()

    mock_backend.fetch_products.side_effect = BackendError("offline")
    assert store.refresh() is False
    assert [p.sku for p in store.products] == ["A"]
    assert notifier.entries[-1].message == notifications.LOAD_FAILED


def test_change_event_for_current_user_triggers_refresh(mock_backend, notifier):
    store = CatalogStore(mock_backend, "user-1", notifier)
    store.open()
    listener = mock_backend.subscribe.call_args.args[0]
    mock_backend.fetch_products.return_value = [make_product("X")]

    listener(ChangeEvent(ChangeKind.UPDATE, "user-2", "X", external=True))
    assert store.products == ()

    listener(ChangeEvent(ChangeKind.INSERT, "user-1", "X", external=True))
    assert [p.sku for p in store.products] == ["X"]


def test_close_unsubscribes_once(mock_backend, notifier):
    store = CatalogStore(mock_backend, "user-1", notifier)
    store.open()
    store.close()
    store.close()
    mock_backend.subscribe.return_value.assert_called_once_with()


# -- add --------------------------------------------------------------------


def test_add_persists_and_notifies(store_factory, notifier, workbook_backend):
    store = store_factory()
    assert store.add(make_product("A", stock=0)) is True

    assert store.get_product("A").status == "out-of-stock"
    assert workbook_backend.fetch_products("user-1")[0].sku == "A"
    assert notifier.entries[-1].message == notifications.PRODUCT_ADDED


def test_add_rolls_back_snapshot_when_store_rejects(mock_backend, notifier):
    store = CatalogStore(mock_backend, "user-1", notifier)
    store.open()
    mock_backend.insert_product.side_effect = BackendError("denied")

    assert store.add(make_product("A")) is False
    assert store.products == ()
    assert notifier.entries[-1] == notifications.Notification(Level.ERROR, notifications.ADD_FAILED)


def test_add_rejects_invalid_product_without_calling_store(mock_backend, notifier):
    store = CatalogStore(mock_backend, "user-1", notifier)
    store.open()

    assert store.add(make_product("A", price="0")) is False
    mock_backend.insert_product.assert_not_called()
    assert _levels(notifier) == [Level.ERROR]


# -- update -----------------------------------------------------------------


def test_update_merges_fields_and_recomputes_status(store_factory, workbook_backend):
    store = store_factory(make_product("A", stock=20))
    assert store.update("A", {"stock": 3, "name": "Renamed"}) is True

    product = store.get_product("A")
    assert (product.stock, product.status, product.name) == (3, "low-stock", "Renamed")
    assert workbook_backend.fetch_products("user-1")[0].status == "low-stock"


@pytest.mark.parametrize("changes", [{"sku": "B"}, {"status": "in-stock"}, {"price": Decimal("-2")}])
def test_update_rejects_forbidden_or_invalid_changes(store_factory, notifier, changes):
    store = store_factory(make_product("A"))
    before = store.products
    notifier.drain()

    assert store.update("A", changes) is False
    assert store.products == before
    assert _levels(notifier) == [Level.ERROR]


def test_update_unknown_product_fails(store_factory, notifier):
    store = store_factory()
    assert store.update("missing", {"stock": 1}) is False
    assert notifier.entries[-1].message == notifications.UPDATE_FAILED


def test_update_restores_snapshot_on_store_failure(mock_backend, notifier):
    mock_backend.fetch_products.return_value = [make_product("A", stock=20)]
    store = CatalogStore(mock_backend, "user-1", notifier)
    store.open()
    mock_backend.update_product.side_effect = BackendError("denied")

    assert store.update("A", {"stock": 1}) is False
    assert store.get_product("A").stock == 20


# -- reduce_stock -----------------------------------------------------------


def test_reduce_stock_moves_units_to_sales_count(store_factory, workbook_backend):
    store = store_factory(make_product("A", stock=10, sales_count=0))

    assert store.reduce_stock([_line("A", 4)]) is True

    product = store.get_product("A")
    assert (product.stock, product.sales_count, product.status) == (6, 4, "low-stock")
    persisted = workbook_backend.fetch_products("user-1")[0]
    assert (persisted.stock, persisted.sales_count) == (6, 4)


def test_reduce_stock_to_zero_marks_out_of_stock(store_factory):
    store = store_factory(make_product("A", stock=4))
    assert store.reduce_stock([_line("A", 4)]) is True
    assert store.get_product("A").status == "out-of-stock"


def test_reduce_stock_is_all_or_nothing(store_factory, workbook_backend):
    store = store_factory(make_product("A", stock=2), make_product("B", stock=9))
    before = store.products

    assert store.reduce_stock([_line("B", 1), _line("A", 3)]) is False
    assert store.products == before
    assert [p.stock for p in workbook_backend.fetch_products("user-1")] == [2, 9]


def test_reduce_stock_unknown_sku_fails(store_factory):
    store = store_factory(make_product("A"))
    assert store.reduce_stock([_line("ghost", 1)]) is False


def test_reduce_stock_combines_duplicate_lines(store_factory):
    store = store_factory(make_product("A", stock=5))
    assert store.reduce_stock([_line("A", 3), _line("A", 3)]) is False
    assert store.reduce_stock([_line("A", 2), _line("A", 3)]) is True
    assert store.get_product("A").stock == 0


def test_reduce_stock_reports_failed_line_but_succeeds(mock_backend, notifier):
    mock_backend.fetch_products.return_value = [make_product("A", stock=5), make_product("B", stock=5)]
    mock_backend.decrement_stock.side_effect = [StockConflictError("raced"), Mock()]
    store = CatalogStore(mock_backend, "user-1", notifier)
    store.open()

    assert store.reduce_stock([_line("A", 1), _line("B", 1)]) is True
    assert mock_backend.decrement_stock.call_count == 2
    assert notifier.entries[-1].message == notifications.STOCK_SYNC_FAILED.format(sku="A")


# -- signed out -------------------------------------------------------------


def test_signed_out_store_is_empty_and_read_only(mock_backend, notifier):
    store = CatalogStore(mock_backend, None, notifier)
    store.open()

    assert store.products == ()
    assert store.add(make_product("A")) is False
    assert store.update("A", {"stock": 1}) is False
    assert store.reduce_stock([_line("A", 1)]) is False
    mock_backend.fetch_products.assert_not_called()
    mock_backend.subscribe.assert_not_called()
    mock_backend.insert_product.assert_not_called()


def test_reduce_stock_above_threshold_stays_in_stock(store_factory):
    store = store_factory(make_product("A", stock=20))
    assert store.reduce_stock([_line("A", 4)]) is True
    assert store.get_product("A").status == "in-stock"


def test_update_refuses_sku_change_without_calling_store(mock_backend, notifier):
    mock_backend.fetch_products.return_value = [make_product("A")]
    store = CatalogStore(mock_backend, "user-1", notifier)
    store.open()

    assert store.update("A", {"sku": "B", "stock": 2}) is False
    mock_backend.update_product.assert_not_called()
    assert store.get_product("A").stock == 20


def test_open_over_unreadable_workbook_reports_load_failure(workbook_path, notifier):
    workbook = data_manager.open_workbook(workbook_path)
    data_manager.append_product(workbook, make_product("A"), user_id="user-1")
    workbook[data_manager.PRODUCTS_SHEET]["G2"] = "n/a"
    data_manager.save_workbook(workbook, workbook_path)

    store = CatalogStore(WorkbookBackend(workbook_path), "user-1", notifier)
    store.open()

    assert store.products == ()
    assert notifier.entries[-1] == notifications.Notification(Level.ERROR, notifications.LOAD_FAILED)
