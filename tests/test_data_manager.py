"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from decimal import Decimal
from pathlib import Path

import pytest

from bk_pos import constants, data_manager


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nSeedFile=seed.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file().resolve() == config_file.resolve()


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    parser = data_manager.read_config(config_file)
    assert parser.get("System", "StoreName") == "Test Store"
    assert parser.get("Sales", "TaxRate") == "0"


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative SeedFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = configparser.ConfigParser()
    parser.read(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.seed_file == (bundle.config_path.parent / bundle.seed_path.name).resolve()
    assert settings.store_name == "Test Store"


def test_parse_settings_defaults_sales_section(tmp_path):
    """Without a [Sales] section the tax rate is zero."""

    parser = configparser.ConfigParser()
    parser.read_string("[System]\nSeedFile=seed.xlsx\nStoreName=S\nSchemaVersion=1.0.0\n")

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.tax_rate == Decimal("0")
    assert settings.currency == "IDR"


def test_parse_settings_reads_tax_rate(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nSeedFile=seed.xlsx\nStoreName=S\nSchemaVersion=1.0.0\n"
        "[Sales]\nTaxRate=0.11\n"
    )

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.tax_rate == Decimal("0.11")


@pytest.mark.parametrize("raw_rate", ["abc", "-0.1", "1", "1.5"])
def test_parse_settings_rejects_invalid_tax_rate(tmp_path, raw_rate):
    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nSeedFile=seed.xlsx\nStoreName=S\nSchemaVersion=1.0.0\n"
        f"[Sales]\nTaxRate={raw_rate}\n"
    )

    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Seed workbook
# ---------------------------------------------------------------------------


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_iterators_read_sample_seed(seed_workbook_factory):
    """The sample seed should round-trip into typed rows."""

    workbook = data_manager.open_workbook(seed_workbook_factory())
    try:
        categories = list(data_manager.iter_categories(workbook))
        products = list(data_manager.iter_products(workbook))
        users = list(data_manager.iter_users(workbook))
        stock = list(data_manager.iter_warehouse_stock(workbook))
    finally:
        workbook.close()

    assert [category.category_id for category in categories] == ["C-DRINK", "C-SNACK"]
    tea = products[0]
    assert tea == data_manager.ProductRow("P-TEA", "Iced Tea", "C-DRINK", Decimal("5000"), "bottle")
    assert {user.user_id: user.role for user in users} == {
        "U-ADMIN": constants.Role.ADMIN,
        "R-001": constants.Role.RIDER,
        "R-002": constants.Role.RIDER,
    }
    assert users[0].credential is None
    assert data_manager.WarehouseStockRow("P-TEA", 100) in stock


def test_iterators_skip_blank_rows_on_empty_seed(seed_workbook_factory):
    workbook = data_manager.open_workbook(seed_workbook_factory(include_samples=False))
    try:
        assert list(data_manager.iter_products(workbook)) == []
        assert [user.user_id for user in data_manager.iter_users(workbook)] == ["U-ADMIN"]
    finally:
        workbook.close()


def test_deserialize_product_applies_defaults():
    product = data_manager.deserialize_product(("7", "Water", "C1", None, None))

    assert product.product_id == "7"
    assert product.unit_price == Decimal("0.00")
    assert product.unit == "pcs"


def test_deserialize_product_avoids_float_artifacts():
    product = data_manager.deserialize_product(("P", "Water", "C1", 0.1, "btl"))

    assert product.unit_price == Decimal("0.1")


def test_deserialize_user_normalizes_role():
    user = data_manager.deserialize_user(("R9", "Rider", " RIDER ", "secret"))

    assert user.role is constants.Role.RIDER
    assert user.credential == "secret"


def test_deserialize_user_rejects_unknown_role():
    with pytest.raises(ValueError):
        data_manager.deserialize_user(("X", "Guest", "guest", None))


@pytest.mark.parametrize("raw_quantity", [-1, 2.5, "-3"])
def test_deserialize_warehouse_stock_rejects_invalid_quantity(raw_quantity):
    with pytest.raises(ValueError):
        data_manager.deserialize_warehouse_stock(("P", raw_quantity))


def test_deserialize_warehouse_stock_accepts_whole_floats():
    assert data_manager.deserialize_warehouse_stock(("P", 5.0)).quantity == 5


def test_serialize_product_writes_price_as_text():
    row = data_manager.ProductRow("P", "Water", "C1", Decimal("0.10"), "btl")

    assert data_manager.serialize_product(row) == ["P", "Water", "C1", "0.10", "btl"]


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


def test_in_memory_repository_add_get_update():
    repository = data_manager.InMemoryRepository("widget")
    repository.add("a", 1)
    repository.add("b", 2)
    repository.update("a", 5)

    assert repository.get("a") == 5
    assert repository.get("missing") is None
    assert repository.items() == [("a", 5), ("b", 2)]
    assert repository.list() == [5, 2]
    assert "b" in repository
    assert len(repository) == 2


def test_in_memory_repository_rejects_duplicate_add():
    repository = data_manager.InMemoryRepository("widget")
    repository.add("a", 1)

    with pytest.raises(KeyError):
        repository.add("a", 2)
    assert repository.get("a") == 1


def test_in_memory_repository_rejects_unknown_update():
    repository = data_manager.InMemoryRepository("widget")

    with pytest.raises(KeyError):
        repository.update("a", 1)


def test_append_only_log_preserves_order_and_rejects_duplicates():
    log = data_manager.AppendOnlyLog("entry", key_of=lambda value: value[0])
    log.append(("k1", 1))
    log.append(("k2", 2))

    with pytest.raises(KeyError):
        log.append(("k1", 3))
    assert log.list() == [("k1", 1), ("k2", 2)]
    assert log.get("k1") == ("k1", 1)
    assert len(log) == 2


def test_append_only_log_offers_no_mutation_beyond_append():
    log = data_manager.AppendOnlyLog("entry", key_of=str)
    log.append("x")

    snapshot = log.list()
    snapshot.clear()

    assert log.list() == ["x"]
    assert not hasattr(log, "update")
    assert not hasattr(log, "remove")


def test_create_memory_store_is_empty():
    store = data_manager.create_memory_store()

    assert store.products.list() == []
    assert len(store.transactions) == 0
    assert len(store.movements) == 0
    assert store.pending_quotes == {}
    assert store.committed_quotes == set()
