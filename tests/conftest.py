"""Shared pytest fixtures and utilities for BK POS tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from bk_pos import cli, constants, core_logic, data_manager, stock_ledger  # noqa: E402
from bk_pos.setup_excel import create_seed_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
ADMIN_ID = "U-ADMIN"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "SeedFile = {seed_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Sales]\n"
    "TaxRate = {tax_rate}\n"
    "Currency = IDR\n\n"
    "[Defaults]\n"
    "AdminUser = {admin_user_id}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    seed_path: Path
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
def seed_workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates a seed workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        include_samples: bool = True,
        filename: str = "seed_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        seed_path = base_dir / filename
        create_seed_workbook(seed_path, include_samples=include_samples, overwrite=True)
        return seed_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, seed_workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/seed bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        tax_rate: str = "0",
        include_samples: bool = True,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        seed_path = seed_workbook_factory(subdir=bundle_dir_name, include_samples=include_samples)
        seed_entry = seed_path.name if make_relative else str(seed_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                seed_file=seed_entry,
                store_name=store_name,
                schema_version=schema_version,
                tax_rate=tax_rate,
                admin_user_id=ADMIN_ID,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            seed_path=seed_path,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Context loaded through the public API from the sample seed workbook."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Ledger fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Default settings with a zero tax rate."""

    return data_manager.ConfigSettings(
        seed_file=tmp_path / "seed_workbook.xlsx",
        store_name="Test Store",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        tax_rate=Decimal("0"),
    )


@pytest.fixture
def empty_context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Context over an empty in-memory store."""

    return core_logic.RuntimeContext(settings=settings, store=data_manager.create_memory_store())


@pytest.fixture
def ledger_context(empty_context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Context with products ``P`` (10.00) and ``Q`` (4.00), one admin, two riders.

    The warehouse holds 100 units of ``P`` and 50 of ``Q``; riders hold nothing.
    """

    context = empty_context
    core_logic.add_category(context, category_id="C1", category_name="General")
    core_logic.add_product(context, product_id="P", product_name="Product P", category_id="C1", unit_price=Decimal("10.00"))
    core_logic.add_product(context, product_id="Q", product_name="Product Q", category_id="C1", unit_price=Decimal("4.00"))
    core_logic.add_user(context, user_id=ADMIN_ID, user_name="Admin", role=constants.Role.ADMIN)
    core_logic.add_user(context, user_id="rider1", user_name="Rider One", role=constants.Role.RIDER)
    core_logic.add_user(context, user_id="rider2", user_name="Rider Two", role=constants.Role.RIDER)
    stock_ledger.receive_stock(context, "P", 100)
    stock_ledger.receive_stock(context, "Q", 50)
    return context


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="bk-pos", description="BK POS CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """Provide a placeholder command table entry for dispatch tests."""

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        execute.__dict__["called"] = True
        return 0

    def register(
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> argparse.ArgumentParser:
        return subparsers.add_parser("catalog-test")

    spec = cli.CommandSpec(
        name="catalog-test",
        help_text="help",
        register=register,
        execute=execute,
    )
    return "catalog-test", spec


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
