"""Tests for the seed workbook setup script."""

from __future__ import annotations

import openpyxl
import pytest

from bk_pos import setup_excel
from bk_pos.constants import SheetName


def test_create_seed_workbook_writes_headers_and_admin(tmp_path):
    destination = setup_excel.create_seed_workbook(tmp_path / "seed.xlsx", admin_user_id="boss")

    workbook = openpyxl.load_workbook(destination)
    assert workbook.sheetnames == [name.value for name in SheetName]
    users = workbook[SheetName.USERS.value]
    assert [cell.value for cell in users[1]] == list(setup_excel.SHEET_COLUMNS[SheetName.USERS.value])
    assert [cell.value for cell in users[2]][:3] == ["boss", "Administrator", "admin"]
    assert users[1][0].font.bold
    assert workbook[SheetName.PRODUCTS.value].max_row == 1


def test_create_seed_workbook_with_samples(tmp_path):
    destination = setup_excel.create_seed_workbook(tmp_path / "seed.xlsx", include_samples=True)

    workbook = openpyxl.load_workbook(destination)
    assert workbook[SheetName.PRODUCTS.value].max_row == 1 + len(setup_excel.SAMPLE_PRODUCTS)
    assert workbook[SheetName.WAREHOUSE_STOCK.value]["B2"].value == 100


def test_create_seed_workbook_refuses_overwrite(tmp_path):
    destination = setup_excel.create_seed_workbook(tmp_path / "seed.xlsx")

    with pytest.raises(FileExistsError):
        setup_excel.create_seed_workbook(destination)
    setup_excel.create_seed_workbook(destination, overwrite=True)


def test_load_settings_resolves_relative_seed(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nSeedFile = data/seed.xlsx\n\n[Defaults]\nAdminUser = U-BOSS\n")

    settings = setup_excel.load_settings(config_path)

    assert settings.seed_file == (tmp_path / "data" / "seed.xlsx").resolve()
    assert settings.admin_user_id == "U-BOSS"


def test_load_settings_requires_seed_entry(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nStoreName = X\n")

    with pytest.raises(KeyError):
        setup_excel.load_settings(config_path)


def test_main_creates_workbook_from_config(tmp_path, capsys):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nSeedFile = seed.xlsx\n")

    assert setup_excel.main(["--config", str(config_path), "--samples"]) == 0
    assert (tmp_path / "seed.xlsx").exists()
    assert "[SUCCESS]" in capsys.readouterr().out

    assert setup_excel.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out


def test_main_reports_missing_config(tmp_path, capsys):
    assert setup_excel.main(["--config", str(tmp_path / "missing.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out
