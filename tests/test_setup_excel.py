"""Tests for workbook provisioning."""

from __future__ import annotations

import openpyxl
import pytest

from boutique_pos import setup_excel
from boutique_pos.constants import SHEET_COLUMNS


def test_create_workbook_writes_headers_and_title(tmp_path):
    destination = tmp_path / "shop" / "boutique.xlsx"

    created = setup_excel.create_workbook(destination, title="Layla Boutique")

    workbook = openpyxl.load_workbook(created)
    assert workbook.sheetnames == list(SHEET_COLUMNS)
    for sheet_name, columns in SHEET_COLUMNS.items():
        header = next(workbook[sheet_name].iter_rows(min_row=1, max_row=1, values_only=True))
        assert list(header) == list(columns)
    assert workbook.properties.title == "Layla Boutique"


def test_create_workbook_refuses_to_overwrite(tmp_path):
    destination = tmp_path / "boutique.xlsx"
    setup_excel.create_workbook(destination)

    with pytest.raises(FileExistsError):
        setup_excel.create_workbook(destination)


def test_load_settings_resolves_relative_data_file(config_factory):
    bundle = config_factory(make_relative=True, shop_name="Layla Boutique")

    settings = setup_excel.load_settings(bundle.config_path)

    assert settings.data_file == bundle.workbook_path.resolve()
    assert settings.shop_name == "Layla Boutique"


def test_load_settings_requires_shop_name(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile = boutique.xlsx\n", encoding="utf-8")

    with pytest.raises(KeyError):
        setup_excel.load_settings(config_path)


def test_main_names_the_shop_on_success(config_factory, capsys):
    bundle = config_factory(make_relative=True, shop_name="Layla Boutique")

    exit_code = setup_excel.main(["--config", str(bundle.config_path), "--force"])

    assert exit_code == 0
    assert "Created workbook for 'Layla Boutique'" in capsys.readouterr().out
    assert openpyxl.load_workbook(bundle.workbook_path).properties.title == "Layla Boutique"


def test_main_reports_existing_workbook(config_factory, capsys):
    bundle = config_factory(make_relative=True)

    exit_code = setup_excel.main(["--config", str(bundle.config_path)])

    assert exit_code == 1
    assert "--force" in capsys.readouterr().out


def test_main_reports_missing_config(tmp_path, capsys):
    exit_code = setup_excel.main(["--config", str(tmp_path / "missing.ini")])

    assert exit_code == 1
    assert "Configuration file not found" in capsys.readouterr().out
