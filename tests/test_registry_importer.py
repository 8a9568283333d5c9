"""Tests for notifier/registry_importer.py."""
from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pandas as pd
import pytest

from notifier.models import DeviceRegistryEntry
from notifier.registry_importer import (
    fetch_latest_import_file,
    import_registry_file,
    normalize_header,
    parse_excel_date,
    read_registry_sheet,
)

ROWS = [
    ["Calibration register 2026", None, None, None, None],
    ["Equipment Code", "Perform Date", "Due Date", "Team", "Location"],
    ["EQ-001", "01/01/2024", "01/01/2025", "Biomed", "Lab 2"],
    [None, "x", None, None, None],
    ["EQ-002", datetime(2024, 2, 1), None, None, None],
    [None, None, None, None, None],
]


def _write_workbook(path, rows, sheet_name="MASTER"):
    pd.DataFrame(rows).to_excel(path, sheet_name=sheet_name, header=False, index=False)
    return str(path)


class TestParseExcelDate:
    def test_datetime_cell(self):
        assert parse_excel_date(datetime(2024, 2, 1, 13, 0)) == date(2024, 2, 1)
        assert parse_excel_date(pd.Timestamp("2024-02-01")) == date(2024, 2, 1)

    def test_date_cell(self):
        assert parse_excel_date(date(2024, 2, 1)) == date(2024, 2, 1)

    def test_serial_number(self):
        assert parse_excel_date(45000) == date(2023, 3, 15)

    def test_day_first_strings(self):
        assert parse_excel_date("05/11/2024") == date(2024, 11, 5)
        assert parse_excel_date("5-11-24") == date(2024, 11, 5)

    def test_named_month(self):
        assert parse_excel_date("5-Nov-24") == date(2024, 11, 5)
        assert parse_excel_date("05 November 2024") == date(2024, 11, 5)

    def test_empty_and_invalid(self):
        assert parse_excel_date(None) is None
        assert parse_excel_date("") is None
        assert parse_excel_date(float("nan")) is None
        assert parse_excel_date(pd.NaT) is None
        assert parse_excel_date("31/02/2024") is None


class TestNormalizeHeader:
    def test_spaces_and_underscores_removed(self):
        assert normalize_header(" Equipment_Code ") == "equipmentcode"
        assert normalize_header(None) == ""


class TestReadRegistrySheet:
    def test_header_row_is_detected(self, tmp_path):
        path = _write_workbook(tmp_path / "registry.xlsx", ROWS)

        df = read_registry_sheet(path)

        assert df.attrs["header_row"] == 2
        assert df.attrs["sheet_name"] == "MASTER"
        assert list(df.columns)[:2] == ["Equipment Code", "Perform Date"]
        assert len(df) == 3

    def test_first_sheet_is_used_without_master_sheet(self, tmp_path):
        path = _write_workbook(tmp_path / "registry.xlsx", ROWS[1:3], sheet_name="Sheet1")

        df = read_registry_sheet(path)

        assert df.attrs["sheet_name"] == "Sheet1"
        assert df.attrs["header_row"] == 1
        assert len(df) == 1

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "broken.xlsx"
        path.write_text("not a workbook")
        with pytest.raises(ValueError):
            read_registry_sheet(str(path))


class TestImportRegistryFile:
    def test_rows_are_upserted(self, db_session, tmp_path):
        path = _write_workbook(tmp_path / "registry.xlsx", ROWS)

        summary = import_registry_file(db_session, path)

        assert summary["total_rows"] == 3
        assert summary["imported"] == 2
        assert summary["missing_code"] == 1
        assert summary["sample_missing"][0]["row"] == 4

        entry = db_session.get(DeviceRegistryEntry, "EQ-001")
        assert entry.perform_date.date() == date(2024, 1, 1)
        assert entry.due_date.date() == date(2025, 1, 1)
        assert entry.team == "Biomed"
        assert entry.location == "Lab 2"
        assert entry.active is True
        assert entry.source_excel_name == "registry.xlsx"

        second = db_session.get(DeviceRegistryEntry, "EQ-002")
        assert second.perform_date.date() == date(2024, 2, 1)
        assert second.due_date is None
        assert second.team is None

    def test_reimport_updates_in_place(self, db_session, tmp_path):
        path = _write_workbook(tmp_path / "registry.xlsx", ROWS)
        import_registry_file(db_session, path)

        updated = [row[:] for row in ROWS]
        updated[2][3] = "Radiology"
        import_registry_file(db_session, _write_workbook(tmp_path / "registry-2.xlsx", updated))

        db_session.expire_all()
        assert db_session.query(DeviceRegistryEntry).count() == 2
        assert db_session.get(DeviceRegistryEntry, "EQ-001").team == "Radiology"


class TestFetchLatestImportFile:
    @patch("notifier.registry_importer._get_s3_client")
    def test_downloads_newest_workbook(self, mock_client_factory, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("IMPORT_S3_BUCKET", "assets-bucket")
        s3 = mock_client_factory.return_value
        older = datetime(2026, 10, 1, tzinfo=timezone.utc)
        newer = datetime(2026, 10, 18, tzinfo=timezone.utc)
        s3.get_paginator.return_value.paginate.return_value = [
            {"Contents": [
                {"Key": "imports/old.xlsx", "Size": 10, "LastModified": older},
                {"Key": "imports/notes.txt", "Size": 10, "LastModified": newer},
            ]},
            {"Contents": [
                {"Key": "imports/new.xlsx", "Size": 10, "LastModified": newer},
                {"Key": "imports/~$new.xlsx", "Size": 10, "LastModified": newer},
                {"Key": "imports/empty.xlsx", "Size": 0, "LastModified": newer},
            ]},
        ]

        success, path, last_modified, error = fetch_latest_import_file()

        assert success is True
        assert error is None
        assert last_modified == newer
        assert path.endswith("new.xlsx")
        s3.download_file.assert_called_once()
        assert s3.download_file.call_args[1]["Key"] == "imports/new.xlsx"

    @patch("notifier.registry_importer._get_s3_client")
    def test_no_workbooks(self, mock_client_factory, monkeypatch):
        monkeypatch.setenv("IMPORT_S3_BUCKET", "assets-bucket")
        mock_client_factory.return_value.get_paginator.return_value.paginate.return_value = [{}]

        success, path, _, error = fetch_latest_import_file()

        assert success is False
        assert path is None
        assert "No Excel files" in error

    def test_missing_bucket_setting(self, monkeypatch):
        monkeypatch.delenv("IMPORT_S3_BUCKET", raising=False)
        success, _, _, error = fetch_latest_import_file()
        assert success is False
        assert "IMPORT_S3_BUCKET" in error

    def test_local_file_override(self, tmp_path):
        path = tmp_path / "registry.xlsx"
        path.write_bytes(b"x")
        assert fetch_latest_import_file(str(path)) == (True, str(path), None, None)

    def test_local_file_missing(self, tmp_path):
        success, _, _, error = fetch_latest_import_file(str(tmp_path / "missing.xlsx"))
        assert success is False
        assert "not found" in error

    def test_s3_errors_are_reported(self, monkeypatch):
        monkeypatch.setenv("IMPORT_S3_BUCKET", "assets-bucket")
        client = MagicMock()
        client.get_paginator.side_effect = RuntimeError("access denied")
        with patch("notifier.registry_importer._get_s3_client", return_value=client):
            success, _, _, error = fetch_latest_import_file()
        assert success is False
        assert "access denied" in error
