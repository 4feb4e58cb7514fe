"""
Unit tests for tablet_loans.services.csv_import – cell parsing, row validation, templates, export.
"""
import csv
import io
from datetime import date

from tablet_loans.db.models import DeviceCondition, DeviceStatus
from tablet_loans.services.csv_import import (
    borrower_template_csv,
    device_template_csv,
    parse_boolean,
    parse_borrower_csv,
    parse_condition,
    parse_date,
    parse_device_csv,
    rows_to_csv,
)


class TestParseBoolean:
    def test_truthy_values(self):
        for value in ("true", "TRUE", "yes", "Y", "1", " true "):
            assert parse_boolean(value) is True

    def test_falsy_values(self):
        for value in ("false", "no", "0", "", None, "maybe"):
            assert parse_boolean(value) is False


class TestParseDate:
    def test_iso_and_us_formats(self):
        assert parse_date("2000-05-15") == date(2000, 5, 15)
        assert parse_date("05/15/2000") == date(2000, 5, 15)
        assert parse_date("2000-05-15T00:00:00") == date(2000, 5, 15)

    def test_zero_date_is_none(self):
        assert parse_date("0000-00-00") is None

    def test_out_of_range_year_is_none(self):
        assert parse_date("1850-01-01") is None
        assert parse_date("2200-01-01") is None

    def test_garbage_is_none(self):
        assert parse_date("yesterday") is None
        assert parse_date("") is None


class TestParseCondition:
    def test_aliases_map_to_excellent(self):
        assert parse_condition("New / Excellent") == "Excellent"
        assert parse_condition("new") == "Excellent"

    def test_case_insensitive(self):
        assert parse_condition("fair") == "Fair"

    def test_unknown_passed_through(self):
        assert parse_condition("Shattered") == "Shattered"


class TestParseDeviceCsv:
    def test_camel_case_headers(self):
        content = (
            "brand,model,serialNumber,imei,status,condition,hasCharger,hasCable,hasBox\n"
            "Apple,iPad 9,DMPX1,,Serviceable,New / Excellent,true,yes,0\n"
        )
        rows, errors = parse_device_csv(content)

        assert errors == []
        assert len(rows) == 1
        device = rows[0]
        assert device.serial_number == "DMPX1"
        assert device.imei is None
        assert device.condition == DeviceCondition.EXCELLENT
        assert (device.has_charger, device.has_cable, device.has_box) == (True, True, False)

    def test_human_headers_and_defaults(self):
        content = "Brand,Model,Serial Number\nLenovo,Tab M10,HGT-1\n"
        rows, errors = parse_device_csv(content)

        assert errors == []
        assert rows[0].status == DeviceStatus.SERVICEABLE
        assert rows[0].condition == DeviceCondition.GOOD

    def test_bad_rows_reported_by_line(self):
        content = (
            "brand,model,serialNumber,status\n"
            "Apple,iPad,OK-1,Serviceable\n"
            "Apple,,MISSING-MODEL,Serviceable\n"
            "\n"
            "Apple,iPad,BAD-STATUS,Borrowed\n"
        )
        rows, errors = parse_device_csv(content)

        assert [r.serial_number for r in rows] == ["OK-1"]
        assert [e.line for e in errors] == [3, 5]
        assert "model" in errors[0].message
        assert "status" in errors[1].message

    def test_byte_order_mark_stripped(self):
        rows, errors = parse_device_csv("﻿brand,model,serialNumber\nApple,iPad,BOM-1\n")
        assert errors == []
        assert rows[0].brand == "Apple"

    def test_template_parses(self):
        rows, errors = parse_device_csv(device_template_csv())
        assert errors == []
        assert [r.serial_number for r in rows] == ["DMQV32AABD3F", "R9XN20BE456P"]


class TestParseBorrowerCsv:
    def test_registry_headers(self):
        content = (
            "Student No.,Last Name,First Name,Middle Name,Program Name,Year Level,Date Of Birth\n"
            "2024-0001,Cruz,Maria,Santos,BS Nursing,2,0000-00-00\n"
        )
        rows, errors = parse_borrower_csv(content)

        assert errors == []
        borrower = rows[0]
        assert borrower.student_number == "2024-0001"
        assert borrower.full_name == "Maria Santos Cruz"
        assert borrower.year_level == 2
        assert borrower.date_of_birth is None

    def test_non_numeric_year_level_defaults(self):
        content = "studentId,lastName,firstName,programName,yearLevel\n1,Doe,Jo,BSIT,second\n"
        rows, errors = parse_borrower_csv(content)
        assert errors == []
        assert rows[0].year_level == 1

    def test_missing_required_column(self):
        content = "studentId,lastName,firstName\n1,Doe,Jo\n"
        rows, errors = parse_borrower_csv(content)
        assert rows == []
        assert errors[0].line == 2
        assert "program_name" in errors[0].message

    def test_template_parses(self):
        rows, errors = parse_borrower_csv(borrower_template_csv())
        assert errors == []
        assert [r.student_number for r in rows] == ["2023001", "2023002"]
        assert rows[0].date_of_birth == date(2000, 5, 15)


class TestRowsToCsv:
    def test_none_written_as_empty_and_extras_ignored(self):
        content = rows_to_csv(
            [{"id": "1", "name": None, "secret": "x"}], ["id", "name"]
        )
        records = list(csv.DictReader(io.StringIO(content)))
        assert records == [{"id": "1", "name": ""}]
