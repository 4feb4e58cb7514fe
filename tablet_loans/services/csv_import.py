"""
CSV import, export and template helpers for devices and borrowers.

Import files may use either the camelCase keys of the device template
(``serialNumber``, ``hasCharger``) or the human headers of the student
registry export (``Student No.``, ``Last Name``). Every row is validated on
its own; a bad row is reported with its line number and the rest of the file
is still imported.
"""

import csv
import io
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from tablet_loans.core.logging import get_logger
from tablet_loans.db.models import DeviceCondition
from tablet_loans.schemas.borrower import BorrowerCreate
from tablet_loans.schemas.device import DeviceCreate
from tablet_loans.schemas.imports import ImportRowError

logger = get_logger("services.csv_import")

# field name -> accepted column headers, first match wins
DEVICE_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "brand": ("brand", "Brand"),
    "model": ("model", "Model"),
    "color": ("color", "Color"),
    "serial_number": ("serialNumber", "Serial Number", "serial_number"),
    "imei": ("imei", "IMEI"),
    "status": ("status", "Status"),
    "condition": ("condition", "Condition"),
    "has_charger": ("hasCharger", "Has Charger", "has_charger"),
    "has_cable": ("hasCable", "Has Cable", "has_cable"),
    "has_box": ("hasBox", "Has Box", "has_box"),
    "notes": ("notes", "Notes"),
}

BORROWER_COLUMNS: Dict[str, Tuple[str, ...]] = {
    "student_number": ("studentId", "Student No.", "student_number"),
    "last_name": ("lastName", "Last Name"),
    "first_name": ("firstName", "First Name"),
    "middle_name": ("middleName", "Middle Name"),
    "suffix_name": ("suffixName", "Suffix Name"),
    "full_name": ("fullName", "Full Name"),
    "college_name": ("collegeName", "College Name"),
    "program_code": ("programCode", "Program Code"),
    "program_name": ("programName", "Program Name", "course"),
    "major_name": ("majorName", "Major Name", "major"),
    "year_level": ("yearLevel", "Year Level"),
    "academic_year": ("academicYear", "Academic Year"),
    "campus": ("campus", "Campus"),
    "student_status": ("studentStatus", "Student Status", "studentType"),
    "gender": ("gender", "Gender"),
    "date_of_birth": ("dateOfBirth", "Date Of Birth"),
    "mobile_no": ("mobileNo", "Mobile No.", "phone"),
    "email": ("email", "Email"),
    "residence_address": ("residenceAddress", "Residence Address"),
    "guardian_full_name": ("guardianFullName", "Guardian Full Name"),
    "guardian_mobile_no": ("guardianMobileNo", "Guardian Mobile No."),
    "guardian_email": ("guardianEmail", "Guardian Email"),
    "guardian_address": ("guardianAddress", "Guardian Address"),
    "notes": ("notes", "Notes"),
}

CONDITION_ALIASES = {"new / excellent": DeviceCondition.EXCELLENT, "new": DeviceCondition.EXCELLENT}

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d", "%d-%b-%Y")

DEVICE_EXPORT_FIELDS = [
    "id", "brand", "model", "color", "serial_number", "imei", "status", "condition",
    "has_charger", "has_cable", "has_box", "current_borrower", "notes", "created_at",
]

LOAN_EXPORT_FIELDS = [
    "id", "device_serial_number", "device", "borrower_student_number", "borrower_name",
    "date_borrowed", "expected_return_date", "condition", "with_charger", "with_cable",
    "with_box", "is_returned", "return_date", "return_condition", "return_notes",
]


def parse_boolean(value: Optional[str]) -> bool:
    """
    Parse a boolean cell. ``true``, ``yes``, ``y`` and ``1`` are true;
    anything else, including an empty cell, is false.
    """
    if not value:
        return False
    return str(value).strip().lower() in ["true", "yes", "y", "1"]


def parse_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a date cell leniently.

    Unparseable values and years outside 1900-2100 become None rather than
    failing the row.
    """
    if not value:
        return None
    value = value.strip()
    if value.startswith("0000-00-00"):
        return None
    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(value.split("T")[0].split(" ")[0], fmt).date()
        except ValueError:
            continue
        if 1900 <= parsed.year <= 2100:
            return parsed
        return None
    return None


def parse_condition(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    alias = CONDITION_ALIASES.get(value.strip().lower())
    if alias:
        return alias.value
    for condition in DeviceCondition:
        if condition.value.lower() == value.strip().lower():
            return condition.value
    return value.strip()


def _cell(record: Dict[str, str], headers: Iterable[str]) -> Optional[str]:
    for header in headers:
        value = record.get(header)
        if value is not None and value.strip():
            return value.strip()
    return None


def _format_errors(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'row'}: {err['msg']}"
        for err in e.errors()
    )


def _read_rows(content: str):
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    for record in reader:
        if not any((v or "").strip() for v in record.values() if isinstance(v, str)):
            continue
        yield reader.line_num, record


def _parse(content: str, build, model: type) -> Tuple[List[BaseModel], List[ImportRowError]]:
    rows: List[BaseModel] = []
    errors: List[ImportRowError] = []
    for line, record in _read_rows(content):
        try:
            rows.append(model(**build(record)))
        except ValidationError as e:
            errors.append(ImportRowError(line=line, message=_format_errors(e)))
    if errors:
        logger.warning(f"CSV import: {len(errors)} invalid rows skipped")
    return rows, errors


def _device_fields(record: Dict[str, str]) -> dict:
    fields = {name: _cell(record, headers) for name, headers in DEVICE_COLUMNS.items()}
    for flag in ("has_charger", "has_cable", "has_box"):
        fields[flag] = parse_boolean(fields[flag])
    fields["condition"] = parse_condition(fields["condition"])
    return {k: v for k, v in fields.items() if v is not None}


def _borrower_fields(record: Dict[str, str]) -> dict:
    fields = {name: _cell(record, headers) for name, headers in BORROWER_COLUMNS.items()}
    fields["date_of_birth"] = parse_date(fields["date_of_birth"])
    try:
        fields["year_level"] = int(fields["year_level"]) if fields["year_level"] else None
    except ValueError:
        fields["year_level"] = None
    return {k: v for k, v in fields.items() if v is not None}


def parse_device_csv(content: str) -> Tuple[List[DeviceCreate], List[ImportRowError]]:
    """Parse a device import file into validated rows and per-line errors."""
    return _parse(content, _device_fields, DeviceCreate)


def parse_borrower_csv(content: str) -> Tuple[List[BorrowerCreate], List[ImportRowError]]:
    """Parse a borrower import file into validated rows and per-line errors."""
    return _parse(content, _borrower_fields, BorrowerCreate)


def rows_to_csv(rows: List[dict], fieldnames: List[str]) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=fieldnames, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: ("" if v is None else v) for k, v in row.items()})
    return output.getvalue()


def device_template_csv() -> str:
    headers = [headers[0] for headers in DEVICE_COLUMNS.values()]
    samples = [
        ["Apple", "iPad Pro (2021)", "Space Gray", "DMQV32AABD3F", "354856090324578",
         "Serviceable", "Good", "true", "true", "false", "New tablet"],
        ["Samsung", "Galaxy Tab S7", "Mystic Bronze", "R9XN20BE456P", "354912078906753",
         "Serviceable", "Good", "true", "false", "true", "With stylus"],
    ]
    return _write_template(headers, samples)


def borrower_template_csv() -> str:
    headers = [headers[1] if len(headers) > 1 else headers[0] for headers in BORROWER_COLUMNS.values()]
    samples = [
        ["2023001", "Doe", "John", "Andrew", "", "John Andrew Doe",
         "College of Engineering", "BSCS", "BS Computer Science", "Software Engineering", "1",
         "2023-2024", "Main", "New", "Male", "2000-05-15",
         "555-123-4567", "john.doe@example.com", "123 Main St, Apt 4B",
         "Mary Susan Doe", "555-765-4322", "mary.doe@example.com", "123 Main St, Apt 4B",
         "Honor student"],
        ["2023002", "Smith", "Jane", "Elizabeth", "", "Jane Elizabeth Smith",
         "College of Information Technology", "BSIT", "BS Information Technology",
         "Database Management", "2",
         "2023-2024", "Main", "Old", "Female", "2001-10-20",
         "555-987-6543", "jane.smith@example.com", "456 Oak Avenue",
         "Robert James Smith", "555-123-7891", "robert.smith@example.com", "456 Oak Avenue",
         "Transfer student"],
    ]
    return _write_template(headers, samples)


def _write_template(headers: List[str], samples: List[List[str]]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    writer.writerows(samples)
    return output.getvalue()
