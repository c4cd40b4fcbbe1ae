"""Bulk-file validation and normalization pipeline.

Parses the supplier's delimited bulk file with pandas, normalizes
identifiers, rebuilds derived fields (composite key, total quantity)
and records every repair so operators can review it.

Policy:
    - A missing required column rejects the whole file (MalformedInputError)
    - A missing VendorCode or PartNumber makes the row invalid
    - Every other anomaly is repaired and flagged ``corrected``
"""
import io
import re
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Union

import pandas as pd
import structlog

from catalog_sync.errors.exceptions import MalformedInputError
from catalog_sync.models.bulk_file import (
    BulkFileResult,
    ProcessedRecord,
    ValidationResult,
    ValidationSummary,
)
from catalog_sync.models.records import BulkFileRecord

logger = structlog.get_logger(__name__)

REQUIRED_HEADERS = ["VendorName", "VCPN", "VendorCode", "PartNumber"]

# Regional quantity column -> key stored in regional_quantities
REGIONAL_QUANTITY_COLUMNS: Dict[str, str] = {
    "EastQty": "east",
    "MidwestQty": "midwest",
    "CaliforniaQty": "california",
    "SoutheastQty": "southeast",
    "PacificNWQty": "pacific_nw",
    "TexasQty": "texas",
    "GreatLakesQty": "great_lakes",
    "FloridaQty": "florida",
}

# Columns that must have content for a line to count as a record
_CONTENT_COLUMNS = ("VendorName", "PartNumber", "LongDescription")

_QUOTE_CHARS = "\"'"
_TRUE_VALUES = {"true", "1", "yes", "y"}
_NUMBER_STRIP = re.compile(r"[^0-9.\-]")


# =============================================================================
# Cell parsers
# =============================================================================


def normalize_identifier(value: Optional[str]) -> str:
    """Strip spreadsheet literal-string wrapping from an identifier.

    Spreadsheets export text-forced cells as ``="00123"`` or ``'00123'``.
    Removes a leading ``=`` and surrounding quote characters until the
    value stops changing, so the result is stable under re-normalization.

    Args:
        value: Raw cell value

    Returns:
        Normalized identifier ('' for empty input)
    """
    if value is None:
        return ""
    current = str(value).strip()
    while True:
        previous = current
        if current.startswith("="):
            current = current[1:].strip()
        if current[:1] and current[0] in _QUOTE_CHARS:
            current = current[1:]
        if current[-1:] and current[-1] in _QUOTE_CHARS:
            current = current[:-1]
        current = current.strip()
        if current == previous:
            return current


def derive_composite_key(vendor_code: str, part_number: str) -> str:
    """Build the supplier part code (VCPN) from vendor code and part number."""
    return f"{(vendor_code or '').strip()}{normalize_identifier(part_number)}"


def parse_boolean(value: Optional[str]) -> bool:
    """Parse spreadsheet booleans (true/1/yes/y, case-insensitive)."""
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


def parse_number(value: Optional[str]) -> Optional[Decimal]:
    """Parse a money/measure cell, ignoring currency symbols and separators.

    Returns:
        Decimal value, or None for empty/unparseable cells
    """
    if value is None:
        return None
    cleaned = _NUMBER_STRIP.sub("", str(value))
    if cleaned in ("", "-", ".", "-."):
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def parse_integer(value: Optional[str]) -> int:
    """Parse a quantity cell; empty or unparseable cells count as 0."""
    number = parse_number(value)
    if number is None:
        return 0
    return int(number)


def _cell(row: Dict[str, str], column: str) -> str:
    value = row.get(column)
    if value is None:
        return ""
    return str(value).strip()


def _optional(row: Dict[str, str], column: str) -> Optional[str]:
    return _cell(row, column) or None


def calculate_total_quantity(row: Dict[str, str]) -> int:
    """Sum the regional quantity columns of a row."""
    return sum(parse_integer(row.get(column)) for column in REGIONAL_QUANTITY_COLUMNS)


# =============================================================================
# Row validation
# =============================================================================


def validate_record(row: Dict[str, str], row_number: int) -> ProcessedRecord:
    """Validate and normalize one bulk row.

    Args:
        row: Column name -> raw cell text
        row_number: Spreadsheet line number of the row

    Returns:
        ProcessedRecord with derived fields and validation outcome
    """
    validation = ValidationResult()

    vendor_code = _cell(row, "VendorCode")
    raw_part_number = _cell(row, "PartNumber")
    part_number = normalize_identifier(raw_part_number)

    if raw_part_number and part_number != raw_part_number:
        validation.add_correction(
            f'SKU normalized from "{raw_part_number}" to "{part_number}"'
        )

    if not vendor_code:
        validation.add_error("VendorCode is required")
    if not part_number:
        validation.add_error("PartNumber (SKU) is required")

    supplied_vcpn = normalize_identifier(_cell(row, "VCPN"))
    vcpn = supplied_vcpn
    if vendor_code and part_number:
        expected_vcpn = derive_composite_key(vendor_code, part_number)
        if not supplied_vcpn:
            validation.add_correction(f'VCPN auto-generated: "{expected_vcpn}"')
        elif supplied_vcpn != expected_vcpn:
            validation.add_correction(
                f'VCPN corrected from "{supplied_vcpn}" to "{expected_vcpn}"'
            )
        vcpn = expected_vcpn

    regional_quantities = {
        key: parse_integer(row.get(column))
        for column, key in REGIONAL_QUANTITY_COLUMNS.items()
    }
    calculated_total = sum(regional_quantities.values())
    supplied_total = parse_integer(row.get("TotalQty"))
    if supplied_total != calculated_total:
        validation.add_correction(
            f"TotalQty corrected from {supplied_total} to {calculated_total}"
        )

    data = BulkFileRecord(
        vendor_name=_cell(row, "VendorName"),
        vcpn=vcpn,
        vendor_code=vendor_code,
        part_number=part_number,
        manufacturer_part_no=_optional(row, "ManufacturerPartNo"),
        long_description=_optional(row, "LongDescription"),
        jobber_price=parse_number(row.get("JobberPrice")),
        cost=parse_number(row.get("Cost")),
        core_charge=parse_number(row.get("CoreCharge")),
        weight=parse_number(row.get("Weight")),
        height=parse_number(row.get("Height")),
        length=parse_number(row.get("Length")),
        width=parse_number(row.get("Width")),
        regional_quantities=regional_quantities,
        total_qty=calculated_total,
        calculated_total_qty=calculated_total,
        upsable=parse_boolean(row.get("UPSable")),
        is_non_returnable=parse_boolean(row.get("IsNonReturnable")),
        is_oversized=parse_boolean(row.get("IsOversized")),
        is_hazmat=parse_boolean(row.get("IsHazmat")),
        is_chemical=parse_boolean(row.get("IsChemical")),
        is_kit=parse_boolean(row.get("IsKit")),
        case_qty=parse_integer(row.get("CaseQty")) or None,
        prop65_toxicity=_optional(row, "Prop65Toxicity"),
        upc_code=_optional(row, "UPCCode"),
        aaia_code=_optional(row, "AAIACode"),
        ups_ground_assessorial=parse_number(row.get("UPS_Ground_Assessorial")),
        us_ltl=parse_number(row.get("US_LTL")),
        kit_components=_optional(row, "KitComponents"),
    )

    return ProcessedRecord(
        row_number=row_number,
        original={k: ("" if v is None else str(v)) for k, v in row.items()},
        data=data,
        validation=validation,
    )


# =============================================================================
# File level
# =============================================================================


def _decode(content: Union[str, bytes]) -> str:
    if isinstance(content, str):
        return content
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.warning("utf8_decode_failed_trying_latin1")
        return content.decode("latin-1")


def parse_bulk_file(content: Union[str, bytes]) -> List[ProcessedRecord]:
    """Parse and validate every data row of a bulk file.

    Args:
        content: Raw delimited text (comma separated, header on line 1)

    Returns:
        List of ProcessedRecord, one per non-blank data row

    Raises:
        MalformedInputError: If the file is empty, unparseable, or lacks
            a required column
    """
    text = _decode(content)
    if not text.strip():
        raise MalformedInputError("Bulk file is empty", missing_columns=list(REQUIRED_HEADERS))

    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,  # Read all as strings for consistent processing
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError as e:
        raise MalformedInputError("Bulk file contains no header row") from e
    except pd.errors.ParserError as e:
        raise MalformedInputError(f"Bulk file parsing error: {e}") from e

    df.columns = [str(column).strip() for column in df.columns]
    missing = [header for header in REQUIRED_HEADERS if header not in df.columns]
    if missing:
        logger.warning("bulk_file_missing_headers", missing=missing, headers=list(df.columns))
        raise MalformedInputError(
            f"Missing required columns: {', '.join(missing)}",
            missing_columns=missing,
        )

    records: List[ProcessedRecord] = []
    for index, row in enumerate(df.to_dict(orient="records")):
        if not any(_cell(row, column) for column in _CONTENT_COLUMNS):
            continue
        records.append(validate_record(row, row_number=index + 2))

    logger.info("bulk_file_parsed", total_rows=len(df), records=len(records))
    return records


def generate_validation_summary(records: List[ProcessedRecord]) -> ValidationSummary:
    """Count valid/invalid/corrected rows and list line-numbered messages."""
    summary = ValidationSummary(total=len(records))
    for record in records:
        if record.validation.is_valid:
            summary.valid += 1
        else:
            summary.invalid += 1
        if record.validation.corrected:
            summary.corrected += 1
        summary.errors.extend(
            f"Row {record.row_number}: {error}" for error in record.validation.errors
        )
        summary.corrections.extend(
            f"Row {record.row_number}: {note}" for note in record.validation.notes
        )
    return summary


def process_bulk_file(content: Union[str, bytes]) -> BulkFileResult:
    """Parse a bulk file and summarize its validation outcome.

    Raises:
        MalformedInputError: If the file cannot be accepted at all
    """
    records = parse_bulk_file(content)
    summary = generate_validation_summary(records)
    logger.info(
        "bulk_file_validated",
        total=summary.total,
        valid=summary.valid,
        invalid=summary.invalid,
        corrected=summary.corrected,
    )
    return BulkFileResult(records=records, summary=summary)
