"""Pydantic models for the bulk-file validation, staging and reconciliation pipeline."""
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from uuid import UUID

from catalog_sync.models.enums import StagingStatus, StagingAction
from catalog_sync.models.records import BulkFileRecord


class ValidationResult(BaseModel):
    """Outcome of validating one bulk row.

    ``is_valid`` is false only for hard errors (missing identifying
    fields); every other anomaly is repaired and flagged ``corrected``.
    """
    is_valid: bool = True
    corrected: bool = False
    notes: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)

    def add_correction(self, note: str) -> None:
        self.corrected = True
        self.notes.append(note)


class ProcessedRecord(BaseModel):
    """One bulk row: original cells, derived fields and validation outcome."""
    row_number: int = Field(..., ge=1, description="Spreadsheet line number (header is line 1)")
    original: Dict[str, str] = Field(default_factory=dict)
    data: BulkFileRecord
    validation: ValidationResult

    @property
    def needs_review(self) -> bool:
        return not self.validation.is_valid or self.validation.corrected


class ValidationSummary(BaseModel):
    """Operator-facing summary of a validated bulk file."""
    total: int = 0
    valid: int = 0
    invalid: int = 0
    corrected: int = 0
    errors: List[str] = Field(default_factory=list, description="'Row N: message' strings")
    corrections: List[str] = Field(default_factory=list, description="'Row N: note' strings")


class BulkFileResult(BaseModel):
    """Parsed bulk file with its summary."""
    records: List[ProcessedRecord] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)


class StagingFilter(BaseModel):
    """Optional filters for listing staging records."""
    validation_status: Optional[StagingStatus] = None
    needs_review: Optional[bool] = None
    action_type: Optional[StagingAction] = None


class ReconciliationSummary(BaseModel):
    """Result of committing a session's staging records into the catalog."""
    total: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)


class UploadResult(BaseModel):
    """Result of uploading and processing one bulk file."""
    session_id: UUID
    summary: ValidationSummary
    reconciliation: Optional[ReconciliationSummary] = None
