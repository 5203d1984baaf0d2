# betaflow/schemas/validation.py

from pydantic import BaseModel, computed_field
from typing import List, Literal, Dict, Any

from betaflow.schemas.entities import EntityKind

RejectionTier = Literal["structural", "semantic"]


class ImportRejected(Exception):
    """
    The import never started: the file failed validation and no row was sent
    to the store. ``tier`` tells a missing-column/empty-file problem
    ("structural") apart from rows with invalid content ("semantic").
    """

    def __init__(self, tier: RejectionTier, errors: List[str]):
        self.tier = tier
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))

    @property
    def message(self) -> str:
        if self.tier == "structural":
            return "The file structure does not match the import template."
        return f"{len(self.errors)} row error(s) found; nothing was imported."

    def to_dict(self) -> Dict[str, Any]:
        return {"tier": self.tier, "message": self.message, "errors": self.errors}


class RowError(BaseModel):
    row: int
    message: str

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"Row {self.row}: {self.message}"


class ProgressEvent(BaseModel):
    processed: int
    total: int

    @computed_field
    @property
    def fraction(self) -> float:
        return self.processed / self.total if self.total else 1.0


class ImportOutcome(BaseModel):
    kind: EntityKind
    total: int
    processed: int
    success: int
    failure: int
    row_errors: List[RowError] = []
    skipped: int = 0
    skipped_lines: List[int] = []
    cancelled: bool = False

    model_config = {"frozen": True}

    @computed_field
    @property
    def errors(self) -> List[str]:
        return [str(e) for e in self.row_errors]

    @computed_field
    @property
    def status(self) -> Literal["completed", "partial_success", "failed", "cancelled"]:
        if self.cancelled:
            return "cancelled"
        if self.failure == 0:
            return "completed"
        if self.success == 0:
            return "failed"
        return "partial_success"
