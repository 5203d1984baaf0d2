# betaflow/schemas/validators.py
import re
from typing import Dict, List, Optional, Sequence, Type

from pydantic import BaseModel, ValidationError, field_validator
from pydantic_core import PydanticCustomError

from betaflow.schemas.entities import EntityKind, SchemaDefinition
from betaflow.schemas.validation import ImportRejected
from betaflow.utils.parser import RawRow

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

USER_ROLES = ("production_manager", "machine_operator", "operations_admin")
MACHINE_STATUSES = ("running", "idle", "maintenance", "breakdown", "offline")


class EmployeeRow(BaseModel):
    full_name: str
    email: str
    role: str
    department: str

    model_config = {"extra": "allow"}

    @field_validator("email")
    @classmethod
    def email_format(cls, v: str) -> str:
        if not v.strip():
            raise PydanticCustomError("email_required", "Email is required")
        if not EMAIL_RE.match(v.strip()):
            raise PydanticCustomError(
                "email_format", "Invalid email format '{email}'", {"email": v}
            )
        return v

    @field_validator("role")
    @classmethod
    def known_role(cls, v: str) -> str:
        if v not in USER_ROLES:
            raise PydanticCustomError(
                "role_unknown",
                "Invalid role '{role}' (expected one of: {allowed})",
                {"role": v, "allowed": ", ".join(USER_ROLES)},
            )
        return v


class MachineRow(BaseModel):
    name: str
    type: str
    location: str
    status: str

    model_config = {"extra": "allow"}

    @field_validator("status")
    @classmethod
    def known_status(cls, v: str) -> str:
        if v not in MACHINE_STATUSES:
            raise PydanticCustomError(
                "status_unknown",
                "Invalid status '{status}' (expected one of: {allowed})",
                {"status": v, "allowed": ", ".join(MACHINE_STATUSES)},
            )
        return v


VALIDATORS: Dict[EntityKind, Type[BaseModel]] = {
    EntityKind.EMPLOYEE: EmployeeRow,
    EntityKind.MACHINE: MachineRow,
}


def row_issues(row: RawRow, model: Optional[Type[BaseModel]]) -> List[str]:
    if model is None:
        return []
    try:
        model.model_validate(row)
    except ValidationError as e:
        return [err["msg"] for err in e.errors()]
    return []


def validate_rows(rows: Sequence[RawRow], schema: SchemaDefinition) -> List[RawRow]:
    """
    Check parsed rows against ``schema`` without touching any store.

    Raises ImportRejected with a single structural message when the file is
    empty or lacks required columns, or with one ``Row N: ...`` message per
    semantic violation. Returns the rows unchanged when everything passes.
    """
    if not rows:
        raise ImportRejected("structural", ["No valid data found in CSV file"])

    missing = schema.missing_fields(rows[0].keys())
    if missing:
        raise ImportRejected(
            "structural", [f"Missing required columns: {', '.join(missing)}"]
        )

    model = VALIDATORS.get(schema.kind)
    errors: List[str] = []
    for idx, row in enumerate(rows, start=1):
        for issue in row_issues(row, model):
            errors.append(f"Row {idx}: {issue}")

    if errors:
        raise ImportRejected("semantic", errors)
    return list(rows)
