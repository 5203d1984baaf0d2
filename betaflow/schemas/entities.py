# betaflow/schemas/entities.py

from enum import Enum
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel


class EntityKind(str, Enum):
    RAW_MATERIAL = "raw-materials"
    PRODUCT = "products"
    EMPLOYEE = "employees"
    MACHINE = "machines"


class Coercion(str, Enum):
    NUMBER = "number"
    INTEGER = "integer"
    JSON = "json"


class FieldRule(BaseModel):
    field: str
    coercion: Coercion
    default: Any = None

    model_config = {"frozen": True}


class SchemaDefinition(BaseModel):
    kind: EntityKind
    title: str
    description: str
    table: str
    required_fields: Tuple[str, ...]
    coercions: Tuple[FieldRule, ...] = ()

    model_config = {"frozen": True}

    def missing_fields(self, headers) -> List[str]:
        present = set(headers)
        return [name for name in self.required_fields if name not in present]


SCHEMAS: Dict[EntityKind, SchemaDefinition] = {
    EntityKind.RAW_MATERIAL: SchemaDefinition(
        kind=EntityKind.RAW_MATERIAL,
        title="Raw Materials",
        description="Upload raw materials inventory data",
        table="raw_materials",
        required_fields=("name", "sku", "unit", "current_stock", "minimum_stock"),
        coercions=(
            FieldRule(field="current_stock", coercion=Coercion.NUMBER, default=0),
            FieldRule(field="minimum_stock", coercion=Coercion.NUMBER, default=0),
            FieldRule(field="unit_cost", coercion=Coercion.NUMBER),
        ),
    ),
    EntityKind.PRODUCT: SchemaDefinition(
        kind=EntityKind.PRODUCT,
        title="Products",
        description="Upload product catalog data",
        table="products",
        required_fields=("name", "sku", "category", "unit_price"),
        coercions=(
            FieldRule(field="unit_price", coercion=Coercion.NUMBER),
            FieldRule(field="production_time_minutes", coercion=Coercion.INTEGER),
        ),
    ),
    EntityKind.EMPLOYEE: SchemaDefinition(
        kind=EntityKind.EMPLOYEE,
        title="Employees",
        description="Upload employee data",
        table="profiles",
        required_fields=("full_name", "email", "role", "department"),
    ),
    EntityKind.MACHINE: SchemaDefinition(
        kind=EntityKind.MACHINE,
        title="Machines",
        description="Upload machine data",
        table="machines",
        required_fields=("name", "type", "location", "status"),
        coercions=(
            FieldRule(field="specifications", coercion=Coercion.JSON),
        ),
    ),
}


def get_schema(kind: EntityKind) -> SchemaDefinition:
    return SCHEMAS[kind]


def list_supported_kinds() -> List[EntityKind]:
    return list(SCHEMAS)


def generate_template(kind: EntityKind) -> str:
    """Header-only CSV line listing the required columns for ``kind``."""
    return ",".join(get_schema(kind).required_fields)


def template_filename(kind: EntityKind) -> str:
    return f"{kind.value}_template.csv"

