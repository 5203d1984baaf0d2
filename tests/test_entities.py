from __future__ import annotations

import pytest

from betaflow.schemas.entities import (
    EntityKind,
    generate_template,
    get_schema,
    list_supported_kinds,
    template_filename,
)


def test_all_four_kinds_are_supported_in_order() -> None:
    assert list_supported_kinds() == [
        EntityKind.RAW_MATERIAL,
        EntityKind.PRODUCT,
        EntityKind.EMPLOYEE,
        EntityKind.MACHINE,
    ]


@pytest.mark.parametrize(
    "kind, template",
    [
        (EntityKind.RAW_MATERIAL, "name,sku,unit,current_stock,minimum_stock"),
        (EntityKind.PRODUCT, "name,sku,category,unit_price"),
        (EntityKind.EMPLOYEE, "full_name,email,role,department"),
        (EntityKind.MACHINE, "name,type,location,status"),
    ],
)
def test_template_is_the_required_header(kind: EntityKind, template: str) -> None:
    assert generate_template(kind) == template


def test_template_filename_uses_upload_identifier() -> None:
    assert template_filename(EntityKind.RAW_MATERIAL) == "raw-materials_template.csv"
    assert template_filename(EntityKind.MACHINE) == "machines_template.csv"


def test_schema_maps_employees_to_profiles_table() -> None:
    assert get_schema(EntityKind.EMPLOYEE).table == "profiles"


def test_missing_fields_keep_schema_order() -> None:
    schema = get_schema(EntityKind.RAW_MATERIAL)

    assert schema.missing_fields(["minimum_stock", "name"]) == ["sku", "unit", "current_stock"]


def test_unknown_kind_fails_fast() -> None:
    with pytest.raises(KeyError):
        get_schema("suppliers")  # type: ignore[arg-type]
