from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from tortoise import Tortoise

from betaflow.core.store import ImportStore, StoreError
from betaflow.schemas.entities import EntityKind


class FakeStore(ImportStore):
    """In-memory store; ``fail_when`` returns an error message for rows it should reject."""

    def __init__(self, fail_when: Optional[Callable[[Dict[str, Any]], Optional[str]]] = None) -> None:
        self.fail_when = fail_when
        self.calls: List[Tuple[EntityKind, Dict[str, Any]]] = []
        self.inserted: List[Dict[str, Any]] = []
        self.closed = False

    async def insert(self, kind: EntityKind, record: Dict[str, Any]) -> None:
        self.calls.append((kind, record))
        message = self.fail_when(record) if self.fail_when else None
        if message:
            raise StoreError(message)
        self.inserted.append(record)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
async def db():
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": ["betaflow.models.db"]})
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


RAW_MATERIALS_CSV = (
    "name,sku,unit,current_stock,minimum_stock,unit_cost\n"
    "Steel Sheet,RM-001,kg,120,50,4.5\n"
    "Copper Wire,RM-002,m,800,200,0.8\n"
    "Paint,RM-003,l,40,10,12\n"
)

EMPLOYEES_CSV = (
    "full_name,email,role,department\n"
    "Sarah Johnson,sarah@betaflow.com,production_manager,Production\n"
    "Mike Rodriguez,mike@betaflow.com,machine_operator,Assembly\n"
    "Lisa Chen,lisa@betaflow.com,operations_admin,Operations\n"
)
