# betaflow/core/store.py
"""
Destinations for imported rows.

A store inserts exactly one record per call and reports failure by raising
StoreError. The import pipeline never batches, so no adapter needs one.
"""
import logging
from typing import Any, AsyncIterator, Dict, Optional, Type

import httpx
from tortoise.exceptions import (
    BaseORMException,
    DBConnectionError,
    IntegrityError,
    ValidationError,
)
from tortoise.models import Model

from betaflow.core.config import Settings, settings
from betaflow.models.db import Machine, Product, Profile, RawMaterial
from betaflow.schemas.entities import EntityKind, get_schema

logger = logging.getLogger(__name__)


class StoreError(Exception):
    def __init__(self, message: str, code: Optional[str] = None, transient: bool = False):
        super().__init__(message)
        self.message = message
        self.code = code
        self.transient = transient

    def __str__(self) -> str:
        return self.message


class ImportStore:
    async def insert(self, kind: EntityKind, record: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


MODELS: Dict[EntityKind, Type[Model]] = {
    EntityKind.RAW_MATERIAL: RawMaterial,
    EntityKind.PRODUCT: Product,
    EntityKind.EMPLOYEE: Profile,
    EntityKind.MACHINE: Machine,
}


class DatabaseStore(ImportStore):
    """Inserts through the tortoise models; Tortoise must already be initialised."""

    async def insert(self, kind: EntityKind, record: Dict[str, Any]) -> None:
        model = MODELS[kind]
        unknown = sorted(set(record) - set(model._meta.fields_map))
        if unknown:
            raise StoreError(
                f"Unknown column(s) for {model._meta.db_table}: {', '.join(unknown)}",
                code="unknown_column",
            )
        try:
            await model.create(**record)
        except IntegrityError as e:
            raise StoreError(str(e), code="integrity_error") from e
        except DBConnectionError as e:
            raise StoreError(f"Database unavailable: {e}", code="connection_error", transient=True) from e
        except (ValidationError, ValueError, TypeError) as e:
            raise StoreError(str(e), code="invalid_value") from e
        except BaseORMException as e:
            raise StoreError(str(e), code="database_error") from e


class SupabaseStore(ImportStore):
    """Posts one row at a time to the PostgREST endpoint of a Supabase project."""

    def __init__(self, base_url: str, service_key: str, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }
        self.client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/rest/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def insert(self, kind: EntityKind, record: Dict[str, Any]) -> None:
        table = get_schema(kind).table
        try:
            resp = await self.client.post(f"/{table}", json=record)
        except httpx.TransportError as e:
            raise StoreError(f"Request failed: {e}", code="transport_error", transient=True) from e

        if resp.is_success:
            return

        try:
            body = resp.json()
        except ValueError:
            body = {}
        message = body.get("message") if isinstance(body, dict) else None
        code = body.get("code") if isinstance(body, dict) else None
        raise StoreError(
            message or f"Insert failed ({resp.status_code}): {resp.text[:200]}",
            code=code,
            transient=resp.status_code >= 500 or resp.status_code == 429,
        )

    async def aclose(self) -> None:
        await self.client.aclose()


def build_store(config: Settings = settings) -> ImportStore:
    if config.IMPORT_STORE == "supabase":
        if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_KEY:
            raise RuntimeError("IMPORT_STORE=supabase needs SUPABASE_URL and SUPABASE_SERVICE_KEY")
        logger.debug(f"Importing into Supabase project {config.SUPABASE_URL}")
        return SupabaseStore(config.SUPABASE_URL, config.SUPABASE_SERVICE_KEY)
    return DatabaseStore()


async def get_store() -> AsyncIterator[ImportStore]:
    store = build_store()
    try:
        yield store
    finally:
        await store.aclose()
