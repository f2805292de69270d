"""Backend-as-a-service access: records, object storage and change feeds."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Protocol

import httpx
from pydantic import BaseModel
from supabase import AsyncClient, AsyncClientOptions, acreate_client

from cropcare.config import Config
from cropcare.core.ids import random_suffix
from cropcare.core.subscription import Subscription
from cropcare.exceptions import CropCareError, ServiceError, TransientNetworkError


class ChangeNotification(BaseModel):
    """A row-level change signal.

    Only the changed row's id is kept; the rest of the payload is not trusted
    and consumers refetch.
    """

    event: str
    table: str
    record_id: str | None = None

    @classmethod
    def from_payload(cls, table: str, payload: Any) -> "ChangeNotification":
        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        event = data.get("type") or data.get("eventType") or "*"
        record = data.get("record") or data.get("new") or data.get("old_record") or data.get("old") or {}
        record_id = record.get("id") if isinstance(record, dict) else None
        return cls(event=str(event).upper(), table=table, record_id=str(record_id) if record_id is not None else None)


ChangeFeed = Subscription[ChangeNotification]


class Backend(Protocol):
    """Narrow interface over the managed backend."""

    async def insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, table: str, match: dict[str, Any], values: dict[str, Any]) -> list[dict[str, Any]]: ...

    async def delete(self, table: str, match: dict[str, Any]) -> None: ...

    async def select(
        self,
        table: str,
        match: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str = "image/jpeg") -> None: ...

    async def create_signed_url(self, bucket: str, path: str, ttl: int) -> str: ...

    async def remove(self, bucket: str, paths: list[str]) -> None: ...

    async def subscribe(self, table: str, filter: str | None = None) -> ChangeFeed: ...

    async def aclose(self) -> None: ...


def _status_of(error: Exception) -> int:
    for attr in ("status_code", "status", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return 500


class SupabaseBackend:
    """``Backend`` implemented on the async Supabase client."""

    def __init__(self, client: AsyncClient) -> None:
        self.logger = logging.getLogger(__name__)
        self.client = client

    @classmethod
    async def connect(cls, config: Config) -> "SupabaseBackend":
        """Create the client, acting as the signed-in user when a token is configured."""
        options = AsyncClientOptions()
        if config.access_token:
            options = AsyncClientOptions(headers={"Authorization": f"Bearer {config.bearer_token()}"})
        client = await acreate_client(config.require_url(), config.require_anon_key(), options=options)
        return cls(client)

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except CropCareError:
            raise
        except httpx.TransportError as e:
            raise TransientNetworkError(operation, str(e) or type(e).__name__) from e
        except Exception as e:
            self.logger.error(f"Backend call {operation} failed: {e}")
            raise ServiceError(_status_of(e), f"{operation} failed: {e}") from e

    async def insert(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        async with self._guard(f"insert {table}"):
            response = await self.client.table(table).insert(values).execute()
        rows = response.data or []
        return rows[0] if rows else dict(values)

    async def update(self, table: str, match: dict[str, Any], values: dict[str, Any]) -> list[dict[str, Any]]:
        async with self._guard(f"update {table}"):
            query = self.client.table(table).update(values)
            for column, value in match.items():
                query = query.eq(column, value)
            response = await query.execute()
        return response.data or []

    async def delete(self, table: str, match: dict[str, Any]) -> None:
        async with self._guard(f"delete {table}"):
            query = self.client.table(table).delete()
            for column, value in match.items():
                query = query.eq(column, value)
            await query.execute()

    async def select(
        self,
        table: str,
        match: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        async with self._guard(f"select {table}"):
            query = self.client.table(table).select("*")
            for column, value in (match or {}).items():
                query = query.eq(column, value)
            if order_by:
                query = query.order(order_by, desc=descending)
            if limit is not None:
                query = query.limit(limit)
            response = await query.execute()
        return response.data or []

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str = "image/jpeg") -> None:
        async with self._guard(f"upload {bucket}/{path}"):
            await self.client.storage.from_(bucket).upload(
                path=path,
                file=data,
                file_options={"content-type": content_type, "cache-control": "3600", "upsert": "false"},
            )

    async def create_signed_url(self, bucket: str, path: str, ttl: int) -> str:
        async with self._guard(f"sign {bucket}/{path}"):
            result = await self.client.storage.from_(bucket).create_signed_url(path, ttl)
        url = result.get("signedUrl") or result.get("signedURL")
        if not url:
            raise ServiceError(500, f"No signed URL returned for {bucket}/{path}")
        return url

    async def remove(self, bucket: str, paths: list[str]) -> None:
        async with self._guard(f"remove {bucket}"):
            await self.client.storage.from_(bucket).remove(paths)

    async def subscribe(self, table: str, filter: str | None = None) -> ChangeFeed:
        """Open a realtime channel on ``table`` and expose it as a closable feed."""
        channel = self.client.channel(f"{table}-changes-{random_suffix()}")

        async def unsubscribe() -> None:
            await self.client.remove_channel(channel)

        feed: ChangeFeed = Subscription(on_close=unsubscribe)
        kwargs: dict[str, Any] = {"event": "*", "schema": "public", "table": table}
        if filter:
            kwargs["filter"] = filter
        channel.on_postgres_changes(
            callback=lambda payload: feed.push(ChangeNotification.from_payload(table, payload)), **kwargs
        )
        async with self._guard(f"subscribe {table}"):
            await channel.subscribe()
        self.logger.debug(f"Subscribed to changes on {table}")
        return feed

    async def aclose(self) -> None:
        async with self._guard("close"):
            await self.client.remove_all_channels()
