"""Supabase (PostgREST) primary backend over httpx."""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from kairo.exceptions import BackendUnavailable
from kairo.memory.backends.base import MemoryBackend
from kairo.memory.schema import MemoryRecord, RecordFilter

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "memory"

# Record field -> column name where the table schema differs
_FIELD_TO_COLUMN = {"kind": "type", "relevance": "relevance_score"}
_COLUMN_TO_FIELD = {column: field for field, column in _FIELD_TO_COLUMN.items()}


def record_to_row(record: MemoryRecord) -> Dict[str, Any]:
    row = record.to_row()
    return {_FIELD_TO_COLUMN.get(key, key): value for key, value in row.items()}


def row_to_record(row: Dict[str, Any]) -> MemoryRecord:
    data = {_COLUMN_TO_FIELD.get(key, key): value for key, value in row.items()}
    if data.get("tags") is None:
        data["tags"] = []
    if data.get("metadata") is None:
        data["metadata"] = {}
    if data.get("output") is None:
        data["output"] = ""
    return MemoryRecord.from_row(data)


def _in_list(values: Iterable[str]) -> str:
    quoted = ",".join(f'"{value}"' for value in values)
    return f"in.({quoted})"


def parse_content_range(header: Optional[str]) -> int:
    """Total row count from a ``Content-Range`` header like ``0-0/42`` or ``*/0``."""
    if not header or "/" not in header:
        return 0
    total = header.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else 0


class SupabaseBackend(MemoryBackend):
    """Memory rows in a Supabase table, reached through the PostgREST API."""

    name = "supabase"

    def __init__(
        self,
        url: str,
        api_key: str,
        table: str = DEFAULT_TABLE,
        timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the backend.

        Args:
            url: Project URL (e.g. https://xyz.supabase.co)
            api_key: Service or anon key
            table: Table holding memory rows
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.table = table
        self._client = httpx.AsyncClient(
            base_url=f"{url.rstrip('/')}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        params: Optional[List[Tuple[str, str]]] = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method, f"/{self.table}", params=params, json=json_body, headers=headers
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise BackendUnavailable(f"Supabase request timed out: {e}", backend=self.name) from e
        except httpx.HTTPStatusError as e:
            raise BackendUnavailable(
                f"Supabase HTTP error {e.response.status_code}: {e.response.text}", backend=self.name
            ) from e
        except httpx.HTTPError as e:
            raise BackendUnavailable(f"Supabase request failed: {e}", backend=self.name) from e
        return response

    async def insert(self, record: MemoryRecord) -> None:
        await self._request("POST", json_body=record_to_row(record), headers={"Prefer": "return=minimal"})

    async def select(self, record_filter: RecordFilter) -> List[MemoryRecord]:
        params: List[Tuple[str, str]] = [("select", "*"), ("agent_id", f"eq.{record_filter.agent_id}")]
        if record_filter.user_id is not None:
            params.append(("user_id", f"eq.{record_filter.user_id}"))
        if record_filter.kinds is not None:
            if not record_filter.kinds:
                return []
            params.append(("type", _in_list(kind.value for kind in record_filter.kinds)))
        if record_filter.time_range is not None:
            params.append(("created_at", f"gte.{record_filter.time_range.start.isoformat()}"))
            params.append(("created_at", f"lte.{record_filter.time_range.end.isoformat()}"))
        params.append(("order", "last_accessed.desc"))
        if record_filter.limit is not None:
            params.append(("limit", str(record_filter.limit)))

        response = await self._request("GET", params=params)
        records = []
        for row in response.json():
            try:
                records.append(row_to_record(row))
            except ValueError as e:
                logger.warning("Skipping malformed Supabase row %s: %s", row.get("id"), e)
        return records

    async def touch(self, agent_id: str, record_ids: Iterable[str], when: datetime) -> int:
        ids = list(record_ids)
        if not ids:
            return 0
        params = [
            ("agent_id", f"eq.{agent_id}"),
            ("id", _in_list(ids)),
            ("last_accessed", f"lt.{when.isoformat()}"),
        ]
        response = await self._request(
            "PATCH",
            params=params,
            json_body={"last_accessed": when.isoformat()},
            headers={"Prefer": "return=representation"},
        )
        return len(response.json())

    async def delete(self, agent_id: str, record_ids: Iterable[str]) -> int:
        ids = list(record_ids)
        if not ids:
            return 0
        params = [("agent_id", f"eq.{agent_id}"), ("id", _in_list(ids))]
        response = await self._request("DELETE", params=params, headers={"Prefer": "return=representation"})
        return len(response.json())

    async def count(self, agent_id: Optional[str] = None) -> int:
        params = [("select", "id")]
        if agent_id is not None:
            params.append(("agent_id", f"eq.{agent_id}"))
        response = await self._request("HEAD", params=params, headers={"Prefer": "count=exact", "Range": "0-0"})
        return parse_content_range(response.headers.get("content-range"))

    async def close(self) -> None:
        await self._client.aclose()
