# mountain_guide/services/mountain_repo.py
from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import httpx

from mountain_guide.config import (
    MOUNTAIN_CACHE_TTL_SECONDS,
    MOUNTAIN_SOURCE,
    MOUNTAIN_TABLE,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
)
from mountain_guide.services.database import MOUNTAIN_COLUMNS, connect

logger = logging.getLogger(__name__)

SELECT_FIELDS = ",".join(MOUNTAIN_COLUMNS)


@dataclass(frozen=True)
class Mountain:
    id: str
    name_en: str
    name_ja: str
    name_zh: str
    region: Optional[str] = None
    prefecture: Optional[str] = None
    difficulty: Optional[str] = None
    elevation_m: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MountainSourceError(RuntimeError):
    """Raised when the mountain table cannot be read."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_elevation(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(float(str(value).strip()))
    except ValueError:
        return None


def mountain_from_row(row: Dict[str, Any]) -> Optional[Mountain]:
    """Turn one table row into a Mountain. Rows without an id are skipped."""
    mountain_id = _clean_text(row.get("id"))
    if not mountain_id:
        return None
    return Mountain(
        id=mountain_id,
        name_en=_clean_text(row.get("name_en")) or "",
        name_ja=_clean_text(row.get("name_ja")) or "",
        name_zh=_clean_text(row.get("name_zh")) or "",
        region=_clean_text(row.get("region")),
        prefecture=_clean_text(row.get("prefecture")),
        difficulty=_clean_text(row.get("difficulty")),
        elevation_m=_coerce_elevation(row.get("elevation_m")),
    )


def _rows_to_mountains(rows: List[Dict[str, Any]]) -> List[Mountain]:
    out: List[Mountain] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        mountain = mountain_from_row(row)
        if mountain is not None:
            out.append(mountain)
    return out


# --- Contract (so the hosted table and the local copy are interchangeable) ---

class MountainRepo(Protocol):
    async def fetch_all(self) -> List[Mountain]:
        """Full mountain table ordered by id."""


class SupabaseMountainRepo:
    """Reads the hosted table through the PostgREST endpoint of the Supabase project."""

    def __init__(
        self,
        url: Optional[str] = SUPABASE_URL,
        api_key: Optional[str] = SUPABASE_SERVICE_ROLE_KEY,
        table: str = MOUNTAIN_TABLE,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.table = table
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        if not self.url or not self.api_key:
            raise MountainSourceError("Supabase not configured (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY missing).")
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

    async def fetch_all(self) -> List[Mountain]:
        headers = self._headers()
        url = f"{self.url.rstrip('/')}/rest/v1/{self.table}"
        params = {"select": SELECT_FIELDS, "order": "id"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            r = await client.get(url, headers=headers, params=params)

        if r.status_code >= 400:
            # Try JSON; fallback to text
            try:
                payload = r.json()
            except ValueError:
                payload = {"raw": r.text}
            raise MountainSourceError(
                f"Supabase error {r.status_code} reading {self.table}",
                status_code=r.status_code,
                payload=payload,
            )

        raw = r.json()
        if not isinstance(raw, list):
            raise MountainSourceError(f"Unexpected Supabase response shape: {type(raw).__name__}")
        return _rows_to_mountains(raw)


class SQLiteMountainRepo:
    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path

    def _fetch_rows(self) -> List[Dict[str, Any]]:
        sql = f"SELECT {', '.join(MOUNTAIN_COLUMNS)} FROM mountains ORDER BY id"
        with connect(self.db_path) as conn:
            return [dict(row) for row in conn.execute(sql).fetchall()]

    async def fetch_all(self) -> List[Mountain]:
        try:
            rows = await asyncio.to_thread(self._fetch_rows)
        except Exception as exc:
            raise MountainSourceError(f"SQLite read failed: {exc}") from exc
        return _rows_to_mountains(rows)


class CachedMountainRepo:
    """
    TTL cache in front of another repo. The table is ~100 static rows,
    so one read per TTL is plenty. Failures are never cached.
    """

    def __init__(self, inner: MountainRepo, ttl_seconds: int = MOUNTAIN_CACHE_TTL_SECONDS):
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._cache: Optional[tuple[float, List[Mountain]]] = None

    def clear(self) -> None:
        with self._lock:
            self._cache = None

    async def fetch_all(self) -> List[Mountain]:
        now = time.time()
        with self._lock:
            if self._cache is not None:
                ts, items = self._cache
                if now - ts < self.ttl_seconds:
                    return items

        try:
            items = await self.inner.fetch_all()
        except Exception as exc:
            logger.warning("mountain_cache_refresh_failed error=%s", str(exc))
            raise
        with self._lock:
            self._cache = (time.time(), items)
        logger.info("mountain_cache_refreshed rows=%d", len(items))
        return items


_default_repo: Optional[MountainRepo] = None


def get_mountain_repo() -> MountainRepo:
    global _default_repo
    if _default_repo is None:
        if MOUNTAIN_SOURCE == "sqlite":
            base: MountainRepo = SQLiteMountainRepo()
        else:
            base = SupabaseMountainRepo()
        _default_repo = CachedMountainRepo(base) if MOUNTAIN_CACHE_TTL_SECONDS > 0 else base
    return _default_repo
