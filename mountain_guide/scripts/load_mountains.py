"""
This script creates/updates the local SQLite mountain table, either from the bundled seed file
or by copying the hosted Supabase table (MOUNTAIN_SOURCE=sqlite then serves it offline).

    python -m mountain_guide.scripts.load_mountains            # seed file
    python -m mountain_guide.scripts.load_mountains supabase   # hosted table
"""
from __future__ import annotations

import asyncio
import sys
from typing import Any, Dict, List

from mountain_guide.services.database import DB_PATH, connect, init_db, load_seed, upsert_mountains
from mountain_guide.services.heuristics import REGIONS, STAR_LEVELS
from mountain_guide.services.mountain_repo import SupabaseMountainRepo, mountain_from_row


def count_mountains() -> int:
    with connect() as conn:
        return int(conn.execute("SELECT COUNT(*) FROM mountains").fetchone()[0])


def _check_row(row: Dict[str, Any]) -> List[str]:
    warnings = []
    if row.get("region") and row["region"] not in REGIONS:
        warnings.append(f"unknown region {row['region']!r}")
    if row.get("difficulty") and row["difficulty"] not in STAR_LEVELS:
        warnings.append(f"unknown difficulty {row['difficulty']!r}")
    return warnings


def _from_seed() -> List[Dict[str, Any]]:
    rows = []
    for raw in load_seed():
        mountain = mountain_from_row(raw)
        if mountain is None:
            print(f"[WARN] skip row without id: {raw}")
            continue
        rows.append(mountain.to_dict())
    return rows


def _from_supabase() -> List[Dict[str, Any]]:
    return [m.to_dict() for m in asyncio.run(SupabaseMountainRepo().fetch_all())]


def load(source: str) -> None:
    init_db()
    before = count_mountains()

    rows = _from_supabase() if source == "supabase" else _from_seed()
    for row in rows:
        for w in _check_row(row):
            print(f"[WARN] {row['id']}: {w}")

    stored = upsert_mountains(rows)
    after = count_mountains()

    print(f"\n{'='*60}")
    print(f"[DONE] Load complete ({source}). Added/updated {stored} rows")
    print(f"DB: {DB_PATH}")
    print(f"Rows before: {before}  |  Rows after: {after}")
    print(f"{'='*60}")


if __name__ == "__main__":
    load(sys.argv[1] if len(sys.argv) > 1 else "seed")
