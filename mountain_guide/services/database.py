"""
Local SQLite copy of the mountain table (used when MOUNTAIN_SOURCE=sqlite).
"""
import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from mountain_guide.config import MOUNTAIN_DB_PATH

DB_PATH = MOUNTAIN_DB_PATH
SEED_PATH = Path(__file__).resolve().parents[1] / "data" / "mountains_seed.json"

MOUNTAIN_COLUMNS = ("id", "name_en", "name_ja", "name_zh", "region", "prefecture", "difficulty", "elevation_m")


def get_conn(db_path: Optional[Path] = None) -> sqlite3.Connection:
    path = Path(db_path or DB_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)

    # check_same_thread=False
    # Reads run in asyncio.to_thread, so the connection may be used off the creating thread
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row # row["name_en"] can be used instead of row[1]

    conn.execute("PRAGMA journal_mode = WAL;") # Better concurrency
    conn.execute("PRAGMA busy_timeout = 3000;")  # 3s wait if DB is locked without error

    return conn


@contextmanager
def connect(db_path: Optional[Path] = None) -> Iterator[sqlite3.Connection]:
    """get_conn as a transaction that also closes the connection on exit."""
    conn = get_conn(db_path)
    try:
        with conn:
            yield conn
    finally:
        conn.close()


def init_db(db_path: Optional[Path] = None) -> None:
    """
    Mountain reference table.
    (id and the three names are required. Other fields are optional and can be null)
    """
    with connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS mountains (
                -- stable id shared with the hosted table
                id TEXT PRIMARY KEY,

                -- Localized names
                name_en TEXT NOT NULL,
                name_ja TEXT NOT NULL,
                name_zh TEXT NOT NULL,

                -- One of the 8 canonical region labels
                region TEXT,
                -- Free text, may hold several prefectures ("山梨県・静岡県")
                prefecture TEXT,
                -- "★".."★★★★★"
                difficulty TEXT,
                elevation_m INTEGER
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_mountains_region ON mountains(region);")


def upsert_mountains(rows: List[Dict[str, Any]], db_path: Optional[Path] = None) -> int:
    placeholders = ", ".join("?" for _ in MOUNTAIN_COLUMNS)
    updates = ", ".join(f"{col} = excluded.{col}" for col in MOUNTAIN_COLUMNS if col != "id")
    sql = (
        f"INSERT INTO mountains ({', '.join(MOUNTAIN_COLUMNS)}) VALUES ({placeholders}) "
        f"ON CONFLICT(id) DO UPDATE SET {updates}"
    )
    with connect(db_path) as conn:
        conn.executemany(sql, [tuple(row.get(col) for col in MOUNTAIN_COLUMNS) for row in rows])
    return len(rows)


def load_seed(seed_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    with open(seed_path or SEED_PATH, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"Seed file must hold a JSON list: {seed_path or SEED_PATH}")
    return data
