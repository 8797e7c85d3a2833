"""
Candidate pool for one chat turn: completed mountains out, explicit preferences as hard filters,
inferred hints as soft filters with a fixed relaxation order, then a seeded rotation window.
"""
from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence

from mountain_guide.core.schemas import Preferences
from mountain_guide.services.heuristics import Heuristics
from mountain_guide.services.mountain_repo import Mountain, MountainRepo

DEFAULT_POOL_SIZE = 20
MAX_POOL_SIZE = 50
WINTER_MAX_ELEVATION_M = 2500

# Roughly a 3h drive from Shinjuku
NEAR_TOKYO_PREFECTURES = frozenset({
    "東京", "神奈川", "埼玉", "千葉",
    "山梨", "静岡", "群馬", "栃木", "茨城", "長野",
})
# Roughly <=2h by shinkansen from Shin-Osaka (Kansai core, Tokai, Okayama/Hiroshima)
NEAR_OSAKA_PREFECTURES = frozenset({
    "大阪", "兵庫", "京都", "奈良", "滋賀", "和歌山",
    "三重", "岐阜", "愛知", "静岡",
    "岡山", "広島",
})

_PREF_SPLIT_RE = re.compile(r"[・／/、,，\\]")
_PREF_SUFFIX_RE = re.compile(r"(都|道|府|県)$")


def prefecture_tokens(prefecture: Optional[str]) -> List[str]:
    """'山梨県・静岡県' -> ['山梨', '静岡']"""
    if not prefecture:
        return []
    out = []
    for part in _PREF_SPLIT_RE.split(prefecture):
        part = part.strip()
        if not part:
            continue
        stripped = _PREF_SUFFIX_RE.sub("", part)
        # bare "京都" must not shrink to "京"
        out.append(stripped if len(stripped) >= 2 else part)
    return out


def hash_string(s: str) -> int:
    """
    Order-dependent 32-bit string hash (h = h*31 + code unit, signed wrap).
    Iterates UTF-16 code units so the value matches what browsers compute for the same text.
    """
    h = 0
    data = s.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def rotation_offset(seed: str, pool_length: int) -> int:
    return abs(hash_string(seed)) % pool_length


def _near(rows: Iterable[Mountain], allowed: frozenset) -> List[Mountain]:
    return [m for m in rows if any(t in allowed for t in prefecture_tokens(m.prefecture))]


def _in_regions(rows: Iterable[Mountain], regions: Sequence[str]) -> List[Mountain]:
    allowed = set(regions)
    return [m for m in rows if m.region in allowed]


def _in_difficulty(rows: Iterable[Mountain], stars: Sequence[str]) -> List[Mountain]:
    allowed = set(stars)
    return [m for m in rows if m.difficulty and m.difficulty in allowed]


def select_candidates(
    mountains: Sequence[Mountain],
    completed_ids: Iterable[str] = (),
    preferences: Optional[Preferences] = None,
    limit: int = DEFAULT_POOL_SIZE,
    seed: Optional[str] = None,
    heuristics: Optional[Heuristics] = None,
) -> List[Mountain]:
    completed = set(completed_ids)
    rows = [m for m in mountains if m.id not in completed]

    # Explicit preferences: hard filters, never relaxed
    if preferences is not None:
        if preferences.regions:
            rows = _in_regions(rows, preferences.regions)
        if preferences.difficulty:
            rows = _in_difficulty(rows, preferences.difficulty)

    hints = heuristics or Heuristics()
    base_rows = rows

    # Proximity: an emptied pool keeps the pre-proximity rows
    rows_after_geo = rows
    if hints.near_tokyo:
        rows_after_geo = _near(rows, NEAR_TOKYO_PREFECTURES) or rows_after_geo
        rows = rows_after_geo
    if hints.near_osaka:
        rows_after_geo = _near(rows, NEAR_OSAKA_PREFECTURES) or rows_after_geo
        rows = rows_after_geo

    # Winter keeps to lower peaks; unknown elevation stays in
    rows_after_season = rows
    if hints.season == "winter":
        rows_after_season = [
            m for m in rows if m.elevation_m is None or m.elevation_m <= WINTER_MAX_ELEVATION_M
        ]
        rows = rows_after_season

    if hints.difficulty_stars:
        rows = _in_difficulty(rows, hints.difficulty_stars)

    # Region hint is authoritative when present
    if hints.regions:
        rows = _in_regions(rows, hints.regions)

    # Relax in order: difficulty -> season -> proximity -> base; region is re-applied at every step
    if not rows:
        if hints.regions:
            for step in (rows_after_season, rows_after_geo, base_rows):
                rows = _in_regions(step, hints.regions)
                if rows:
                    break
        else:
            rows = rows_after_season or rows_after_geo or base_rows

    capped = max(1, min(MAX_POOL_SIZE, limit))
    if len(rows) <= capped:
        return list(rows)
    if seed:
        offset = rotation_offset(seed, len(rows))
        rows = rows[offset:] + rows[:offset]
    return list(rows[:capped])


async def get_candidates(
    repo: MountainRepo,
    completed_ids: Iterable[str] = (),
    preferences: Optional[Preferences] = None,
    limit: int = DEFAULT_POOL_SIZE,
    seed: Optional[str] = None,
    heuristics: Optional[Heuristics] = None,
) -> List[Mountain]:
    mountains = await repo.fetch_all()
    return select_candidates(
        mountains,
        completed_ids=completed_ids,
        preferences=preferences,
        limit=limit,
        seed=seed,
        heuristics=heuristics,
    )
