"""
This module infers soft hints from the latest user message (English / Japanese / Chinese).
    - proximity to Tokyo or Osaka
    - season
    - star difficulty
    - region
Matching is deliberately permissive. No match means no hint, never an error.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

SEASONS = ("spring", "summer", "autumn", "winter")
STAR_LEVELS = ("★", "★★", "★★★", "★★★★", "★★★★★")
REGIONS = ("北海道", "東北", "関東", "中部", "関西", "中国", "四国", "九州")


@dataclass
class Heuristics:
    near_tokyo: bool = False
    near_osaka: bool = False
    season: Optional[str] = None
    difficulty_stars: Optional[List[str]] = None
    regions: Optional[List[str]] = None

    def as_dict(self) -> dict:
        return {
            "near_tokyo": self.near_tokyo,
            "near_osaka": self.near_osaka,
            "season": self.season,
            "difficulty_stars": self.difficulty_stars,
            "regions": self.regions,
        }


# city mention + an access cue (travel time, transport, or "near")
_TOKYO_RE = re.compile(r"新宿|東京|东京|tokyo|shinjuku")
_OSAKA_RE = re.compile(r"大阪|osaka")
_TRAVEL_TIME_RE = re.compile(r"3\s*个?小时|3\s*hours?|三小时|3\s*時間|三時間")
_SHINKANSEN_RE = re.compile(r"新干线|shinkansen|新幹線")
_NEAR_RE = re.compile(
    r"\bnear\b|close to|around|day ?trip|from|近く|近郊|周辺|周边|附近|日帰り|一日游|から|从"
)

# several seasons in one message: the later entry in this table wins
_SEASON_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("spring", re.compile(r"春|spring|(?<!\d)[345]月")),
    ("summer", re.compile(r"夏|summer|(?<!\d)[678]月")),
    ("autumn", re.compile(r"秋|autumn|\bfall\b|(?<!\d)(?:9|10|11)月")),
    ("winter", re.compile(r"冬|winter|(?<!\d)(?:12|1|2)月")),
)

_STAR_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("★★★★★", re.compile(r"★★★★★|5\s*星|五星")),
    ("★★★★", re.compile(r"★★★★|4\s*星|四星")),
    ("★★★", re.compile(r"★★★|3\s*星|三星")),
    ("★★", re.compile(r"★★|2\s*星|二星|两星")),
    ("★", re.compile(r"★(?!★)|1\s*星|一星")),
)

_REGION_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("九州", re.compile(r"九州|kyushu")),
    ("北海道", re.compile(r"北海道|hokkaido")),
    ("東北", re.compile(r"東北|东北|tohoku")),
    ("関東", re.compile(r"関東|关东|kanto")),
    ("中部", re.compile(r"中部|chubu")),
    ("関西", re.compile(r"関西|关西|近畿|kansai|kinki")),
    ("中国", re.compile(r"中国地方|中国地区|\bchugoku\b")),
    ("四国", re.compile(r"四国|shikoku")),
)


def _extract_proximity(t: str) -> Tuple[bool, bool]:
    near_tokyo = bool(_TOKYO_RE.search(t)) and bool(_TRAVEL_TIME_RE.search(t) or _NEAR_RE.search(t))
    near_osaka = bool(_OSAKA_RE.search(t)) and bool(_SHINKANSEN_RE.search(t) or _NEAR_RE.search(t))
    return near_tokyo, near_osaka


def _extract_season(t: str) -> Optional[str]:
    season = None
    for name, pattern in _SEASON_PATTERNS:
        if pattern.search(t):
            season = name
    return season


def _extract_stars(t: str) -> Optional[List[str]]:
    stars = [label for label, pattern in _STAR_PATTERNS if pattern.search(t)]
    return stars or None


def _extract_regions(t: str) -> Optional[List[str]]:
    regions: List[str] = []
    for label, pattern in _REGION_PATTERNS:
        if pattern.search(t) and label not in regions:
            regions.append(label)
    return regions or None


def extract_heuristics(text: Optional[str]) -> Heuristics:
    t = (text or "").lower()
    near_tokyo, near_osaka = _extract_proximity(t)

    return Heuristics(
        near_tokyo=near_tokyo,
        near_osaka=near_osaka,
        season=_extract_season(t),
        difficulty_stars=_extract_stars(t),
        regions=_extract_regions(t),
    )
