"""
Request shapes for POST /api/chat.

Validation is lenient where a safe normalization exists (truncate, drop bad
entries, default the locale) and strict only where nothing usable remains
(no valid message, body not an object).
"""
from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from mountain_guide.services.heuristics import SEASONS, STAR_LEVELS

LOCALES = ("en", "ja", "zh")
ROLES = ("user", "assistant", "system")

MAX_MESSAGES = 10
MAX_MESSAGE_CHARS = 1000
MAX_COMPLETED_IDS = 200
MAX_ID_CHARS = 32
MAX_PREF_REGIONS = 8
MAX_REGION_CHARS = 32
MAX_PREF_DIFFICULTY = 4


def clamp_string_list(value: Any, max_items: int, max_len: int) -> Optional[List[str]]:
    """Keep string entries only, truncate each, stop at max_items. None if not a list."""
    if not isinstance(value, list):
        return None
    out: List[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        out.append(item[:max_len])
        if len(out) >= max_items:
            break
    return out


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_CHARS)


class Preferences(BaseModel):
    model_config = ConfigDict(extra="ignore")

    regions: Optional[List[str]] = None
    difficulty: Optional[List[str]] = None
    season: Optional[Literal["spring", "summer", "autumn", "winter"]] = None

    @field_validator("regions", mode="before")
    @classmethod
    def _clamp_regions(cls, v):
        return clamp_string_list(v, MAX_PREF_REGIONS, MAX_REGION_CHARS)

    @field_validator("difficulty", mode="before")
    @classmethod
    def _clamp_difficulty(cls, v):
        if not isinstance(v, list):
            return None
        # membership before the length cap, so "★★★★★" is never cut down to "★★★★"
        stars = [s for s in v if isinstance(s, str) and s in STAR_LEVELS]
        return stars[:MAX_PREF_DIFFICULTY]

    @field_validator("season", mode="before")
    @classmethod
    def _known_season(cls, v):
        return v if v in SEASONS else None


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    locale: Literal["en", "ja", "zh"] = "en"
    completed_ids: List[str] = Field(default_factory=list)
    preferences: Optional[Preferences] = None
    messages: List[ChatMessage]

    @field_validator("locale", mode="before")
    @classmethod
    def _default_locale(cls, v):
        return v if v in LOCALES else "en"

    @field_validator("completed_ids", mode="before")
    @classmethod
    def _clamp_completed(cls, v):
        return clamp_string_list(v, MAX_COMPLETED_IDS, MAX_ID_CHARS) or []

    @field_validator("preferences", mode="before")
    @classmethod
    def _object_or_none(cls, v):
        return v if isinstance(v, dict) else None

    @field_validator("messages", mode="before")
    @classmethod
    def _clamp_messages(cls, v):
        if not isinstance(v, list):
            raise ValueError("messages must be a list")
        out = []
        for m in v:
            if not isinstance(m, dict):
                continue
            role = m.get("role")
            content = m.get("content")
            if role not in ROLES or not isinstance(content, str) or not content:
                continue
            out.append({"role": role, "content": content[:MAX_MESSAGE_CHARS]})
            if len(out) >= MAX_MESSAGES:
                break
        if not out:
            raise ValueError("at least one message with a known role and non-empty content is required")
        return out


def summarize_validation_error(err: ValidationError) -> str:
    # field + short reason, never the submitted values
    issues = []
    for e in err.errors():
        loc = ".".join(str(p) for p in e.get("loc", []))
        issues.append(f"{loc}: {e.get('msg')}")
    return "; ".join(issues)
