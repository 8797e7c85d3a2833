"""
Checks what the model claims is JSON before anything reaches the client.
Nothing the model returns is trusted: every field is bounded, and every suggestion
must resolve to a candidate that was actually offered for this request.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from mountain_guide.services.mountain_repo import Mountain

MAX_SUGGESTIONS = 3
MAX_ID_CHARS = 32
MAX_TITLE_CHARS = 120
MAX_REASON_CHARS = 600
MAX_FOLLOWUPS = 5
MAX_DISCLAIMER_CHARS = 200


@dataclass
class ModelSuggestion:
    mountain_id: str
    title: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        out = {"mountain_id": self.mountain_id}
        if self.title is not None:
            out["title"] = self.title
        if self.reason is not None:
            out["reason"] = self.reason
        return out


@dataclass
class ModelOutput:
    suggestions: List[ModelSuggestion] = field(default_factory=list)
    followups: Optional[List[str]] = None
    disclaimer: Optional[str] = None


def _strip_code_fences(text: str) -> str:
    # Handle cases where the model wraps output in ```json blocks
    t = text.strip()
    if t.startswith("```json"):
        t = t[7:]
    elif t.startswith("```"):
        t = t[3:]
    if t.endswith("```"):
        t = t[:-3]
    return t.strip()


def _bounded_str(value: Any, max_len: int) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value[:max_len]


def parse_model_output(content: Optional[str]) -> Optional[ModelOutput]:
    """None when the text is not a JSON object. Bad individual suggestions are dropped, not fatal."""
    if not content:
        return None
    try:
        parsed = json.loads(_strip_code_fences(content))
    except (TypeError, ValueError):
        return None
    if not isinstance(parsed, dict):
        return None

    raw_suggestions = parsed.get("suggestions")
    suggestions: List[ModelSuggestion] = []
    for s in raw_suggestions if isinstance(raw_suggestions, list) else []:
        if not isinstance(s, dict):
            continue
        mountain_id = _bounded_str(s.get("mountain_id"), MAX_ID_CHARS)
        if not mountain_id:
            continue
        suggestions.append(
            ModelSuggestion(
                mountain_id=mountain_id,
                title=_bounded_str(s.get("title"), MAX_TITLE_CHARS),
                reason=_bounded_str(s.get("reason"), MAX_REASON_CHARS),
            )
        )
        if len(suggestions) >= MAX_SUGGESTIONS:
            break

    raw_followups = parsed.get("followups")
    followups = None
    if isinstance(raw_followups, list):
        followups = [f for f in raw_followups if isinstance(f, str)][:MAX_FOLLOWUPS]

    return ModelOutput(
        suggestions=suggestions,
        followups=followups,
        disclaimer=_bounded_str(parsed.get("disclaimer"), MAX_DISCLAIMER_CHARS),
    )


def _name_index(candidates: Sequence[Mountain]) -> Dict[str, str]:
    index: Dict[str, str] = {}
    for c in candidates:
        for name in (c.name_en, c.name_ja, c.name_zh):
            if name:
                index[name.lower()] = c.id
    return index


def resolve_suggestions(
    suggestions: Sequence[ModelSuggestion],
    candidates: Sequence[Mountain],
) -> List[ModelSuggestion]:
    """
    Keep suggestions whose id is a candidate id. An unknown id that equals one of a
    candidate's localized names (case-insensitive) is remapped to that candidate's id.
    Everything else is dropped.
    """
    candidate_ids = {c.id for c in candidates}
    name_to_id = _name_index(candidates)

    resolved: List[ModelSuggestion] = []
    for s in suggestions:
        if s.mountain_id in candidate_ids:
            resolved.append(s)
            continue
        mapped = name_to_id.get(s.mountain_id.lower())
        if mapped:
            resolved.append(ModelSuggestion(mountain_id=mapped, title=s.title, reason=s.reason))
    return resolved
