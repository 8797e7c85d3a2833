from __future__ import annotations

import json
from typing import Dict, List, Optional, Sequence

from mountain_guide.core.schemas import ChatMessage
from mountain_guide.services.heuristics import Heuristics
from mountain_guide.services.mountain_repo import Mountain

MAX_SUGGESTIONS = 3
MAX_PROMPT_USER_CHARS = 2000

LANGUAGE_BY_LOCALE = {"en": "English", "ja": "Japanese", "zh": "Chinese"}


def build_system_prompt(locale: str) -> str:
    lang = LANGUAGE_BY_LOCALE.get(locale, "English")
    # Keep it strict: we want JSON back, and only ids we handed over.
    return f"""
You are "Japan Mountain Guide", helping users pick their next mountain from a provided candidate list.
Rules:
- ONLY recommend mountains by their id from the provided candidates.
- Use ONLY the fields provided for candidates (id, names, region, prefecture, difficulty, elevation). Do NOT assume facilities, camping permission, access, or safety if not provided.
- If the user requests winter camping or facilities and you cannot reliably infer suitability from the provided fields, return an empty suggestions list with a short follow-up asking to adjust filters or choose a different season/region.
- Return STRICT JSON only (no prose) with shape: {{
  "suggestions": [{{"mountain_id": string, "title": string, "reason": string}}],
  "followups"?: string[],
  "disclaimer"?: string
}}.
- Maximum {MAX_SUGGESTIONS} suggestions. Be concise.
- Write responses in {lang}.
""".strip()


def compact_candidates(candidates: Sequence[Mountain]) -> List[Dict[str, object]]:
    return [
        {
            "id": c.id,
            "name_en": c.name_en,
            "name_ja": c.name_ja,
            "name_zh": c.name_zh,
            "region": c.region,
            "prefecture": c.prefecture,
            "difficulty": c.difficulty,
            "elevation_m": c.elevation_m,
        }
        for c in candidates
    ]


def latest_user_message(messages: Sequence[ChatMessage]) -> str:
    for m in reversed(messages):
        if m.role == "user":
            return m.content
    return ""


def _hint_lines(hints: Optional[Heuristics]) -> List[str]:
    if hints is None:
        return []
    lines = []
    if hints.near_tokyo:
        lines.append("Proximity hint: within ~3h of Tokyo")
    if hints.near_osaka:
        lines.append("Proximity hint: within ~2h of Osaka by shinkansen")
    if hints.season:
        lines.append(f"Season hint: {hints.season}")
    if hints.difficulty_stars:
        lines.append(f"Difficulty hint: {','.join(hints.difficulty_stars)}")
    if hints.regions:
        lines.append(f"Region hint: {','.join(hints.regions)}")
    return lines


def build_user_prompt(
    messages: Sequence[ChatMessage],
    candidates: Sequence[Mountain],
    locale: str,
    completed_count: int,
    hints: Optional[Heuristics] = None,
) -> str:
    # Only the latest user turn is sent; earlier turns are not replayed.
    user_text = latest_user_message(messages)[:MAX_PROMPT_USER_CHARS]
    lines = [
        f"Locale: {locale}",
        f"Completed count: {completed_count}",
        *_hint_lines(hints),
        "Candidates (choose from these ids only):",
        json.dumps(compact_candidates(candidates), ensure_ascii=False),
        "",
        "User request (latest message only):",
        user_text,
        "Return JSON only.",
    ]
    return "\n".join(lines)


def build_messages(
    messages: Sequence[ChatMessage],
    candidates: Sequence[Mountain],
    locale: str,
    completed_count: int,
    hints: Optional[Heuristics] = None,
) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": build_system_prompt(locale)},
        {"role": "user", "content": build_user_prompt(messages, candidates, locale, completed_count, hints)},
    ]
