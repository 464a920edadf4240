"""LLM reply parsing into (speaker, content, actions).

Reply format (labels case-insensitive, brackets optional):
  CHARACTER_ID: [watson]
  CONTENT: *신문을 내려놓으며* 좋은 아침입니다, 홈즈!

The legacy label CHARACTER: is accepted as well. Content runs from the
CONTENT line to the end of the reply (or the next tag line). Missing tags
degrade gracefully: no CHARACTER_ID means the story's default speaker, no
CONTENT means the whole remaining text is the content.

Actions are the *...* spans of the content, returned as a side list; the
content keeps them intact for the display layer.
"""

from __future__ import annotations

import re

from storyplay.models import LLMReply

_CHARACTER_RE = re.compile(r"^\s*CHARACTER(?:_ID)?\s*:\s*\[?\s*([^\]\n]*?)\s*\]?\s*$", re.IGNORECASE)
_CONTENT_RE = re.compile(r"^\s*CONTENT\s*:\s*(.*)$", re.IGNORECASE)
_ACTION_RE = re.compile(r"\*([^*]+)\*")


def extract_actions(content: str) -> list[str]:
    return [m.strip() for m in _ACTION_RE.findall(content) if m.strip()]


def parse_reply(text: str, default_character_id: str) -> LLMReply:
    """Parse raw LLM output. Never raises."""
    character_id = ""
    content_lines: list[str] | None = None
    other_lines: list[str] = []

    for line in (text or "").splitlines():
        char_match = _CHARACTER_RE.match(line)
        if char_match:
            if not character_id:
                character_id = char_match.group(1).strip().lower()
            if content_lines is not None:
                # a tag line ends the content block
                break
            continue

        content_match = _CONTENT_RE.match(line)
        if content_match and content_lines is None:
            content_lines = [content_match.group(1)]
            continue

        if content_lines is not None:
            content_lines.append(line)
        else:
            other_lines.append(line)

    if content_lines is not None:
        content = "\n".join(content_lines).strip()
    else:
        content = "\n".join(other_lines).strip()

    return LLMReply(
        character_id=character_id or default_character_id,
        content=content,
        actions=extract_actions(content),
    )
