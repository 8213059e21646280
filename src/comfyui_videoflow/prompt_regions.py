"""
Prompt Regions

Splits a prompt into its base text and its <extend:FRAMES> segments. A
segment's prompt runs until the next <...> tag or the end of the prompt.
"""

import re
from dataclasses import dataclass
from typing import List

from .errors import invalid_extend_frames
from .params import extend_section

EXTEND_MARKER = "<extend:"

_TAG_RE = re.compile(r"<([a-zA-Z_]+):([^>]*)>")


@dataclass(frozen=True)
class ExtendPart:
    """One <extend:...> segment."""

    index: int
    frames: int
    prompt: str

    @property
    def section(self) -> str:
        return extend_section(self.index)


def has_extend(prompt: str) -> bool:
    return EXTEND_MARKER in (prompt or "")


def base_prompt(prompt: str) -> str:
    """Prompt text before the first extend segment."""
    prompt = prompt or ""
    index = prompt.find(EXTEND_MARKER)
    return (prompt if index < 0 else prompt[:index]).strip()


def parse_extend_parts(prompt: str) -> List[ExtendPart]:
    """All extend segments, in prompt order."""
    prompt = prompt or ""
    tags = list(_TAG_RE.finditer(prompt))
    parts = []
    for i, tag in enumerate(tags):
        if tag.group(1).lower() != "extend":
            continue
        raw = tag.group(2).strip()
        try:
            frames = int(raw)
        except ValueError:
            raise invalid_extend_frames(raw)
        if frames <= 0:
            raise invalid_extend_frames(raw)
        end = tags[i + 1].start() if i + 1 < len(tags) else len(prompt)
        parts.append(ExtendPart(index=len(parts), frames=frames, prompt=prompt[tag.end():end].strip()))
    return parts
