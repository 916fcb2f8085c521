"""Repair UTF-8 text that was decoded as windows-1252 somewhere upstream."""

from __future__ import annotations

from functools import lru_cache
from typing import Dict, List, Pattern, Tuple
import re


# Unicode blocks that show up in chat content.
MOJIBAKE_RANGES: List[Tuple[int, int]] = [
    (0x0080, 0x00FF),  # Latin-1 Supplement
    (0x0100, 0x017F),  # Latin Extended-A
    (0x0180, 0x024F),  # Latin Extended-B
    (0x0250, 0x02AF),  # IPA Extensions
    (0x02B0, 0x02FF),  # Spacing Modifier Letters
    (0x0370, 0x03FF),  # Greek and Coptic
    (0x0400, 0x04FF),  # Cyrillic
    (0x1E00, 0x1EFF),  # Latin Extended Additional
    (0x2000, 0x206F),  # General Punctuation
    (0x2070, 0x209F),  # Superscripts and Subscripts
    (0x20A0, 0x20CF),  # Currency Symbols
    (0x2100, 0x214F),  # Letterlike Symbols
    (0x2150, 0x218F),  # Number Forms
    (0x2190, 0x21FF),  # Arrows
    (0x2200, 0x22FF),  # Mathematical Operators
    (0x2300, 0x23FF),  # Miscellaneous Technical
    (0x2500, 0x257F),  # Box Drawing
    (0x2580, 0x259F),  # Block Elements
    (0x25A0, 0x25FF),  # Geometric Shapes
    (0x2600, 0x26FF),  # Miscellaneous Symbols
    (0x2700, 0x27BF),  # Dingbats
    (0x1F300, 0x1F5FF),  # Misc Symbols and Pictographs
    (0x1F600, 0x1F64F),  # Emoticons
    (0x1F680, 0x1F6FF),  # Transport and Map Symbols
    (0x1F900, 0x1F9FF),  # Supplemental Symbols and Pictographs
]


@lru_cache(maxsize=1)
def _cp1252_table() -> Tuple[str, ...]:
    # WHATWG windows-1252: the five undefined bytes decode to the C1 code point
    # of the same value instead of raising.
    table = []
    for value in range(256):
        try:
            table.append(bytes([value]).decode("cp1252"))
        except UnicodeDecodeError:
            table.append(chr(value))
    return tuple(table)


def corrupt(text: str) -> str:
    """Encode as UTF-8 and decode the bytes as windows-1252."""
    table = _cp1252_table()
    return "".join(table[b] for b in text.encode("utf-8"))


@lru_cache(maxsize=1)
def build_mojibake_map() -> Dict[str, str]:
    """Corrupted sequence -> original character, built once."""
    mapping: Dict[str, str] = {}
    for start, end in MOJIBAKE_RANGES:
        for code_point in range(start, end + 1):
            char = chr(code_point)
            broken = corrupt(char)
            if broken and broken != char:
                mapping[broken] = char
    return mapping


@lru_cache(maxsize=1)
def _mojibake_pattern() -> Pattern[str]:
    # Longest keys first so a multi-char sequence is never consumed by a
    # shorter overlapping key.
    keys = sorted(build_mojibake_map(), key=len, reverse=True)
    return re.compile("|".join(re.escape(k) for k in keys))


def fix_mojibake(text: str) -> str:
    """Undo one or more corruption rounds; the result is a fixed point."""
    if not text:
        return text
    mapping = build_mojibake_map()
    pattern = _mojibake_pattern()
    # Every substitution shortens the text, so this terminates.
    while True:
        repaired = pattern.sub(lambda m: mapping[m.group(0)], text)
        if repaired == text:
            return text
        text = repaired
