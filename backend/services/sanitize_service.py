"""Unicode hygiene predicates. Detection only, input is never modified."""

from __future__ import annotations

import re
import unicodedata

# U+FFF9..FFFB interlinear annotation anchors, U+202A..202E bidi embedding/override,
# U+2066..2069 bidi isolates
PROHIBITED_RE = re.compile(r"[\uFFF9-\uFFFB\u202A-\u202E\u2066-\u2069]")


def _is_combining(ch: str) -> bool:
    return unicodedata.category(ch) in ("Mn", "Mc", "Me")


def has_excessive_combining(text: str, max_consecutive: int = 3) -> bool:
    run = 0
    for ch in text:
        if _is_combining(ch):
            run += 1
            if run > max_consecutive:
                return True
        else:
            run = 0
    return False


def has_prohibited_codepoints(text: str) -> bool:
    return PROHIBITED_RE.search(text) is not None
