"""Heuristic code detection for chunk text.

classify_chunk() is the only entry point the chunker uses, so the regex
signatures below can be replaced by a trained classifier later.
"""

from __future__ import annotations

import re
from typing import NamedTuple


class CodeClassification(NamedTuple):
    is_code: bool
    language: str | None


# (language, weight, pattern). Language-specific signatures weigh 2; the generic
# brace-style control structure weighs 1 and counts toward C.
_SIGNATURES: list[tuple[str, int, re.Pattern]] = [
    ("python", 2, re.compile(r"^\s*def\s+\w+\s*\(.*\)\s*(->\s*[^:]+)?:\s*$", re.M)),
    ("python", 2, re.compile(r"^\s*class\s+\w+(\([^)]*\))?\s*:\s*$", re.M)),
    ("python", 2, re.compile(r"^\s*(from\s+[\w.]+\s+import\s+[\w.*, ()]+|import\s+[\w.]+(\s+as\s+\w+)?(\s*,\s*[\w.]+)*)\s*$", re.M)),
    ("python", 1, re.compile(r"^\s*(for\s+\w+(\s*,\s*\w+)*\s+in\s+.+|while\s+.+|elif\s+.+)\s*:\s*$", re.M)),
    ("cpp", 2, re.compile(r"#include\s*<(iostream|vector|string|map|set|algorithm|memory)>|\bstd::|\bcout\s*<<|\bcin\s*>>|\bnamespace\s+\w+\s*\{")),
    ("c", 2, re.compile(r"#include\s*[<\"][\w./]+\.h[>\"]|\bprintf\s*\(|\bscanf\s*\(|\bmalloc\s*\(")),
    ("java", 2, re.compile(r"^\s*import\s+java[x]?\.[\w.*]+;|\bpublic\s+(static\s+)?(final\s+)?(class|interface|void|int|String)\b|System\.out\.print", re.M)),
    ("javascript", 2, re.compile(r"\bfunction\s*\w*\s*\([^)]*\)\s*\{|\b(const|let|var)\s+\w+\s*=\s*(\([^)]*\)|\w+)\s*=>|\bconsole\.log\s*\(|\brequire\s*\(\s*['\"]")),
    ("c", 1, re.compile(r"\b(for|while|if|switch)\s*\([^)]*\)\s*\{")),
]


def classify_chunk(text: str) -> CodeClassification:
    """Guess whether text is source code and, if so, which language.

    Signature weights are summed per language; the highest total wins.
    A tie between two languages is treated as ambiguous and reported as prose.
    """
    if not text or not text.strip():
        return CodeClassification(False, None)

    scores: dict[str, int] = {}
    for language, weight, pattern in _SIGNATURES:
        if pattern.search(text):
            scores[language] = scores.get(language, 0) + weight

    if not scores:
        return CodeClassification(False, None)

    ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
    if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
        return CodeClassification(False, None)
    return CodeClassification(True, ranked[0][0])
