"""Deterministic string and vector similarity helpers."""

import math
import re
from typing import Iterable, Sequence, Set

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_NON_ALPHA_SPACE_RE = re.compile(r"[^a-z\s]")
_MULTISPACE_RE = re.compile(r"\s+")

_SOUNDEX_CODES = {
    **dict.fromkeys("bfpv", "1"),
    **dict.fromkeys("cgjkqsxz", "2"),
    **dict.fromkeys("dt", "3"),
    "l": "4",
    **dict.fromkeys("mn", "5"),
    "r": "6",
}


def normalize_column_name(name: str) -> str:
    """Lowercase, non-alphanumerics to underscores, collapsed and stripped."""
    return _NON_ALNUM_RE.sub("_", name.strip().lower()).strip("_")


def normalize_person_name(value: str) -> str:
    """Normalize a person name for identity comparison."""
    collapsed = _MULTISPACE_RE.sub(" ", value.strip().lower())
    cleaned = _NON_ALPHA_SPACE_RE.sub("", collapsed)
    return _MULTISPACE_RE.sub(" ", cleaned).strip()


def levenshtein(left: str, right: str) -> int:
    """Classic edit distance."""
    if left == right:
        return 0
    if not left:
        return len(right)
    if not right:
        return len(left)

    previous = list(range(len(right) + 1))
    for i, lc in enumerate(left, start=1):
        current = [i]
        for j, rc in enumerate(right, start=1):
            cost = 0 if lc == rc else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def levenshtein_similarity(left: str, right: str) -> float:
    """1 - distance / longest length, in [0, 1]."""
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(left, right) / longest


def token_set_similarity(left: Iterable[str], right: Iterable[str]) -> float:
    """Jaccard overlap of two token collections."""
    left_tokens = set(t for t in left if t)
    right_tokens = set(t for t in right if t)
    if not left_tokens or not right_tokens:
        return 0.0
    return len(left_tokens & right_tokens) / len(left_tokens | right_tokens)


def column_name_similarity(left: str, right: str) -> float:
    """
    Similarity of two column names in [0, 1].

    Equal names score 1.0 and containment 0.8; otherwise the better of edit
    distance over the underscore-free forms and token overlap.
    """
    norm_left = normalize_column_name(left)
    norm_right = normalize_column_name(right)
    if not norm_left or not norm_right:
        return 0.0
    if norm_left == norm_right:
        return 1.0

    compact_left = norm_left.replace("_", "")
    compact_right = norm_right.replace("_", "")
    if compact_left == compact_right:
        return 1.0
    if compact_left in compact_right or compact_right in compact_left:
        return 0.8

    edit = levenshtein_similarity(compact_left, compact_right)
    tokens = token_set_similarity(norm_left.split("_"), norm_right.split("_"))
    return max(edit, tokens)


def soundex(value: str) -> str:
    """American Soundex code, e.g. Robert -> R163."""
    letters = [c for c in value.lower() if c.isalpha()]
    if not letters:
        return ""

    first = letters[0]
    code = [first.upper()]
    last = _SOUNDEX_CODES.get(first, "")
    for char in letters[1:]:
        digit = _SOUNDEX_CODES.get(char, "")
        if digit and digit != last:
            code.append(digit)
            if len(code) == 4:
                break
        if char not in "hw":
            last = digit
    return "".join(code).ljust(4, "0")


def trigrams(value: str) -> Set[str]:
    padded = f"  {value} "
    return {padded[i:i + 3] for i in range(len(padded) - 2)}


def trigram_similarity(left: str, right: str) -> float:
    return token_set_similarity(trigrams(left), trigrams(right))


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Cosine of two equal-length vectors; 0.0 when either is empty or zero."""
    if not left or not right or len(left) != len(right):
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    norm_left = math.sqrt(sum(a * a for a in left))
    norm_right = math.sqrt(sum(b * b for b in right))
    if norm_left == 0 or norm_right == 0:
        return 0.0
    return max(0.0, min(1.0, dot / (norm_left * norm_right)))
