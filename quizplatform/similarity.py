"""Fuzzy matching for free-text answers.

Tolerates case, spacing, punctuation, stop-word noise, word reordering and
singular/plural drift, then falls back to a blend of word overlap (Jaccard)
and character edit distance (Levenshtein).
"""

import re

DEFAULT_THRESHOLD = 0.80
TOKEN_WEIGHT = 0.6
EDIT_WEIGHT = 0.4

STOP_WORDS = frozenset(
    {
        "a",
        "an",
        "the",
        "and",
        "or",
        "but",
        "nor",
        "so",
        "of",
        "in",
        "on",
        "at",
        "to",
        "for",
        "with",
        "by",
        "from",
        "as",
        "into",
    }
)

_WHITESPACE_RE = re.compile(r"\s+")
_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def normalize_text(value: str) -> str:
    collapsed = _WHITESPACE_RE.sub(" ", str(value).strip().lower())
    return _PUNCTUATION_RE.sub("", collapsed).strip()


def tokenize(normalized: str) -> list[str]:
    return [token for token in normalized.split() if token not in STOP_WORDS]


def levenshtein(left: str, right: str) -> int:
    if len(left) < len(right):
        left, right = right, left
    previous = list(range(len(right) + 1))
    for i, left_char in enumerate(left, start=1):
        current = [i]
        for j, right_char in enumerate(right, start=1):
            if left_char == right_char:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j], current[j - 1], previous[j - 1]))
        previous = current
    return previous[-1]


def jaccard(left: set, right: set) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def _is_plural_pair(left: str, right: str) -> bool:
    for plural, singular in ((left, right), (right, left)):
        if plural.endswith("ies") and singular.endswith("y") and plural[:-3] == singular[:-1]:
            return True
        if plural.endswith("es") and plural[:-2] == singular:
            return True
        if plural.endswith("s") and plural[:-1] == singular:
            return True
    return False


def _is_plural_variant(normalized_1: str, normalized_2: str, tokens_1: list[str], tokens_2: list[str]) -> bool:
    if _is_plural_pair(normalized_1, normalized_2):
        return True
    if not tokens_1 or len(tokens_1) != len(tokens_2):
        return False
    return all(a == b or _is_plural_pair(a, b) for a, b in zip(tokens_1, tokens_2))


def blended_score(normalized_1: str, normalized_2: str, tokens_1: list[str], tokens_2: list[str]) -> float:
    longest = max(len(normalized_1), len(normalized_2))
    edit_similarity = 1.0 - levenshtein(normalized_1, normalized_2) / longest if longest else 1.0
    return TOKEN_WEIGHT * jaccard(set(tokens_1), set(tokens_2)) + EDIT_WEIGHT * edit_similarity


def similarity_score(candidate: str, reference: str) -> float:
    """Blended score in [0, 1]; 1.0 for answers that normalize identically."""
    if candidate is None or reference is None:
        return 0.0
    normalized_1, normalized_2 = normalize_text(candidate), normalize_text(reference)
    if not normalized_1 or not normalized_2:
        return 0.0
    if normalized_1 == normalized_2:
        return 1.0
    return blended_score(normalized_1, normalized_2, tokenize(normalized_1), tokenize(normalized_2))


def is_match(candidate: str, reference: str, threshold: float = DEFAULT_THRESHOLD) -> bool:
    if candidate is None or reference is None:
        return False
    normalized_1, normalized_2 = normalize_text(candidate), normalize_text(reference)
    if not normalized_1 or not normalized_2:
        return False
    if normalized_1 == normalized_2:
        return True

    tokens_1, tokens_2 = tokenize(normalized_1), tokenize(normalized_2)
    set_1, set_2 = set(tokens_1), set(tokens_2)
    if set_1 and set_2:
        if set_1 == set_2:
            return True
        if (set_1 <= set_2 or set_2 <= set_1) and abs(len(set_1) - len(set_2)) <= 1:
            return True

    if _is_plural_variant(normalized_1, normalized_2, tokens_1, tokens_2):
        return True

    return blended_score(normalized_1, normalized_2, tokens_1, tokens_2) >= threshold
