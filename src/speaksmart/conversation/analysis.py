"""Quick heuristics shown next to each chat reply."""

import re

_FUNCTION_WORD = re.compile(r"\b(the|a|an|is|are|was|were)\b", re.IGNORECASE)
_END_PUNCTUATION = re.compile(r"[.!?]$")


def analyze_grammar(text: str) -> int:
    """Rough 70-100 grammar score from sentence shape."""
    score = 70
    if text[:1] == text[:1].upper():
        score += 5
    if _END_PUNCTUATION.search(text):
        score += 5
    if len(text.split(" ")) > 3:
        score += 10
    if _FUNCTION_WORD.search(text):
        score += 10
    return min(score, 100)


def analyze_vocabulary(text: str) -> str:
    """Beginner / Intermediate / Advanced from length and word variety."""
    words = text.split(" ")
    word_count = len(words)
    ratio = len(set(text.lower().split(" "))) / word_count
    if ratio > 0.8 and word_count > 10:
        return "Advanced"
    if ratio > 0.6 or word_count > 5:
        return "Intermediate"
    return "Beginner"
