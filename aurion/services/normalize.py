"""
Question normalization shared by every fact memory operation.
"""

import re

# Straight/curly quotes, guillemets, sentence punctuation, parentheses, hyphen.
PUNCTUATION = "?!.,;:()\"'`“”‘’«»‹›-"

_PUNCT_TABLE = str.maketrans({ch: " " for ch in PUNCTUATION})
_WHITESPACE = re.compile(r"\s+")


def normalize_question(text: str) -> str:
    """
    Canonical key for a question: case-folded, punctuation replaced by spaces,
    whitespace runs collapsed, trimmed.

    "Qui es-tu ?" and "qui  es tu" both give "qui es tu".
    """
    folded = (text or "").casefold().translate(_PUNCT_TABLE)
    return _WHITESPACE.sub(" ", folded).strip()
