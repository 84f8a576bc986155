"""
Reply shaping: length constraints before generation, cleanup after.
"""

import re
from dataclasses import dataclass

from ..services import ollama

_TRAILING_SPACES = re.compile(r"[ \t]+$", re.MULTILINE)
_BLANK_RUNS = re.compile(r"\n{3,}")
_SENTENCE_END = re.compile(r"[.!?…]$")

CONTINUE_PROMPT = (
    "Termine la dernière réponse sans répéter le début. "
    "Conclus proprement en 1–2 phrases."
)


@dataclass(frozen=True)
class LengthConstraint:
    instruction: str
    multiplier: float


def length_constraint(length: str = "medium") -> LengthConstraint:
    """Prompt suffix + num_predict multiplier for short/medium/long replies."""
    value = (length or "medium").lower()
    if value == "short":
        return LengthConstraint("\nRéponds en 1–3 phrases maximum.", 0.6)
    if value == "long":
        return LengthConstraint("\nRéponds de façon détaillée mais structurée (≈8–12 phrases).", 1.4)
    return LengthConstraint("", 1.0)


def tidy(text: str) -> str:
    text = _TRAILING_SPACES.sub("", text or "")
    return _BLANK_RUNS.sub("\n\n", text).strip()


def seems_cut(text: str) -> bool:
    """True when the reply stops mid-sentence."""
    t = (text or "").strip()
    return bool(t) and not _SENTENCE_END.search(t)


async def ensure_complete(text: str, system: str, model: str) -> str:
    """Ask the model for one short continuation if the reply was cut off."""
    reply = tidy(text)
    if not seems_cut(reply):
        return reply
    cont = await ollama.generate(
        CONTINUE_PROMPT, system, model=model,
        options={"num_predict": 200, "temperature": 0.3},
    )
    return tidy(f"{reply} {cont}")
