"""
Question Response Parser

Turns the free-form reply of a text-generation model into Question objects.
The reply is expected to follow this grammar (markers are configurable, see
``ResponseGrammar``)::

    response   := block (BLANK_LINE+ block)*
    block      := line ("\\n" line)*
    question   := <line containing a question marker> ":" text
    option     := DIGITS "." text
                | <option marker> ... "." text
    answer     := <line containing an answer marker> ... INTEGER
    difficulty := <line containing a difficulty marker> ... level

Rules applied per block:

- A block is kept only if it contains a question marker, an option marker and
  an answer marker somewhere in its text.
- The question text is everything after the first colon (ASCII or full-width)
  of the first line containing a question marker.
- Option lines are the lines whose trimmed text starts with digits followed by
  a period, or with an option marker followed (eventually) by a period; the
  leading marker is stripped.
- The correct index is the trailing integer of the first line containing an
  answer marker; it defaults to 0 when no such integer exists.
- The difficulty is the first of beginner/intermediate/advanced found on the
  difficulty line, defaulting to intermediate.
- Blocks with an empty question, fewer than two options, or a correct index
  outside the options are discarded.

Parsing never raises; callers decide what to do with an empty result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .schemas import Difficulty, Question


# ============================================================================
# GRAMMAR
# ============================================================================

@dataclass(frozen=True)
class ResponseGrammar:
    """Marker aliases recognised for each structural field of a block."""

    question_markers: Tuple[str, ...] = ("Question", "问题")
    option_markers: Tuple[str, ...] = ("Option", "选项")
    answer_markers: Tuple[str, ...] = ("Correct answer", "Answer", "正确答案")
    difficulty_markers: Tuple[str, ...] = ("Difficulty", "难度")


DEFAULT_GRAMMAR = ResponseGrammar()

# Checked in this order; "intermediate" is also the default
DIFFICULTY_TOKENS: Tuple[Difficulty, ...] = (
    Difficulty.beginner,
    Difficulty.intermediate,
    Difficulty.advanced,
)

_BLOCK_SEPARATOR = re.compile(r"\n[ \t]*\n")
_NUMBERED_OPTION = re.compile(r"^\d+\s*\.\s*(.*)$")
_TRAILING_INT = re.compile(r"(-?\d+)\s*[.。]?\s*$")
_COLON = re.compile(r"[:：]")


# ============================================================================
# HELPERS
# ============================================================================

def _contains_any(text: str, markers: Tuple[str, ...]) -> bool:
    return any(m in text for m in markers)


def _first_index_with(lines: List[str], markers: Tuple[str, ...]) -> Optional[int]:
    for i, line in enumerate(lines):
        if _contains_any(line, markers):
            return i
    return None


def split_blocks(text: str) -> List[str]:
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    return [b.strip() for b in _BLOCK_SEPARATOR.split(normalized) if b.strip()]


def parse_question_text(line: Optional[str]) -> str:
    if line is None:
        return ""
    parts = _COLON.split(line, maxsplit=1)
    if len(parts) < 2:
        return ""
    return parts[1].strip()


def parse_option_line(line: str, grammar: ResponseGrammar = DEFAULT_GRAMMAR) -> Optional[str]:
    """Return the option text of ``line`` or ``None`` if it is not an option line."""
    stripped = line.strip()
    m = _NUMBERED_OPTION.match(stripped)
    if m:
        option = m.group(1).strip()
        return option or None
    for marker in grammar.option_markers:
        if stripped.startswith(marker) and "." in stripped:
            option = stripped.split(".", 1)[1].strip()
            return option or None
    return None


def parse_correct_index(line: Optional[str]) -> int:
    if line is None:
        return 0
    m = _TRAILING_INT.search(line.strip())
    if not m:
        return 0
    return int(m.group(1))


def parse_difficulty(text: Optional[str]) -> Difficulty:
    if not text:
        return Difficulty.intermediate
    lowered = text.lower()
    for token in DIFFICULTY_TOKENS:
        if token.value in lowered:
            return token
    return Difficulty.intermediate


# ============================================================================
# BLOCK AND RESPONSE PARSING
# ============================================================================

def is_question_block(block: str, grammar: ResponseGrammar = DEFAULT_GRAMMAR) -> bool:
    return (
        _contains_any(block, grammar.question_markers)
        and _contains_any(block, grammar.option_markers)
        and _contains_any(block, grammar.answer_markers)
    )


def parse_block(block: str, grammar: ResponseGrammar = DEFAULT_GRAMMAR) -> Optional[Question]:
    """Parse one block into a Question, or ``None`` if it is unusable."""
    if not is_question_block(block, grammar):
        return None
    lines = block.split("\n")

    q_idx = _first_index_with(lines, grammar.question_markers)
    a_idx = _first_index_with(lines, grammar.answer_markers)
    d_idx = _first_index_with(lines, grammar.difficulty_markers)
    structural = {i for i in (q_idx, a_idx, d_idx) if i is not None}

    question_text = parse_question_text(lines[q_idx] if q_idx is not None else None)
    options: List[str] = []
    for i, line in enumerate(lines):
        # Structural lines may themselves be numbered ("1. Question: ...")
        if i in structural:
            continue
        option = parse_option_line(line, grammar)
        if option is not None:
            options.append(option)

    correct_index = parse_correct_index(lines[a_idx] if a_idx is not None else None)
    difficulty = parse_difficulty(lines[d_idx] if d_idx is not None else None)

    if not question_text or len(options) < 2:
        return None
    if correct_index < 0 or correct_index >= len(options):
        return None
    return Question(
        question=question_text,
        options=options,
        correct_option_index=correct_index,
        difficulty=difficulty,
    )


def parse_questions(text: str, grammar: ResponseGrammar = DEFAULT_GRAMMAR) -> List[Question]:
    """Parse every usable question block in ``text``; may return an empty list."""
    if not text:
        return []
    questions: List[Question] = []
    for block in split_blocks(text):
        question = parse_block(block, grammar)
        if question is not None:
            questions.append(question)
    return questions
