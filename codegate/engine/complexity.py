"""Complexity Estimator - Recommend how many quizzes an artifact deserves.

The score is a sum of three parts:

- size: a step function of the non-blank line count
- constructs: one point per kind of non-trivial construct found
- density: bonus when definitions are packed closely together

The result is advisory; a count stated by the model takes precedence.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

MIN_QUESTIONS = 1
MAX_QUESTIONS = 7

# (minimum line count, points), highest first
_SIZE_STEPS = [(200, 4), (100, 3), (50, 2), (20, 1)]

CONSTRUCT_PATTERNS: dict[str, re.Pattern] = {
    "async_flow": re.compile(r"\basync\b|\bawait\b"),
    "memoization": re.compile(
        r"\buse(?:Memo|Callback)\b|\bmemo\(|@(?:functools\.)?(?:lru_cache|cache)\b"
    ),
    "reduce": re.compile(r"\.reduce\(|\breduce\(|\bfold(?:Left|Right|l|r)?\("),
    "error_handling": re.compile(r"\btry\s*[{:]|\bcatch\s*[({]|\.catch\(|\bexcept\b"),
    "concurrency": re.compile(
        r"Promise\.(?:all|allSettled|race|any)\(|asyncio\.(?:gather|wait|TaskGroup)\b"
    ),
    "type_declarations": re.compile(
        r"\bclass\s+\w+|\binterface\s+\w+|\w<[A-Z]\w*(?:\s*,\s*[A-Z]\w*)*>|\bTypeVar\("
    ),
    "optional_chaining": re.compile(r"\?\.|\?\?"),
}

_DEFINITION_RE = re.compile(
    r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?"
    r"(?:function\b|def\s|class\s|interface\s|type\s+\w+\s*="
    r"|(?:const|let|var)\s+\w+\s*=\s*(?:async\s*)?(?:\([^)]*\)|\w+)\s*=>)",
    re.MULTILINE,
)


@dataclass(frozen=True)
class ComplexityReport:
    """Breakdown of a complexity score."""

    line_count: int = 0
    definition_count: int = 0
    size_points: int = 0
    constructs: tuple[str, ...] = field(default_factory=tuple)
    density_points: int = 0

    @property
    def score(self) -> int:
        return self.size_points + len(self.constructs) + self.density_points

    @property
    def question_count(self) -> int:
        return questions_for_score(self.score)


def _size_points(line_count: int) -> int:
    for minimum, points in _SIZE_STEPS:
        if line_count >= minimum:
            return points
    return 0


def _density_points(definition_count: int, line_count: int) -> int:
    if definition_count < 3 or line_count == 0:
        return 0
    density = definition_count / line_count
    if density >= 0.15:
        return 2
    if density >= 0.08:
        return 1
    return 0


def questions_for_score(score: int) -> int:
    """Map a complexity score to a question count in [1, 7]."""
    if score < 1:
        return 1
    if score <= 2:
        return 2
    if score <= 4:
        return 3
    if score <= 6:
        return 4
    if score <= 9:
        return 5
    return min(MAX_QUESTIONS, 5 + (score - 10) // 3)


def score_complexity(source: str) -> ComplexityReport:
    """Score a source text and return the full breakdown."""
    lines = [line for line in source.splitlines() if line.strip()]
    if not lines:
        return ComplexityReport()

    definitions = len(_DEFINITION_RE.findall(source))
    constructs = tuple(
        name for name, pattern in CONSTRUCT_PATTERNS.items() if pattern.search(source)
    )
    return ComplexityReport(
        line_count=len(lines),
        definition_count=definitions,
        size_points=_size_points(len(lines)),
        constructs=constructs,
        density_points=_density_points(definitions, len(lines)),
    )


def estimate_question_count(source: str) -> int:
    """Recommended number of quizzes for ``source`` (1 for blank input).

    Example:
        >>> estimate_question_count("")
        1
        >>> estimate_question_count("const x = 1;")
        1
    """
    return score_complexity(source).question_count
