"""Fallback Synthesizer - Deterministic quiz built from static inspection.

Used when the model response carries no recoverable quiz. The quiz asks
*why* a notable construct of the code is there; the correct option is
always "A" (shuffle before showing it).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from ..models.schemas import Artifact, Quiz, QuizOption
from .complexity import CONSTRUCT_PATTERNS

logger = logging.getLogger(__name__)

MAX_SNIPPET_LENGTH = 80


@dataclass(frozen=True)
class ConstructTemplate:
    """Quiz template for one kind of construct.

    ``question`` is formatted with ``{line}``, the first matching source line.
    ``options`` holds (text, explanation) pairs, the correct rationale first.
    """

    name: str
    pattern: re.Pattern
    question: str
    options: tuple[tuple[str, str], ...]
    hint: str
    # Lines matching this pattern are quoted first
    preferred: re.Pattern | None = None


# Priority order
CONSTRUCT_TEMPLATES = [
    ConstructTemplate(
        name="async_flow",
        pattern=CONSTRUCT_PATTERNS["async_flow"],
        question="Why does `{line}` use asynchronous control flow (async/await)?",
        options=(
            (
                "The call completes later, and awaiting it lets other work run without blocking",
                "Awaiting suspends only this function until the result is ready; the event loop keeps serving other tasks.",
            ),
            (
                "It makes the call run faster than a synchronous call",
                "Async does not speed up the operation itself; it only avoids blocking while waiting.",
            ),
            (
                "It is required to catch syntax errors in the call",
                "Syntax errors are reported before the code runs, regardless of async/await.",
            ),
        ),
        hint="Think about what the program does while it waits for the result.",
        preferred=re.compile(r"\bawait\b"),
    ),
    ConstructTemplate(
        name="concurrency",
        pattern=CONSTRUCT_PATTERNS["concurrency"],
        question="Why does `{line}` combine several pending operations into one?",
        options=(
            (
                "The operations are independent, so they can run concurrently and be awaited together",
                "Starting them together overlaps their waiting time instead of paying for each one in turn.",
            ),
            (
                "It guarantees the operations finish in the order they were listed",
                "The results are returned in order, but the operations themselves may finish in any order.",
            ),
            (
                "It retries any operation that fails",
                "Combinators do not retry; a failure is reported to the caller.",
            ),
        ),
        hint="Compare the total waiting time with and without the combinator.",
    ),
    ConstructTemplate(
        name="memoization",
        pattern=CONSTRUCT_PATTERNS["memoization"],
        question="Why is `{line}` memoized?",
        options=(
            (
                "To reuse the previous result while its inputs are unchanged and avoid recomputation",
                "Memoization caches the value and recomputes only when a dependency changes.",
            ),
            (
                "To reduce memory usage",
                "A memoized value is kept in a cache, which costs memory rather than saving it.",
            ),
            (
                "To make the code easier to read",
                "Memoization is a performance measure; it usually adds code rather than simplifying it.",
            ),
        ),
        hint="What would happen to this value on every render or call without the cache?",
    ),
    ConstructTemplate(
        name="error_handling",
        pattern=CONSTRUCT_PATTERNS["error_handling"],
        question="Why is `{line}` wrapped in structured error handling?",
        options=(
            (
                "So that a failure is handled in one place instead of crashing the caller",
                "The handler turns an unexpected failure into a controlled outcome, such as a message or a fallback value.",
            ),
            (
                "To make the code inside run faster",
                "Error handling has no effect on the speed of the successful path.",
            ),
            (
                "Because the language requires it around every function call",
                "Handling is optional; it is added where a failure is expected and must be contained.",
            ),
        ),
        hint="Consider what the user would see if this operation failed.",
    ),
    ConstructTemplate(
        name="reduce",
        pattern=CONSTRUCT_PATTERNS["reduce"],
        question="Why does `{line}` use a reduce/fold?",
        options=(
            (
                "To combine every element of a collection into a single accumulated value",
                "A reduce carries an accumulator through the collection and returns the final result.",
            ),
            (
                "To produce a new collection with the same number of elements",
                "That is what a map does; a reduce collapses the collection into one value.",
            ),
            (
                "To sort the collection",
                "Sorting needs a comparison, not an accumulator.",
            ),
        ),
        hint="Look at what the accumulator holds after the last element.",
    ),
    ConstructTemplate(
        name="optional_chaining",
        pattern=CONSTRUCT_PATTERNS["optional_chaining"],
        question="Why does `{line}` use optional chaining or a nullish default?",
        options=(
            (
                "The value may be missing, and the expression must not fail when it is",
                "The operator short-circuits on null or undefined instead of raising an error.",
            ),
            (
                "To convert the value to a string",
                "The operator only guards against missing values; it does not convert them.",
            ),
            (
                "To make the property private",
                "Visibility is not affected by how a property is accessed.",
            ),
        ),
        hint="Which values could be absent at this point?",
    ),
]

_DECLARATION_RE = re.compile(
    r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?"
    r"(?:function\s*\*?\s*|class\s+|def\s+|(?:const|let|var)\s+)([A-Za-z_$][\w$]*)",
    re.MULTILINE,
)

_GENERIC_OPTIONS = (
    (
        "It gives one clearly named unit a single responsibility that callers can rely on",
        "Keeping the responsibility in one place makes the unit easy to reuse, test and change.",
    ),
    (
        "It is the shortest way to write the code",
        "Brevity is not the goal; the structure exists to keep the responsibility clear.",
    ),
    (
        "It is required by the language for the code to compile",
        "The language accepts many structures; this one was chosen for clarity.",
    ),
)


def _first_matching_line(source: str, pattern: re.Pattern) -> str | None:
    for line in source.splitlines():
        if pattern.search(line):
            snippet = line.strip()
            if len(snippet) > MAX_SNIPPET_LENGTH:
                snippet = snippet[: MAX_SNIPPET_LENGTH - 3] + "..."
            return snippet
    return None


def _options(pairs: tuple[tuple[str, str], ...]) -> tuple[QuizOption, ...]:
    return tuple(
        QuizOption(label=label, text=text, explanation=explanation)
        for label, (text, explanation) in zip("ABC", pairs)
    )


def find_constructs(source: str) -> list[tuple[ConstructTemplate, str]]:
    """Every construct template matching ``source``, in priority order."""
    found = []
    for template in CONSTRUCT_TEMPLATES:
        line = None
        if template.preferred is not None:
            line = _first_matching_line(source, template.preferred)
        if line is None:
            line = _first_matching_line(source, template.pattern)
        if line is not None:
            found.append((template, line))
    return found


def synthesize_quiz(
    source: Artifact | str,
    level: int = 0,
    total_questions: int | None = None,
) -> Quiz:
    """Build a quiz from the code alone. Never fails.

    Successive levels cycle through the matched constructs so that an
    artifact with several constructs does not get the same question twice.

    Args:
        source: Artifact or raw source text
        level: 0-based level of the quiz
        total_questions: Question count to attach to the quiz, if known

    Returns:
        Quiz whose correct option is "A"
    """
    if isinstance(source, Artifact):
        code, language = source.content, source.language
    else:
        code, language = source or "", None

    constructs = find_constructs(code)
    if constructs:
        template, line = constructs[level % len(constructs)]
        logger.debug(f"Synthesized '{template.name}' quiz for level {level}")
        return Quiz(
            level=level,
            question=template.question.format(line=line),
            options=_options(template.options),
            correct_label="A",
            hint=template.hint,
            code_snippet=line,
            code_language=language,
            total_questions=total_questions,
        )

    match = _DECLARATION_RE.search(code)
    if match:
        question = f"Why is `{match.group(1)}` designed this way?"
        hint = f"Think about what `{match.group(1)}` is responsible for."
    else:
        question = "Why is this code structured the way it is?"
        hint = "Think about what each part of the code is responsible for."

    logger.debug(f"Synthesized generic quiz for level {level}")
    return Quiz(
        level=level,
        question=question,
        options=_options(_GENERIC_OPTIONS),
        correct_label="A",
        hint=hint,
        code_language=language,
        total_questions=total_questions,
    )
