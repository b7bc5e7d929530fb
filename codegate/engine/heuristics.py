"""Heuristic Extractor - Recover quizzes from loosely formatted model text.

Used when the response carries no quiz marker. Supported option layouts:

1. One option per line, optionally bulleted:  "A) text\\nB) text"  /  "- A. text"
2. Several options on one line:                "A) text B) text C) text"
3. Parenthesised labels:                       "(A) text\\n(B) text"

Labels A-D may be half-width or full-width ("Ａ）text"); separators are
``) ） . : ：``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from ..models.schemas import Quiz, QuizOption, normalize_label

logger = logging.getLogger(__name__)

FALLBACK_QUESTION = (
    "Sorry, the question text could not be recovered. "
    "Choose the option that best describes the code."
)

MIN_OPTIONS = 2
MAX_OPTIONS = 4
MAX_INLINE_OPTION_LENGTH = 200

_LABEL = "[A-DＡ-Ｄ]"
_SEP = "[)）.:：]"
_BULLET = r"[ \t\-•*]*"

_LINE_RE = re.compile(rf"^{_BULLET}({_LABEL}){_SEP}[ \t]*(.+)$", re.MULTILINE)
_INLINE_RE = re.compile(
    rf"(?<![A-Za-z0-9(（])({_LABEL}){_SEP}[ \t]*(.*?)(?=[ \t]*(?<![A-Za-z0-9(（]){_LABEL}{_SEP}|$)",
    re.MULTILINE,
)
_PAREN_RE = re.compile(rf"^{_BULLET}[(（]({_LABEL})[)）][ \t]*(.+)$", re.MULTILINE)

# Text allowed before inline options on the same line
_INLINE_LEAD_RE = re.compile(r"[?？:：】\]]$")

# (name, regex) in priority order
_OPTION_PATTERNS = [
    ("line", _LINE_RE),
    ("inline", _INLINE_RE),
    ("paren", _PAREN_RE),
]

_BRACKET_HEADER_RE = re.compile(r"^[【\[]([^】\]\n]+)[】\]]\s*")
_SENTENCE_BOUNDARY_RE = re.compile(r"[。！!]|[.?？](?=\s)")

# Boundaries between numbered questions, tried in order
_QUESTION_SPLIT_PATTERNS = [
    # "Question 1:", "質問1：", "問題 2."
    re.compile(r"(?=(?<![A-Za-z])(?:Question|質問|問題|問)\s*[1-9０-９][0-9０-９]*[\s:：.．)])", re.IGNORECASE),
    # "【問1】", "[Question 2]", "[Q3]"
    re.compile(r"(?=[【\[](?:Question|Q|質問|問題|問)\s*[1-9０-９][0-9０-９]*[】\]])", re.IGNORECASE),
    # "Q1:", "Q-2.", "q 3)"
    re.compile(r"(?=(?<![A-Za-z])Q\s*-?\s*[1-9][0-9]*[\s:：.．)])", re.IGNORECASE),
    # "2. Some question" directly followed by an option line
    re.compile(r"(?=\n[ \t]*[1-9][0-9]*[.．:：)][ \t]*[^\dA-Da-d\s].*\n[ \t]*[A-Da-d][)）.:：])"),
]

_OPTION_LINE_RE = re.compile(r"^\s*([A-Da-dＡ-Ｄａ-ｄ])[)）.:：]\s*\S")


# =============================================================================
# RESULTS
# =============================================================================


@dataclass(frozen=True)
class ExtractedQuiz:
    """Quiz recovered from free text (the correct answer is unknown)."""

    question: str
    options: tuple[QuizOption, ...]
    content_without_options: str
    pattern: str = "line"

    def to_quiz(self, level: int, correct_label: str = "A", hint: str | None = None) -> Quiz:
        """Convert to an internal quiz.

        The generation prompt asks the model to list the correct option
        first, so ``correct_label`` defaults to "A"; shuffle afterwards.
        """
        return Quiz(
            level=level,
            question=self.question,
            options=self.options,
            correct_label=correct_label,
            hint=hint,
        )


@dataclass(frozen=True)
class MultipleExtraction:
    quizzes: list[ExtractedQuiz] = field(default_factory=list)
    content_without_quizzes: str = ""


# =============================================================================
# SINGLE QUIZ
# =============================================================================


def _accept_matches(name: str, matches: list[re.Match], content: str) -> bool:
    if not MIN_OPTIONS <= len(matches) <= MAX_OPTIONS:
        return False

    labels = [normalize_label(m.group(1)) for m in matches]
    if len(set(labels)) != len(labels):
        return False

    if name == "inline":
        # Empty or very long texts mean the line was mis-segmented
        texts = [m.group(2).strip() for m in matches]
        if not all(0 < len(t) < MAX_INLINE_OPTION_LENGTH for t in texts):
            return False
        # Labels in running prose ("plan A. ... plan B.") are not options
        line_start = content.rfind("\n", 0, matches[0].start()) + 1
        lead = content[line_start : matches[0].start()].strip(" \t-•*")
        if lead and not _INLINE_LEAD_RE.search(lead):
            return False

    return True


def extract_question(text_before_options: str) -> str:
    """Recover the question text that precedes the options.

    Tries, in order: a bracket header (``【Level 1】...`` / ``[Q1] ...``)
    opening the last paragraph, the last sentence ending with a question mark,
    and finally ``FALLBACK_QUESTION``.
    """
    before = text_before_options.strip()
    if not before:
        return FALLBACK_QUESTION

    last_paragraph = re.split(r"\n\s*\n", before)[-1].strip()
    header = _BRACKET_HEADER_RE.match(last_paragraph)
    if header:
        rest = " ".join(last_paragraph[header.end():].split())
        return rest or header.group(1).strip()

    for line in reversed(before.splitlines()):
        index = max(line.rfind("?"), line.rfind("？"))
        if index == -1:
            continue
        segment = line[: index + 1]
        start = 0
        for boundary in _SENTENCE_BOUNDARY_RE.finditer(segment[:-1]):
            start = boundary.end()
        sentence = segment[start:].strip().lstrip("#>*- ").strip()
        if sentence:
            return sentence

    return FALLBACK_QUESTION


def _remove_options(content: str, matches: list[re.Match]) -> str:
    before = content[: matches[0].start()]
    after = content[matches[-1].end():]

    before = re.sub(r"\n{2,}$", "\n", before)
    after = re.sub(r"^\n+", "\n", after)

    result = (before + after).strip()
    return re.sub(r"\n{3,}", "\n\n", result)


def extract_quiz_options(content: str) -> ExtractedQuiz | None:
    """Extract one quiz from free text.

    Args:
        content: Text without a quiz marker

    Returns:
        ExtractedQuiz, or None when no pattern yields 2-4 distinct options
    """
    for name, regex in _OPTION_PATTERNS:
        matches = list(regex.finditer(content))
        if not _accept_matches(name, matches, content):
            continue

        options = tuple(
            QuizOption(label=normalize_label(m.group(1)), text=m.group(2).strip())
            for m in matches
        )
        question = extract_question(content[: matches[0].start()])
        logger.debug(f"Heuristic quiz extracted with '{name}' pattern ({len(options)} options)")
        return ExtractedQuiz(
            question=question,
            options=options,
            content_without_options=_remove_options(content, matches),
            pattern=name,
        )

    return None


# =============================================================================
# MULTIPLE QUIZZES
# =============================================================================


def split_by_option_sets(content: str) -> list[str]:
    """Split text where label "A" re-occurs after two or more options.

    Non-option lines that follow the last option of a block (typically the
    next question) move to the new block.
    """
    sections: list[str] = []
    current: list[str] = []
    option_count = 0
    last_option_index = -1

    for line in content.split("\n"):
        match = _OPTION_LINE_RE.match(line)
        if match:
            if normalize_label(match.group(1)) == "A" and option_count >= 2:
                cut = last_option_index + 1
                sections.append("\n".join(current[:cut]))
                current = current[cut:]
                option_count = 0
            current.append(line)
            option_count += 1
            last_option_index = len(current) - 1
        else:
            current.append(line)

    if current:
        sections.append("\n".join(current))

    return [s for s in sections if s.strip()]


def split_quiz_sections(content: str) -> list[str]:
    """Split text into candidate quiz sections (numbered boundaries first)."""
    for pattern in _QUESTION_SPLIT_PATTERNS:
        sections = [s for s in pattern.split(content) if s.strip()]
        if len(sections) >= 2:
            return sections
    return split_by_option_sets(content)


def extract_multiple_quizzes(content: str) -> MultipleExtraction | None:
    """Extract every quiz of a response that lists several option sets.

    Sections that do not parse as a quiz are kept as narrative; the
    narrative and the quiz sections without their options are joined back
    (blank-line separated) into ``content_without_quizzes``.
    """
    sections = split_quiz_sections(content)

    if len(sections) < 2:
        single = extract_quiz_options(content)
        if single is None:
            return None
        return MultipleExtraction(
            quizzes=[single], content_without_quizzes=single.content_without_options
        )

    quizzes: list[ExtractedQuiz] = []
    narrative: list[str] = []
    for section in sections:
        quiz = extract_quiz_options(section)
        if quiz is None:
            narrative.append(section.strip())
            continue
        quizzes.append(quiz)
        if quiz.content_without_options:
            narrative.append(quiz.content_without_options)

    if not quizzes:
        return None

    logger.debug(f"Heuristic extraction found {len(quizzes)} quizzes in {len(sections)} sections")
    return MultipleExtraction(
        quizzes=quizzes,
        content_without_quizzes="\n\n".join(p for p in narrative if p).strip(),
    )
