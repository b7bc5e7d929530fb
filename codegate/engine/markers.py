"""Marker Parser - In-band quiz and artifact markers in model output.

Formats:
    <!--QUIZ:{"level":1,"question":"...","options":[...],"correctLabel":"A"}-->

    <!--ARTIFACT:{"id":"main","type":"code","title":"main.ts","language":"typescript"}-->
    ```typescript
    // code
    ```
    <!--/ARTIFACT-->

The text is parsed as it streams in, so every function here must accept
arbitrary prefixes of a response without raising.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Mapping

from pydantic import ValidationError

from ..models.enums import ArtifactKind
from ..models.schemas import Artifact, WireQuiz, utc_now

logger = logging.getLogger(__name__)

QUIZ_OPEN = "<!--QUIZ:"
QUIZ_CLOSE = "-->"
# Some model versions collapse the closing "--" into an em dash.
QUIZ_CLOSE_MALFORMED = "—>"

ARTIFACT_OPEN = "<!--ARTIFACT:"
ARTIFACT_CLOSE = "<!--/ARTIFACT-->"

_QUIZ_MARKER_RE = re.compile(r"<!--QUIZ:[\s\S]*?(?:-->|—>)")
_ARTIFACT_RE = re.compile(
    r"<!--ARTIFACT:\s*([\s\S]*?)\s*-->\s*```([\w+#.-]*)[^\n]*\r?\n([\s\S]*?)```\s*<!--/ARTIFACT-->"
)
_CODE_BLOCK_RE = re.compile(r"```([\w+#.-]*)[^\n]*\n([\s\S]*?)```")


# =============================================================================
# QUIZ MARKERS
# =============================================================================


class MarkerStatus(str, Enum):
    FOUND = "found"
    INCOMPLETE = "incomplete"  # Opening seen, closing not streamed yet
    ABSENT = "absent"


@dataclass(frozen=True)
class MarkerScan:
    """Result of scanning text for one quiz marker."""

    status: MarkerStatus
    payload: str | None = None
    start: int = -1
    end: int = -1


def _find_close(text: str, start: int) -> tuple[int, int] | None:
    """Earliest closing delimiter (canonical or malformed) at or after ``start``."""
    candidates = []
    for closing in (QUIZ_CLOSE, QUIZ_CLOSE_MALFORMED):
        index = text.find(closing, start)
        if index != -1:
            candidates.append((index, len(closing)))
    return min(candidates) if candidates else None


def find_quiz_marker(text: str, start: int = 0) -> MarkerScan:
    """Locate the first quiz marker at or after ``start``.

    Args:
        text: Full text accumulated so far
        start: Offset to start searching from

    Returns:
        MarkerScan with status FOUND (payload set), INCOMPLETE or ABSENT
    """
    open_index = text.find(QUIZ_OPEN, start)
    if open_index == -1:
        return MarkerScan(MarkerStatus.ABSENT)

    payload_start = open_index + len(QUIZ_OPEN)
    close = _find_close(text, payload_start)
    if close is None:
        return MarkerScan(MarkerStatus.INCOMPLETE, start=open_index)

    close_index, close_length = close
    return MarkerScan(
        MarkerStatus.FOUND,
        payload=text[payload_start:close_index],
        start=open_index,
        end=close_index + close_length,
    )


def _decode_payload(payload: str) -> dict | None:
    # Lines may be indented or wrapped mid-string; join them with one space.
    joined = " ".join(line.strip() for line in payload.splitlines() if line.strip())
    try:
        data = json.loads(joined)
    except json.JSONDecodeError as e:
        logger.debug(f"Quiz marker is not valid JSON: {e}")
        return None
    return data if isinstance(data, dict) else None


def parse_quiz_payload(payload: str) -> WireQuiz | None:
    """Decode and validate one marker payload.

    A payload is accepted only with a non-empty question, at least two options
    and a correct label that names one of them.
    """
    data = _decode_payload(payload)
    if data is None:
        return None

    try:
        wire = WireQuiz.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Quiz marker has invalid fields ({e.error_count()} errors)")
        return None

    if not wire.question.strip() or len(wire.options) < 2:
        logger.debug("Quiz marker rejected: empty question or fewer than two options")
        return None

    try:
        wire.to_quiz()
    except ValidationError:
        logger.debug("Quiz marker rejected: correct label does not match any option")
        return None

    return wire


def iter_quiz_markers(text: str) -> Iterator[WireQuiz]:
    """Yield every complete and valid quiz marker, in order."""
    position = 0
    while True:
        scan = find_quiz_marker(text, position)
        if scan.status is not MarkerStatus.FOUND:
            return
        wire = parse_quiz_payload(scan.payload or "")
        if wire is not None:
            yield wire
        position = scan.end


def parse_quiz_marker(text: str) -> WireQuiz | None:
    """Return the first valid quiz marker of ``text``.

    Returns None when no marker is present, when the marker is still
    incomplete (call again once more text has streamed in) or when the
    payload is malformed.

    Example:
        >>> text = '<!--QUIZ:{"question":"Why?","options":[{"label":"A","text":"x"},{"label":"B","text":"y"}],"correctLabel":"B"}-->'
        >>> parse_quiz_marker(text).correct_label
        'B'
        >>> parse_quiz_marker(text[:-3]) is None
        True
    """
    return next(iter_quiz_markers(text), None)


def remove_quiz_markers(text: str) -> str:
    """Remove complete quiz markers from display text."""
    return _QUIZ_MARKER_RE.sub("", text).strip()


# =============================================================================
# ARTIFACT MARKERS
# =============================================================================


@dataclass(frozen=True)
class ArtifactParse:
    artifacts: list[Artifact] = field(default_factory=list)
    content_without_artifacts: str = ""


def artifact_placeholder(title: str) -> str:
    return f"\n> **{title}** is shown in the artifact panel\n"


def parse_artifacts(text: str) -> ArtifactParse:
    """Extract complete artifact blocks and replace them with placeholders.

    Blocks whose metadata cannot be decoded are left untouched.
    """
    artifacts: list[Artifact] = []
    now = utc_now()

    def _replace(match: re.Match) -> str:
        meta_json, fence_language, code = match.groups()
        try:
            meta = json.loads(meta_json.strip().replace("\n", ""))
            artifact = Artifact(
                id=str(meta["id"]),
                kind=ArtifactKind(meta.get("type") or ArtifactKind.CODE.value),
                title=meta.get("title") or str(meta["id"]),
                content=code.strip(),
                language=meta.get("language") or fence_language or "text",
                created_at=now,
                updated_at=now,
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.debug(f"Failed to parse artifact metadata: {e}")
            return match.group(0)

        artifacts.append(artifact)
        return artifact_placeholder(artifact.title)

    content = _ARTIFACT_RE.sub(_replace, text)
    return ArtifactParse(artifacts=artifacts, content_without_artifacts=content)


def extract_code_blocks(text: str) -> list[Artifact]:
    """Legacy fallback: every fenced code block outside artifact markers."""
    outside = _ARTIFACT_RE.sub("", text)
    now = utc_now()
    artifacts = []
    for index, match in enumerate(_CODE_BLOCK_RE.finditer(outside), start=1):
        language = match.group(1) or "text"
        artifacts.append(
            Artifact(
                id=f"code-{index}",
                title=f"{language} #{index}",
                content=match.group(2).strip(),
                language=language,
                created_at=now,
                updated_at=now,
            )
        )
    return artifacts


def merge_artifacts(
    existing: Mapping[str, Artifact], new_artifacts: list[Artifact]
) -> dict[str, Artifact]:
    """Revise artifacts with a known ID, add the others.

    An artifact whose content and title did not change keeps its version.
    """
    result = dict(existing)
    for artifact in new_artifacts:
        current = result.get(artifact.id)
        if current is None:
            result[artifact.id] = artifact
        elif current.content != artifact.content or current.title != artifact.title:
            result[artifact.id] = current.revise(artifact.content, artifact.title)
    return result


# =============================================================================
# DISPLAY
# =============================================================================


def _cut_unterminated(text: str, opening: str, closing_finder) -> str:
    position = 0
    while True:
        open_index = text.find(opening, position)
        if open_index == -1:
            return text
        close = closing_finder(text, open_index + len(opening))
        if close is None:
            return text[:open_index]
        position = close[0] + close[1]


def _find_artifact_close(text: str, start: int) -> tuple[int, int] | None:
    index = text.find(ARTIFACT_CLOSE, start)
    return (index, len(ARTIFACT_CLOSE)) if index != -1 else None


def strip_incomplete_markers(text: str) -> str:
    """Cut any marker whose closing delimiter has not streamed in yet.

    Also drops a trailing partial opening such as ``<!--QU`` so that raw
    payload is never rendered mid-stream.
    """
    text = _cut_unterminated(text, QUIZ_OPEN, _find_close)
    text = _cut_unterminated(text, ARTIFACT_OPEN, _find_artifact_close)

    for opening in (QUIZ_OPEN, ARTIFACT_OPEN):
        for size in range(len(opening) - 1, 1, -1):
            if text.endswith(opening[:size]):
                return text[: len(text) - size]
    return text


def render_visible_text(text: str) -> str:
    """User-visible text: markers removed, artifacts replaced by placeholders."""
    text = strip_incomplete_markers(text)
    text = remove_quiz_markers(text)
    return parse_artifacts(text).content_without_artifacts.strip()
