"""Generation Templates - Prompts asking the model for artifacts and quizzes."""

import json

from ..models.schemas import Artifact, level_to_wire

# =============================================================================
# SYSTEM PROMPT
# =============================================================================

GENERATION_SYSTEM_PROMPT = """You are a programming mentor. You write the code the learner asks for, and
you make sure they understand it before they can copy it.

OUTPUT RULES:
1. Wrap every code file in an artifact block:
<!--ARTIFACT:{"id":"main","type":"code","title":"main.ts","language":"typescript"}-->
```typescript
// code
```
<!--/ARTIFACT-->
   Reuse the same id when you revise a file.
2. After the code, ask ONE multiple-choice question about WHY the code is
   written the way it is, as a quiz marker on its own line:
<!--QUIZ:{"level":1,"totalQuestions":3,"question":"...","options":[{"label":"A","text":"...","explanation":"..."},{"label":"B","text":"...","explanation":"..."},{"label":"C","text":"...","explanation":"..."}],"correctLabel":"A","hint":"..."}-->
3. Levels start at 1. Ask about design intent and trade-offs, never
   "do you understand this code?".
4. Every wrong option must be a plausible rationale, not a simple negation.
5. List the correct option first (label "A"); options are shuffled before display.
6. Do not show the correct answer outside the marker."""

# =============================================================================
# PROMPT TEMPLATES
# =============================================================================

GENERATION_PROMPT = """{request}

Plan for about {recommended_questions} comprehension questions for this code
(set "totalQuestions" accordingly; more for complex code, fewer for simple code)."""


QUIZ_REQUEST_PROMPT = """Ask comprehension question {level} of {total} about the artifact "{title}".

```{language}
{content}
```

Focus on a construct the previous questions did not cover.
Answer ONLY with the quiz marker:
<!--QUIZ:{example}-->"""


def build_generation_prompt(request: str, recommended_questions: int) -> str:
    """User prompt for a generation request with the recommended quiz count."""
    return GENERATION_PROMPT.format(
        request=request.strip(),
        recommended_questions=recommended_questions,
    )


def build_quiz_request_prompt(artifact: Artifact, level: int, total: int) -> str:
    """Prompt asking for the quiz of a 0-based ``level``.

    The prompt and the example marker use 1-based levels.
    """
    wire_level = level_to_wire(level)
    example = json.dumps(
        {
            "level": wire_level,
            "totalQuestions": total,
            "question": "...",
            "options": [
                {"label": "A", "text": "...", "explanation": "..."},
                {"label": "B", "text": "...", "explanation": "..."},
                {"label": "C", "text": "...", "explanation": "..."},
            ],
            "correctLabel": "A",
            "hint": "...",
        },
        ensure_ascii=False,
    )
    return QUIZ_REQUEST_PROMPT.format(
        level=wire_level,
        total=total,
        title=artifact.title,
        language=artifact.language,
        content=artifact.content,
        example=example,
    )
