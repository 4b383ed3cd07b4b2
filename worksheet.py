"""Worksheet generation — practice questions as LaTeX.

Questions come from the configured LLM, guided by the curriculum entry for
the requested topic. Without an API key a deterministic sample of linear
equations is produced instead. ``latex_to_plain_text`` turns the LaTeX list
into plain question strings for clients that cannot render math.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from ai_resilience import resilient_llm_call

logger = logging.getLogger(__name__)

WORKSHEET_MAX_TOKENS = 1500
MAX_QUESTIONS = 20

_ENUMERATE_ENV = re.compile(r"\\begin\{enumerate\}|\\end\{enumerate\}")
_PLAIN_TEXT_RULES = [
    (re.compile(r"\\frac\{([^}]+)\}\{([^}]+)\}"), r"(\1)/(\2)"),
    (re.compile(r"\\sqrt\{([^}]+)\}"), r"sqrt(\1)"),
    (re.compile(r"\$([^$]+)\$"), r"\1"),
    (re.compile(r"\\cdot"), "×"),
    (re.compile(r"\\times"), "×"),
    (re.compile(r"\\div"), "÷"),
    (re.compile(r"\\degrees"), "°"),
    (re.compile(r"\\pi"), "π"),
]


@dataclass
class WorksheetRequest:
    topic: str = "Equations"
    difficulty: str = "medium"
    question_count: int = 5
    year_level: int = 7

    @classmethod
    def from_json(cls, data: dict | None) -> WorksheetRequest:
        data = data if isinstance(data, dict) else {}
        try:
            count = int(data.get("questionCount") or 5)
        except (TypeError, ValueError):
            count = 5
        try:
            year = int(data.get("yearLevel") or 7)
        except (TypeError, ValueError):
            year = 7
        return cls(
            topic=str(data.get("topic") or "Equations"),
            difficulty=str(data.get("difficulty") or "medium"),
            question_count=max(1, min(MAX_QUESTIONS, count)),
            year_level=year,
        )


def sample_worksheet(question_count: int) -> str:
    """Offline worksheet: ``question_count`` two-step linear equations."""
    items = [f"\\item Solve for $x$: $2x + {i + 3} = {i + 13}$" for i in range(question_count)]
    return "\\begin{enumerate}\n" + "\n".join(items) + "\n\\end{enumerate}"


def build_worksheet_prompt(req: WorksheetRequest, curriculum=None) -> str:
    guidance = ""
    entry = curriculum.find_topic_by_name(req.topic) if curriculum is not None else None
    if entry is not None:
        guidance = (
            f"Focus on: {', '.join(entry.subtopics[:3])}. "
            f"Use verbs: {', '.join(entry.allowed_verbs[:4])}."
        )

    return (
        f"Create {req.question_count} {req.difficulty} {req.topic} questions for NSW Year "
        f"{req.year_level} curriculum.\n"
        f"{guidance}\n"
        "Return ONLY valid LaTeX using enumerate environment like:\n\n"
        "\\begin{enumerate}\n"
        "  \\item Solve for $x$: $2x + 5 = 15$\n"
        "  \\item Find the area of a rectangle with length $8$ cm and width $5$ cm\n"
        "  \\item Simplify: $\\frac{3}{4} + \\frac{1}{8}$\n"
        "  \\item Calculate: $\\sqrt{144} + 3^2$\n"
        "\\end{enumerate}\n\n"
        "Rules:\n"
        "- Use proper LaTeX math notation with $ for inline math\n"
        f"- Keep questions curriculum-appropriate for Year {req.year_level}\n"
        "- Use \\item for each question\n"
        "- No answers, just questions\n"
        "- Use proper LaTeX: \\frac{a}{b}, \\sqrt{x}, x^2, \\cdot for multiplication"
    )


def generate_worksheet_latex(
    req: WorksheetRequest,
    curriculum=None,
    provider: str = "claude",
    model: str = "claude-3-5-haiku-20241022",
    api_key: str = "",
    attempts: int = 1,
) -> str:
    """LaTeX ``enumerate`` block of worksheet questions.

    Provider errors propagate to the caller.
    """
    if not api_key:
        return sample_worksheet(req.question_count)

    result = resilient_llm_call(
        provider=provider,
        model=model,
        messages=[{"role": "user", "content": build_worksheet_prompt(req, curriculum)}],
        max_tokens=WORKSHEET_MAX_TOKENS,
        api_key=api_key,
        attempts=attempts,
    )
    logger.info("Generated %s worksheet on %s (%d tokens)", req.difficulty, req.topic, result.total_tokens)
    return result.text.strip()


def latex_to_plain_text(latex: str) -> list[str]:
    """One plain-text question per ``\\item``."""
    questions = []
    for item in (latex or "").split("\\item"):
        content = _ENUMERATE_ENV.sub("", item.strip()).strip()
        for pattern, replacement in _PLAIN_TEXT_RULES:
            content = pattern.sub(replacement, content)
        content = content.strip()
        if content:
            questions.append(content)
    return questions
