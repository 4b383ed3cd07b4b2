"""Topic Router — maps a student's message to a curriculum topic and gates scope.

Routing order:
    1. Follow-up continuity (short replies keep the prior conversation's topic)
    2. Curriculum catalog scan (first entry with any keyword hit wins)
    3. Fallback keyword table (highest hit count wins, ties keep the first)
    4. DEFAULT_TOPIC

Nothing here raises on malformed input; every path yields a label or result.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from curriculum import Curriculum
    from session_store import ConversationRecord

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "Mathematics"
DEFINITION_TOPIC = "Algebra & Equations"
FOLLOW_UP_MAX_LENGTH = 20

FOLLOW_UP_PATTERNS = [
    re.compile(r"^\d+$"),
    re.compile(r"^(yes|no|ok|right|correct|wrong)$"),
    re.compile(r"^(we|do|can|should|will|then|next|now|it|this|that)"),
    re.compile(r"^[+\-*/=().\d\s]+$"),
    re.compile(r"^(not sure|don't know|confused|help|what|how)"),
    re.compile(r"^(i think|maybe|perhaps|could it be)"),
]

FALLBACK_TOPIC_PATTERNS: dict[str, list[str]] = {
    "Algebra & Equations": ["equation", "solve", "x", "y", "variable", "algebra", "=",
                            "unknown", "coefficient", "term", "constant"],
    "Geometry": ["angle", "triangle", "area", "perimeter", "shape", "circle", "rectangle"],
    "Fractions & Percentages": ["fraction", "decimal", "percentage", "/", "percent", "ratio"],
    "Number Operations": ["add", "subtract", "multiply", "divide", "division",
                          "multiplication", "times", "plus", "minus"],
    "Indices": ["power", "exponent", "square", "cube", "^", "index", "indices"],
    "Analysing Data": ["data", "graph", "mean", "median", "average", "mode", "range"],
    "Number Theory": ["prime", "factor", "multiple", "divisible", "remainder"],
}

DEFINITION_KEYWORDS = ["what is", "define", "meaning of", "explain", "definition"]

YEAR7_TERMS = [
    "coefficient", "variable", "constant", "term", "expression", "equation",
    "factor", "multiple", "prime", "fraction", "decimal", "percentage",
    "ratio", "area", "perimeter", "angle", "parallel", "perpendicular",
    "mean", "median", "mode", "range", "probability",
]

HOMEWORK_HELP_PHRASES = ["help with homework", "homework help", "need help with", "stuck on homework"]
OFF_TOPIC_PHRASES = ["religion", "politics", "dating", "video games", "movies", "do my homework for me"]
MATH_KEYWORDS = [
    "math", "equation", "solve", "calculate", "find", "answer", "result",
    "x", "y", "z", "n", "+", "-", "=", "*", "/", "^",
    "formula", "problem", "number", "digit", "value", "solution",
    "add", "subtract", "multiply", "divide", "division", "multiplication", "addition", "subtraction",
    "fraction", "decimal", "percent", "ratio", "proportion", "area", "perimeter", "angle",
    "triangle", "square", "circle", "graph", "plot", "data", "mean", "median", "mode",
    "algebra", "geometry", "statistics", "probability", "factor", "multiple", "prime",
    "how", "what", "why", "when", "where", "which", "can you", "help",
    "stuck", "confused", "understand", "explain", "show", "work out",
]
SHORT_FOLLOW_UP_WORDS = ["it", "this", "that", "we", "do", "can", "should", "will", "then", "next", "now"]
_MATH_SYMBOLS = re.compile(r"[+\-*/=^()]")
_DIGIT = re.compile(r"\d")


@dataclass
class ScopeResult:
    in_scope: bool
    refusal: str | None = None
    definition_request: str | None = None


@dataclass
class Definition:
    socratic: str
    context: str


YEAR7_DEFINITIONS: dict[str, Definition] = {
    "coefficient": Definition(
        socratic="Great question! Look at this expression: 3x + 5. What number do you see in front "
                 "of the x? What do you think that number might be called?",
        context="In algebra, it's the number that multiplies the variable",
    ),
    "variable": Definition(
        socratic="Think about this: if you have x apples and I don't tell you how many x is, what "
                 "would you call x? What makes it different from a regular number?",
        context="It's a letter that represents an unknown number that can change",
    ),
    "constant": Definition(
        socratic="In the expression 2x + 7, one part changes when x changes, but what about the 7? "
                 "What stays the same no matter what x equals?",
        context="It's a number that doesn't change in an expression",
    ),
    "term": Definition(
        socratic="If I write 3x + 5 - 2y, I can break this into separate pieces. How many separate "
                 "pieces do you see? What would you call each piece?",
        context="Each separate part of an expression, connected by + or - signs",
    ),
    "factor": Definition(
        socratic="What numbers can you multiply together to get 12? What would you call those "
                 "numbers that multiply to make 12?",
        context="Numbers that multiply together to give another number",
    ),
    "multiple": Definition(
        socratic="If you count by 3s: 3, 6, 9, 12... what would you call these numbers in relation to 3?",
        context="Numbers you get when you multiply by whole numbers",
    ),
}


def is_follow_up(message: str) -> bool:
    """Short or formulaic replies that continue the current line of questioning."""
    msg = (message or "").lower().strip()
    return len(msg) < FOLLOW_UP_MAX_LENGTH or any(p.search(msg) for p in FOLLOW_UP_PATTERNS)


def resolve_topic(
    message: str,
    curriculum: Curriculum,
    prior: ConversationRecord | None = None,
) -> str:
    """Return the topic label for ``message``.

    A prior conversation with a concrete subject keeps its topic for
    follow-up replies.
    """
    msg = (message or "").lower()

    if prior is not None and prior.subject != DEFAULT_TOPIC and is_follow_up(msg):
        logger.debug("Follow-up detected, keeping topic %s", prior.subject)
        return prior.subject

    for entry in curriculum.topic_catalog:
        if any(keyword and keyword in msg for keyword in entry.keywords()):
            logger.debug("Curriculum match: %s", entry.topic)
            return entry.topic

    best_topic = DEFAULT_TOPIC
    best_score = 0
    for topic, keywords in FALLBACK_TOPIC_PATTERNS.items():
        score = sum(1 for k in keywords if k in msg)
        if score > best_score:
            best_topic, best_score = topic, score
    return best_topic


def check_scope(message: str, topic: str, curriculum: Curriculum) -> ScopeResult:
    """Gate ``message``/``topic`` against the Year 7 curriculum.

    Definition requests for known Year 7 vocabulary are always in scope and
    take precedence over the catalog check.
    """
    msg = (message or "").lower()

    if any(k in msg for k in DEFINITION_KEYWORDS):
        vocabulary = curriculum.glossary_terms() + YEAR7_TERMS
        term = next((t for t in vocabulary if t.lower() in msg), None)
        if term:
            logger.info("Definition request for Year 7 term: %s", term)
            return ScopeResult(in_scope=True, definition_request=term)

    if not curriculum.has_topic(topic or DEFAULT_TOPIC):
        return ScopeResult(
            in_scope=False,
            refusal=curriculum.refusal(
                "basic Year 7 concepts",
                "a Year 7 topic like fractions or basic algebra",
            ),
        )

    return ScopeResult(in_scope=True)


def get_definition(term: str) -> Definition | None:
    """Canned Socratic prompt for a Year 7 term, or None."""
    return YEAR7_DEFINITIONS.get((term or "").lower())


def is_on_topic(message: str) -> bool:
    """Secondary keyword filter for clearly non-mathematical chatter."""
    msg = (message or "").lower()

    if any(p in msg for p in HOMEWORK_HELP_PHRASES):
        return True
    if any(k in msg for k in OFF_TOPIC_PHRASES):
        return False
    if any(k in msg for k in MATH_KEYWORDS):
        return True
    if _DIGIT.search(msg) or _MATH_SYMBOLS.search(msg):
        return True
    if len(msg) < FOLLOW_UP_MAX_LENGTH and any(w in msg for w in SHORT_FOLLOW_UP_WORDS):
        return True
    return False
