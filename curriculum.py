"""
Curriculum Intelligence — Year 7 topic catalog, scaffolds and prompt building.

Loads the curriculum document (``data/year7_curriculum.json``) into:
  1. topic_catalog — closed list of topics with subtopics and allowed verbs
  2. scaffolds — step-by-step procedures the tutor must walk students through
  3. common_misconceptions, glossary, refusal templates, rules and style guide

and builds the tutor's system prompt and short topic-context strings from it.
"""

from __future__ import annotations

import json
import logging
import sysconfig
import threading
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

CURRICULUM_FILENAME = "year7_curriculum.json"

# Source checkouts and editable installs keep the document beside the modules;
# a regular install places it under the interpreter's data prefix.
BUNDLED_CURRICULUM_PATH = Path(__file__).parent / "data" / CURRICULUM_FILENAME


def default_curriculum_path() -> Path:
    if BUNDLED_CURRICULUM_PATH.exists():
        return BUNDLED_CURRICULUM_PATH
    return Path(sysconfig.get_path("data")) / "data" / CURRICULUM_FILENAME


# ── Data classes ───────────────────────────────────────────────────────

@dataclass
class TopicEntry:
    topic: str                 # "Equations"
    subtopics: list[str]       # ["two step equations", "inverse operations", ...]
    allowed_verbs: list[str]   # ["solve", "find x"]

    def keywords(self) -> list[str]:
        """Lowercased subtopics, verbs and the topic name, in that order."""
        return (
            [s.lower() for s in self.subtopics]
            + [v.lower() for v in self.allowed_verbs]
            + [self.topic.lower()]
        )

    def covers(self, label: str) -> bool:
        """True when ``label`` names this topic or mentions one of its subtopics."""
        label = label.lower()
        return label in self.topic.lower() or any(s.lower() in label for s in self.subtopics)


@dataclass
class Misconception:
    topic: str
    pattern: str
    fix: str


@dataclass
class GlossaryTerm:
    term: str
    meaning: str = ""


@dataclass
class Scaffold:
    key: str
    steps: list[str]
    priority: str   # HIGH | MEDIUM | LOW
    match_type: str  # direct | topic


# Direct scaffold triggers, checked against the text being tutored.
SCAFFOLD_KEYWORDS: list[tuple[str, list[str], str]] = [
    ("fractions_to_decimals", ["fraction to decimal", "convert fraction", "decimal conversion",
                               "1/3 to decimal", "turn fraction into decimal"], "HIGH"),
    ("fractions_add_sub", ["add fraction", "subtract fraction", "fraction addition",
                           "fraction subtraction"], "HIGH"),
    ("two_step_equations", ["solve equation", "two step", "equation with", "find x"], "HIGH"),
    ("percent_of_quantity", ["percent of", "percentage of", "% of", "find percentage"], "HIGH"),
    ("area_rectangle", ["area rectangle", "rectangle area", "length width"], "MEDIUM"),
    ("area_triangle", ["area triangle", "triangle area", "base height"], "MEDIUM"),
    ("area_parallelogram", ["area parallelogram", "parallelogram area"], "MEDIUM"),
    ("area_trapezium", ["area trapezium", "trapezium area", "parallel sides"], "MEDIUM"),
    ("angles_with_parallel_lines", ["parallel lines", "corresponding angle", "alternate angle"], "MEDIUM"),
    ("solving_proportions", ["proportion", "ratio problem", "cross multiply"], "MEDIUM"),
]

_PRIORITY_ORDER = {"HIGH": 3, "MEDIUM": 2, "LOW": 1}
MAX_SCAFFOLDS = 3


@dataclass
class Curriculum:
    """In-memory view of the curriculum document."""

    topic_catalog: list[TopicEntry]
    scaffolds: dict[str, list[str]] = field(default_factory=dict)
    common_misconceptions: list[Misconception] = field(default_factory=list)
    glossary_verbs: list[GlossaryTerm] = field(default_factory=list)
    refusal_messages: list[str] = field(default_factory=list)
    system_rules: list[str] = field(default_factory=list)
    style_tone: str = ""
    style_format: list[str] = field(default_factory=list)
    meta: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._context_cache: dict[str, str] = {}
        self._cache_lock = threading.Lock()

    # ── Lookups ──────────────────────────────────────────────

    def find_topic(self, label: str) -> TopicEntry | None:
        """First catalog entry covering ``label`` (name or subtopic match)."""
        for entry in self.topic_catalog:
            if entry.covers(label):
                return entry
        return None

    def has_topic(self, label: str) -> bool:
        return self.find_topic(label) is not None

    def find_topic_by_name(self, label: str) -> TopicEntry | None:
        label = label.lower()
        for entry in self.topic_catalog:
            if label in entry.topic.lower():
                return entry
        return None

    def glossary_terms(self) -> list[str]:
        return [g.term for g in self.glossary_verbs]

    def misconception_for(self, entry: TopicEntry) -> Misconception | None:
        for m in self.common_misconceptions:
            if m.topic in entry.topic:
                return m
        return None

    def refusal(self, prerequisite: str, suggestion: str) -> str:
        """Fill the first refusal template."""
        if not self.refusal_messages:
            return f"That's outside Year 7. Let's try {suggestion}."
        return (
            self.refusal_messages[0]
            .replace("<prerequisite>", prerequisite)
            .replace("<suggestion>", suggestion)
        )

    # ── Topic context ────────────────────────────────────────

    def context_for(self, topic: str) -> str:
        """Short context line, e.g. 'Y7 Equations: two step equations, ...'.

        Empty string when the topic is not in the catalog. Results are cached
        per topic label.
        """
        with self._cache_lock:
            if topic in self._context_cache:
                return self._context_cache[topic]

        entry = self.find_topic_by_name(topic)
        context = f"Y7 {entry.topic}: {', '.join(entry.subtopics[:3])}" if entry else ""

        with self._cache_lock:
            self._context_cache[topic] = context
        return context

    # ── Scaffolds ────────────────────────────────────────────

    def find_relevant_scaffolds(self, entry: TopicEntry | None, text: str) -> list[Scaffold]:
        """Scaffolds for ``text``: direct keyword hits first, else topic/subtopic matches.

        Deduplicated by key, sorted HIGH > MEDIUM > LOW, at most three.
        """
        text_lower = text.lower()
        found: list[Scaffold] = []

        for key, keywords, priority in SCAFFOLD_KEYWORDS:
            if key in self.scaffolds and any(k in text_lower for k in keywords):
                found.append(Scaffold(key, self.scaffolds[key], priority, "direct"))

        if not found and entry is not None:
            for key, steps in self.scaffolds.items():
                scaffold_topic = key.replace("_", " ").lower()
                relevant = scaffold_topic in entry.topic.lower() or any(
                    scaffold_topic in sub.lower() or sub.lower() in scaffold_topic
                    for sub in entry.subtopics
                )
                if relevant:
                    found.append(Scaffold(key, steps, "LOW", "topic"))

        seen: set[str] = set()
        unique = []
        for s in found:
            if s.key not in seen:
                seen.add(s.key)
                unique.append(s)
        unique.sort(key=lambda s: _PRIORITY_ORDER[s.priority], reverse=True)
        return unique[:MAX_SCAFFOLDS]

    # ── System prompt ────────────────────────────────────────

    def build_system_prompt(self, topic: str, message: str = "") -> str:
        """Assemble the tutor system prompt for ``topic``.

        ``message`` (the student's latest message) is also scanned for direct
        scaffold triggers.
        """
        entry = self.find_topic(topic)
        core_rules = " ".join(self.system_rules)
        style = self.style_tone + ", " + " then ".join(self.style_format)

        topic_context = ""
        scaffold_text = ""
        if entry:
            topic_context = "\nTOPIC: " + entry.topic
            topic_context += "\nSCOPE: " + ", ".join(entry.subtopics[:4])
            topic_context += "\nALLOWED: " + ", ".join(entry.allowed_verbs)

            scaffolds = self.find_relevant_scaffolds(entry, f"{topic} {message}".strip())
            if scaffolds:
                scaffold_text = _format_scaffolds(scaffolds)

            misconception = self.misconception_for(entry)
            if misconception:
                topic_context += f"\nWATCH: {misconception.pattern} - fix: {misconception.fix}"

        return (
            "You are StudyBuddy, NSW Year 7 mathematics tutor.\n\n"
            f"CORE RULES: {core_rules}\n"
            f"STYLE: {style}"
            f"{topic_context}"
            f"{scaffold_text}\n\n"
            "CRITICAL: Use Socratic method ONLY - ask guiding questions, NEVER give direct answers or final results.\n"
            "Never use emojis. Ask ONE question at a time. Guide discovery step by step.\n"
            "When teaching procedures, ask questions that lead students through the exact scaffold steps.\n"
            "ALWAYS follow the scaffold steps when they apply to the student's question."
        )


def _format_scaffolds(scaffolds: list[Scaffold]) -> str:
    lines = ["", "", "CRITICAL SCAFFOLD STEPS - YOU MUST GUIDE STUDENTS THROUGH THESE EXACT STEPS:"]
    for s in scaffolds:
        lines.append("")
        lines.append(f"For {s.key.replace('_', ' ')} problems (Priority: {s.priority}):")
        for i, step in enumerate(s.steps, 1):
            lines.append(f"  Step {i}: {step}")
        lines.append("  -> Ask questions to guide students through EACH step")
        lines.append("  -> Do NOT skip steps or give direct answers")
        lines.append("  -> Wait for student response before proceeding to next step")
    lines.append("")
    lines.append("When you recognize a problem that matches these scaffolds:")
    lines.append("1. Identify which scaffold applies")
    lines.append("2. Ask a question that leads to Step 1")
    lines.append("3. Only proceed to the next step after student engagement")
    lines.append("4. Use the scaffold steps as your roadmap for questioning")
    return "\n".join(lines)


# ── Loading ────────────────────────────────────────────────────────────

def parse_curriculum(raw: dict) -> Curriculum:
    """Build a Curriculum from the decoded JSON document."""
    style = raw.get("style_guidelines") or {}
    glossary = raw.get("glossary") or {}
    return Curriculum(
        topic_catalog=[
            TopicEntry(
                topic=t["topic"],
                subtopics=list(t.get("subtopics", [])),
                allowed_verbs=list(t.get("allowed_verbs", [])),
            )
            for t in raw.get("topic_catalog", [])
        ],
        scaffolds={k: list(v) for k, v in (raw.get("scaffolds") or {}).items()},
        common_misconceptions=[
            Misconception(m["topic"], m.get("pattern", ""), m.get("fix", ""))
            for m in raw.get("common_misconceptions", [])
        ],
        glossary_verbs=[
            GlossaryTerm(v["term"], v.get("meaning", "")) for v in glossary.get("verbs", [])
        ],
        refusal_messages=list(raw.get("refusal_messages", [])),
        system_rules=list(raw.get("system_rules", [])),
        style_tone=style.get("tone", ""),
        style_format=list(style.get("format", [])),
        meta=dict(raw.get("meta") or {}),
    )


@lru_cache(maxsize=4)
def load_curriculum(path: str | None = None) -> Curriculum:
    """Load and cache the curriculum document at ``path``."""
    curriculum_path = Path(path) if path else default_curriculum_path()
    with open(curriculum_path, encoding="utf-8") as f:
        raw = json.load(f)
    curriculum = parse_curriculum(raw)
    logger.info(
        "Loaded curriculum %s (%d topics, %d scaffolds)",
        curriculum.meta.get("version", "unknown"),
        len(curriculum.topic_catalog),
        len(curriculum.scaffolds),
    )
    return curriculum
