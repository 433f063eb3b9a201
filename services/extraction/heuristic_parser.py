"""
=====================================================
Support Line - Heuristic Grade Parser
=====================================================
Deterministic regex parser for spoken grade dictation.

Handles phrasings such as:
- "Class 10B: John 85 in Math; Mary 90 in Math"
- "John Doe got 78 in Chemistry"
- "Alice: Math 92, Biology 88"

A name given with a colon carries over to the following clauses, so
"Alice: Math 92, Biology 88" yields two entries for Alice.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from .extraction_base import ExtractedEntry, ExtractionResult, ExtractorBase


NUMBER = r"\d{1,3}(?:\.\d+)?"
NAME = r"[A-Za-z][A-Za-z'\-]*(?:\s+[A-Za-z][A-Za-z'\-]*){0,3}"
WORDS = r"[A-Za-z][A-Za-z&' ]*"
VERBS = r"(?:got|gets|has|scored|received|earned)"
UNIT = r"(?:\s*(?:%|percent|points|marks))?"

CLASS_PATTERN = re.compile(r"\bclass\s+([A-Za-z0-9\-]+)\s*:?", re.IGNORECASE)
CLAUSE_SPLIT = re.compile(r"[;\n,]|(?<!\d)\.|\.(?!\d)|\s+and\s+", re.IGNORECASE)
LABEL = re.compile(rf"(?P<name>{NAME})\s*:\s*(?P<rest>.*)", re.IGNORECASE)

# Name got 85 in Math
NAME_VERB_VALUE = re.compile(
    rf"(?P<name>{NAME})\s+{VERBS}\s+(?:an?\s+)?(?P<value>{NUMBER}){UNIT}"
    rf"(?:\s+(?:in|for|on)\s+(?P<category>{WORDS}))?",
    re.IGNORECASE,
)
# John 85 in Math
NAME_VALUE_CATEGORY = re.compile(
    rf"(?P<name>{NAME})\s+(?P<value>{NUMBER}){UNIT}\s+(?:in|for|on)\s+(?P<category>{WORDS})",
    re.IGNORECASE,
)
# 85 in Physics (name carried over)
VALUE_CATEGORY = re.compile(
    rf"(?:{VERBS}\s+)?(?:an?\s+)?(?P<value>{NUMBER}){UNIT}\s+(?:in|for|on)\s+(?P<category>{WORDS})",
    re.IGNORECASE,
)
# Math 92 (name carried over by a label)
CATEGORY_VALUE = re.compile(rf"(?P<category>{WORDS}?)\s+(?P<value>{NUMBER}){UNIT}", re.IGNORECASE)
# Bob 85
NAME_VALUE = re.compile(rf"(?P<name>{NAME})\s+(?P<value>{NUMBER}){UNIT}", re.IGNORECASE)
# Bob got ... (no number)
NAME_VERB_ONLY = re.compile(rf"(?P<name>{NAME})\s+{VERBS}\b\D*", re.IGNORECASE)


@dataclass
class ParsedGrade:
    student_name: str
    subject: Optional[str] = None
    grade: Optional[float] = None


@dataclass
class ParsedGrades:
    class_name: Optional[str] = None
    entries: List[ParsedGrade] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    text = " ".join(text.split())
    return text or None


def split_clauses(text: str) -> List[str]:
    return [part.strip() for part in CLAUSE_SPLIT.split(text) if part and part.strip()]


def parse_grades(text: str) -> ParsedGrades:
    """
    Parse a dictation utterance into grade tuples

    Never raises; unrecognised clauses are skipped.
    """
    result = ParsedGrades()
    if not text or not text.strip():
        return result

    class_match = CLASS_PATTERN.search(text)
    if class_match:
        result.class_name = class_match.group(1)
        text = text[:class_match.start()] + " " + text[class_match.end():]

    mentioned: List[str] = []
    carried_name: Optional[str] = None   # from the last clause that named a student
    labelled = False                     # carried name came from "Name:"

    for clause in split_clauses(text):
        label = LABEL.fullmatch(clause)
        if label:
            carried_name = _clean(label.group("name"))
            labelled = True
            mentioned.append(carried_name)
            clause = label.group("rest").strip()
            if not clause:
                continue

        match = NAME_VERB_VALUE.fullmatch(clause) or NAME_VALUE_CATEGORY.fullmatch(clause)
        if match:
            carried_name = _clean(match.group("name"))
            labelled = False
            mentioned.append(carried_name)
            result.entries.append(ParsedGrade(
                student_name=carried_name,
                subject=_clean(match.group("category")),
                grade=float(match.group("value")),
            ))
            continue

        if carried_name:
            match = VALUE_CATEGORY.fullmatch(clause)
            if not match and labelled:
                match = CATEGORY_VALUE.fullmatch(clause)
            if match:
                result.entries.append(ParsedGrade(
                    student_name=carried_name,
                    subject=_clean(match.group("category")),
                    grade=float(match.group("value")),
                ))
                continue

        match = NAME_VALUE.fullmatch(clause)
        if match:
            carried_name = _clean(match.group("name"))
            labelled = False
            mentioned.append(carried_name)
            result.entries.append(ParsedGrade(student_name=carried_name, grade=float(match.group("value"))))
            continue

        match = NAME_VERB_ONLY.fullmatch(clause)
        if match:
            mentioned.append(_clean(match.group("name")))

    graded = {entry.student_name.lower() for entry in result.entries}
    for name in mentioned:
        if name and name.lower() not in graded and name not in result.missing:
            result.missing.append(name)

    return result


class HeuristicExtractor(ExtractorBase):
    """Adapts parse_grades() to the shared extraction result"""

    name = "heuristic"

    async def extract(self, utterance: str) -> ExtractionResult:
        parsed = parse_grades(utterance)
        return ExtractionResult(
            group_name=parsed.class_name,
            entries=[
                ExtractedEntry(subject_name=entry.student_name, category=entry.subject, value=entry.grade)
                for entry in parsed.entries
            ],
            missing=list(parsed.missing),
            source=self.name,
        )
