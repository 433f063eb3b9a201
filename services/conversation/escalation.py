"""
=====================================================
Support Line - Escalation Detection
=====================================================
Keyword classification of a caller utterance, independent of what the
language model replies. Crisis terms win over professional-help terms.
"""

import re
from enum import Enum
from typing import Optional, Tuple


class EscalationReason(Enum):
    """Why a call needs a human"""
    CRISIS = "crisis"
    REQUESTED_PROFESSIONAL = "requested_professional"


# English and Swahili
CRISIS_TERMS: Tuple[str, ...] = (
    "suicide",
    "kill myself",
    "self-harm",
    "self harm",
    "end my life",
    "kujiua",       # suicide
    "kujidhuru",    # self-harm
)

PROFESSIONAL_TERMS: Tuple[str, ...] = (
    "professional",
    "therapist",
    "counselor",
    "counsellor",
    "help me professionally",
    "msaada wa kitaalamu",  # professional help
    "daktari wa akili",     # mental doctor
)

SWAHILI_MARKERS: Tuple[str, ...] = (
    "habari",
    "asante",
    "sijambo",
    "karibu",
    "pole",
    "samahani",
    "tafadhali",
    "kujiua",
    "kujidhuru",
    "msaada",
)

_SWAHILI_PATTERN = re.compile(r"\b(?:" + "|".join(map(re.escape, SWAHILI_MARKERS)) + r")\b")


def _contains_any(text: str, terms: Tuple[str, ...]) -> bool:
    return any(term in text for term in terms)


def classify_escalation(utterance: str) -> Optional[EscalationReason]:
    """
    Classify an utterance by case-insensitive substring match.

    Returns:
        CRISIS, REQUESTED_PROFESSIONAL, or None
    """
    text = (utterance or "").lower()
    if _contains_any(text, CRISIS_TERMS):
        return EscalationReason.CRISIS
    if _contains_any(text, PROFESSIONAL_TERMS):
        return EscalationReason.REQUESTED_PROFESSIONAL
    return None


def detect_language(utterance: str) -> str:
    """'sw' when the utterance carries a Swahili marker word, else 'en'"""
    text = (utterance or "").lower()
    return "sw" if _SWAHILI_PATTERN.search(text) else "en"
