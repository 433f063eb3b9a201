"""
=====================================================
Support Line - Extraction Base Interface
=====================================================
Result shape shared by every record extractor, and the abstract extractor
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


DEFAULT_CATEGORY = "General"


@dataclass
class ExtractedEntry:
    """One (subject, category, value) tuple heard in an utterance"""
    subject_name: str
    category: Optional[str] = None
    value: Optional[float] = None

    @property
    def is_accepted(self) -> bool:
        """Committable: named subject with a numeric value"""
        return bool(self.subject_name.strip()) and self.value is not None


@dataclass
class ExtractionResult:
    """
    Normalized output of any extractor

    Attributes:
        group_name: Optional group ("class 10B")
        entries: Everything the extractor heard, accepted or not
        missing: Names mentioned without a value
        reply: Short spoken confirmation or clarification line
        source: Name of the extractor that produced it
    """
    group_name: Optional[str] = None
    entries: List[ExtractedEntry] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    reply: Optional[str] = None
    source: str = "none"

    @property
    def accepted_entries(self) -> List[ExtractedEntry]:
        return [entry for entry in self.entries if entry.is_accepted]

    @property
    def is_empty(self) -> bool:
        return not self.accepted_entries

    def missing_names(self) -> List[str]:
        """Reported missing names plus entries without a value, de-duplicated in order"""
        names: List[str] = []
        seen = set()
        candidates = list(self.missing) + [
            entry.subject_name for entry in self.entries
            if entry.value is None
        ]
        for name in candidates:
            name = (name or "").strip()
            if name and name.lower() not in seen:
                seen.add(name.lower())
                names.append(name)
        return names


class ExtractorBase(ABC):
    """
    Abstract base class for record extractors

    Implementations must not raise: every failure becomes an empty result.
    """

    name: str = "extractor"

    @abstractmethod
    async def extract(self, utterance: str) -> ExtractionResult:
        """
        Extract entries from one utterance

        Args:
            utterance: Raw speech transcription

        Returns:
            ExtractionResult (possibly empty)
        """
        pass
