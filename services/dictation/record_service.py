"""
=====================================================
Support Line - Dictation Record Service
=====================================================
Commits accepted extraction entries and builds the spoken confirmation.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger

from services.extraction import DEFAULT_CATEGORY, ExtractionResult
from services.storage import CallStore, RecordDraft, RecordEntry


FOLLOW_UP_LINE = "Would you like to add more grades?"


@dataclass
class DictationOutcome:
    """What was committed for one dictation turn"""
    saved: List[RecordEntry] = field(default_factory=list)
    group_name: Optional[str] = None
    missing: List[str] = field(default_factory=list)
    confirmation: str = ""
    spoken: str = ""


def build_confirmation(saved_count: int, group_name: Optional[str], missing: List[str]) -> str:
    """'Saved N grade(s)[ for class X].' plus the missing-names sentence"""
    parts = [f"Saved {saved_count} grade(s){f' for class {group_name}' if group_name else ''}."]
    if missing:
        parts.append(f"I noticed these students mentioned without grades: {', '.join(missing)}.")
    return " ".join(parts)


def _spoken(confirmation: str, result: ExtractionResult) -> str:
    return f"{confirmation} {result.reply or FOLLOW_UP_LINE}"


class RecordService:
    """
    Persists dictated records for a dictation caller

    Only entries with a subject name and a numeric value are committed.
    Everything else is reported back as missing.
    """

    def __init__(self, store: CallStore):
        self.store = store

    @staticmethod
    def drafts_for(result: ExtractionResult) -> List[RecordDraft]:
        return [
            RecordDraft(
                subject_name=entry.subject_name.strip(),
                category=(entry.category or "").strip() or DEFAULT_CATEGORY,
                value=float(entry.value),
            )
            for entry in result.accepted_entries
        ]

    async def commit(self, owner_id: str, result: ExtractionResult, call_sid: str = "-") -> DictationOutcome:
        """
        Commit the accepted entries of an extraction result

        Args:
            owner_id: The dictation caller's id
            result: Pipeline output with at least one accepted entry
            call_sid: For logging

        Returns:
            DictationOutcome with the saved rows and confirmation text
        """
        drafts = self.drafts_for(result)
        group_name = (result.group_name or "").strip() or None

        saved = await self.store.save_records(owner_id, group_name, drafts)
        missing = result.missing_names()

        confirmation = build_confirmation(len(saved), group_name, missing)
        spoken = _spoken(confirmation, result)

        logger.info(
            f"Dictation: Call {call_sid} saved {len(saved)} record(s)"
            f"{f' in group {group_name}' if group_name else ''}, {len(missing)} missing"
        )

        return DictationOutcome(
            saved=saved,
            group_name=group_name,
            missing=missing,
            confirmation=confirmation,
            spoken=spoken,
        )

    def replay(self, result: ExtractionResult, call_sid: str = "-") -> DictationOutcome:
        """Confirmation for an utterance whose records an earlier delivery committed"""
        group_name = (result.group_name or "").strip() or None
        missing = result.missing_names()
        confirmation = build_confirmation(len(result.accepted_entries), group_name, missing)

        logger.info(f"Dictation: Call {call_sid} repeated utterance, records not saved again")

        return DictationOutcome(
            group_name=group_name,
            missing=missing,
            confirmation=confirmation,
            spoken=_spoken(confirmation, result),
        )
