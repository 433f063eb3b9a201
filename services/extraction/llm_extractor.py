"""
=====================================================
Support Line - LLM Grade Extractor
=====================================================
Asks the completion service for a JSON object describing the grades in a
dictation utterance, then validates it.

The model output is parsed permissively (first {...} block, single quotes
tolerated) and validated with pydantic into either an ExtractionPayload or
an explicit Unparseable value.
"""

import asyncio
import json
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from services.llm.llm_base import LLMRequest, LLMRole, LLMServiceBase, Message, run_with_deadline
from .extraction_base import ExtractedEntry, ExtractionResult, ExtractorBase


EXTRACTION_SYSTEM_PROMPT = (
    "You are an assistant that extracts structured grade data from free-form spoken teacher input. "
    "Output a single JSON object only (no explanation) with these keys: "
    '"className" (string or null), '
    '"entries" (array of {"studentName": string, "subject": string|null, "grade": number|null}), '
    '"missing" (array of student names the teacher mentioned but did not provide grades for), and '
    '"assistantReply" (a one-sentence, polite confirmation or clarification request). '
    "If you cannot determine something, use null for that value. Do not invent students."
)

JSON_BLOCK = re.compile(r"\{[\s\S]*\}")

EMPTY_REPLY = "I could not parse any grades. Could you repeat them more clearly?"
UNPARSEABLE_REPLY = "I had trouble extracting structured grades. Could you rephrase?"
ERROR_REPLY = "I am having trouble parsing that right now. Could you repeat?"


class EntryPayload(BaseModel):
    """One entry as the model reports it"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    student_name: str = Field(default="", alias="studentName")
    subject: Optional[str] = None
    grade: Optional[float] = None

    @field_validator("student_name", mode="before")
    @classmethod
    def _name_to_text(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @field_validator("subject", mode="before")
    @classmethod
    def _subject_to_text(cls, value: Any) -> Optional[str]:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @field_validator("grade", mode="before")
    @classmethod
    def _grade_to_number(cls, value: Any) -> Optional[float]:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str) and value.strip():
            try:
                return float(value.strip().rstrip("%"))
            except ValueError:
                return None
        return None


class ExtractionPayload(BaseModel):
    """Validated model output; every field has an explicit default"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    class_name: Optional[str] = Field(default=None, alias="className")
    entries: List[EntryPayload] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)
    assistant_reply: Optional[str] = Field(default=None, alias="assistantReply")

    @field_validator("class_name", "assistant_reply", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @field_validator("entries", mode="before")
    @classmethod
    def _entry_objects(cls, value: Any) -> list:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @field_validator("missing", mode="before")
    @classmethod
    def _missing_names(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item is not None and str(item).strip()]


@dataclass
class Unparseable:
    """Model output that could not be read as an extraction payload"""
    raw: str
    reason: str


def parse_extraction_output(raw: str) -> Union[ExtractionPayload, Unparseable]:
    """
    Permissively parse model text into a validated payload

    Args:
        raw: Text returned by the completion service

    Returns:
        ExtractionPayload, or Unparseable describing why not
    """
    if not raw or not raw.strip():
        return Unparseable(raw=raw or "", reason="empty output")

    block = JSON_BLOCK.search(raw)
    json_text = block.group(0) if block else raw

    try:
        data = json.loads(json_text)
    except json.JSONDecodeError:
        try:
            data = json.loads(json_text.replace("'", '"'))
        except json.JSONDecodeError as e:
            return Unparseable(raw=raw, reason=f"invalid JSON: {e.msg}")

    if not isinstance(data, dict):
        return Unparseable(raw=raw, reason=f"expected object, got {type(data).__name__}")

    try:
        return ExtractionPayload.model_validate(data)
    except ValidationError as e:
        return Unparseable(raw=raw, reason=f"validation failed: {e.error_count()} error(s)")


def payload_to_result(payload: ExtractionPayload, source: str) -> ExtractionResult:
    """Normalize a validated payload into the shared result shape"""
    return ExtractionResult(
        group_name=payload.class_name,
        entries=[
            ExtractedEntry(subject_name=entry.student_name, category=entry.subject, value=entry.grade)
            for entry in payload.entries
            if entry.student_name
        ],
        missing=list(payload.missing),
        reply=payload.assistant_reply,
        source=source,
    )


class LLMExtractor(ExtractorBase):
    """
    Primary extractor backed by the completion service

    Bounded by a hard deadline; a timed-out call is abandoned.
    """

    name = "llm"

    def __init__(self, llm: LLMServiceBase, timeout_seconds: float = 10.0, max_tokens: int = 400):
        self.llm = llm
        self.timeout_seconds = timeout_seconds
        self.max_tokens = max_tokens

    def build_request(self, utterance: str) -> LLMRequest:
        quoted = utterance.replace('"', '\\"')
        return LLMRequest(
            messages=[
                Message(role=LLMRole.SYSTEM, content=EXTRACTION_SYSTEM_PROMPT),
                Message(
                    role=LLMRole.USER,
                    content=f'Extract grades from this teacher statement exactly (do not invent new students): "{quoted}"'
                ),
            ],
            temperature=0.0,
            max_tokens=self.max_tokens,
            json_mode=True,
        )

    async def extract(self, utterance: str) -> ExtractionResult:
        if not utterance or not utterance.strip():
            return ExtractionResult(reply=EMPTY_REPLY, source=self.name)

        try:
            response = await run_with_deadline(self.llm.chat(self.build_request(utterance)), self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Extraction: LLM extractor exceeded {self.timeout_seconds}s - treating as empty")
            return ExtractionResult(reply=ERROR_REPLY, source=self.name)
        except Exception as e:
            logger.error(f"Extraction: LLM extractor failed: {e}")
            return ExtractionResult(reply=ERROR_REPLY, source=self.name)

        parsed = parse_extraction_output(response.content)
        if isinstance(parsed, Unparseable):
            logger.warning(f"Extraction: Unparseable model output ({parsed.reason}): {parsed.raw[:200]!r}")
            return ExtractionResult(reply=UNPARSEABLE_REPLY, source=self.name)

        result = payload_to_result(parsed, self.name)
        if not result.entries and not result.reply:
            result.reply = EMPTY_REPLY

        logger.info(
            f"Extraction: LLM extractor found {len(result.accepted_entries)} accepted "
            f"of {len(result.entries)} entries"
        )
        return result
