import pytest

from services.extraction import (
    ExtractionPayload,
    ExtractionPipeline,
    ExtractionResult,
    ExtractorBase,
    HeuristicExtractor,
    LLMExtractor,
    Unparseable,
    parse_extraction_output,
)
from services.extraction.extraction_base import ExtractedEntry
from services.extraction.llm_extractor import ERROR_REPLY, UNPARSEABLE_REPLY

from tests.conftest import EMPTY_EXTRACTION, FakeLLM


class TestParseExtractionOutput:
    """Permissive, validated parse of model output"""

    def test_json_wrapped_in_prose(self):
        raw = 'Sure! {"className": "10B", "entries": [{"studentName": "Ann", "subject": "Math", "grade": 91}]} Done.'

        parsed = parse_extraction_output(raw)

        assert isinstance(parsed, ExtractionPayload)
        assert parsed.class_name == "10B"
        assert parsed.entries[0].student_name == "Ann"
        assert parsed.entries[0].grade == 91.0

    def test_single_quotes_are_tolerated(self):
        parsed = parse_extraction_output("{'entries': [{'studentName': 'Ann', 'grade': '88'}], 'missing': ['Ben']}")

        assert isinstance(parsed, ExtractionPayload)
        assert parsed.entries[0].grade == 88.0
        assert parsed.entries[0].subject is None
        assert parsed.missing == ["Ben"]

    def test_missing_fields_default_explicitly(self):
        parsed = parse_extraction_output('{"entries": [{"studentName": "Ann", "grade": "n/a"}, "junk"]}')

        assert isinstance(parsed, ExtractionPayload)
        assert parsed.class_name is None
        assert parsed.assistant_reply is None
        assert len(parsed.entries) == 1
        assert parsed.entries[0].grade is None

    @pytest.mark.parametrize("raw", ["", "no json here", "[1, 2, 3]", "{broken: json"])
    def test_unparseable(self, raw):
        assert isinstance(parse_extraction_output(raw), Unparseable)


class TestLLMExtractor:
    """Primary extractor behaviour"""

    @pytest.mark.asyncio
    async def test_normalizes_entries(self):
        llm = FakeLLM(
            '{"className": "7A", "entries": ['
            '{"studentName": "Ann", "subject": "Math", "grade": 91},'
            '{"studentName": "Ben", "subject": "Math", "grade": null}],'
            '"missing": [], "assistantReply": "Got it."}'
        )

        result = await LLMExtractor(llm).extract("Ann 91 in math, Ben was absent, class 7A")

        assert result.source == "llm"
        assert result.group_name == "7A"
        assert [e.subject_name for e in result.accepted_entries] == ["Ann"]
        assert result.missing_names() == ["Ben"]
        assert result.reply == "Got it."
        assert llm.requests[0].json_mode is True

    @pytest.mark.asyncio
    async def test_timeout_is_empty(self):
        llm = FakeLLM(EMPTY_EXTRACTION, delay=1.0)

        result = await LLMExtractor(llm, timeout_seconds=0.05).extract("Alice: Math 92")

        assert result.is_empty
        assert result.reply == ERROR_REPLY

    @pytest.mark.asyncio
    async def test_service_error_is_empty(self):
        result = await LLMExtractor(FakeLLM(error=RuntimeError("boom"))).extract("Alice: Math 92")

        assert result.is_empty
        assert result.reply == ERROR_REPLY

    @pytest.mark.asyncio
    async def test_malformed_output_is_empty(self):
        result = await LLMExtractor(FakeLLM("I think Alice did well")).extract("Alice: Math 92")

        assert result.is_empty
        assert result.reply == UNPARSEABLE_REPLY


class RaisingExtractor(ExtractorBase):
    name = "raising"

    async def extract(self, utterance: str) -> ExtractionResult:
        raise RuntimeError("unexpected")


class TestExtractionPipeline:
    """First non-empty result wins"""

    @pytest.mark.asyncio
    async def test_falls_back_to_heuristic(self):
        pipeline = ExtractionPipeline([LLMExtractor(FakeLLM(EMPTY_EXTRACTION)), HeuristicExtractor()])

        result = await pipeline.run("Alice: Math 92, Biology 88")

        assert result.source == "heuristic"
        assert [(e.subject_name, e.category, e.value) for e in result.accepted_entries] == [
            ("Alice", "Math", 92.0),
            ("Alice", "Biology", 88.0),
        ]

    @pytest.mark.asyncio
    async def test_primary_result_wins(self):
        llm = FakeLLM('{"entries": [{"studentName": "Ann", "subject": "Art", "grade": 70}]}')
        pipeline = ExtractionPipeline([LLMExtractor(llm), HeuristicExtractor()])

        result = await pipeline.run("Alice: Math 92")

        assert result.source == "llm"
        assert [e.subject_name for e in result.accepted_entries] == ["Ann"]

    @pytest.mark.asyncio
    async def test_never_raises_and_asks_for_clarification(self):
        pipeline = ExtractionPipeline([RaisingExtractor(), HeuristicExtractor()])

        result = await pipeline.run("hello, how are you")

        assert result.is_empty
        assert result.reply

    def test_value_less_entries_are_not_accepted(self):
        result = ExtractionResult(entries=[
            ExtractedEntry(subject_name="Ann", value=90.0),
            ExtractedEntry(subject_name="Ben", value=None),
            ExtractedEntry(subject_name="  ", value=80.0),
        ])

        assert [e.subject_name for e in result.accepted_entries] == ["Ann"]
        assert result.missing_names() == ["Ben"]
