"""
=====================================================
Support Line - Structured Extraction Pipeline
=====================================================
Ordered strategy chain over record extractors: the first result with at
least one accepted entry wins. Never raises.
"""

from typing import List, Sequence

from loguru import logger

from .extraction_base import ExtractionResult, ExtractorBase


CLARIFICATION_REPLY = "I could not parse any grades. Could you repeat them more clearly?"


class ExtractionPipeline:
    """
    Runs extractors in order until one yields accepted entries

    Usage:
        pipeline = ExtractionPipeline([LLMExtractor(llm), HeuristicExtractor()])
        result = await pipeline.run("Alice: Math 92, Biology 88")
    """

    def __init__(self, extractors: Sequence[ExtractorBase]):
        self.extractors: List[ExtractorBase] = list(extractors)

    async def run(self, utterance: str, call_sid: str = "-") -> ExtractionResult:
        first_result = None

        for extractor in self.extractors:
            try:
                result = await extractor.extract(utterance)
            except Exception as e:
                logger.error(f"Extraction: Call {call_sid} {extractor.name} extractor raised: {e}")
                continue

            if first_result is None:
                first_result = result

            if not result.is_empty:
                logger.info(
                    f"Extraction: Call {call_sid} {extractor.name} extractor accepted "
                    f"{len(result.accepted_entries)} entries"
                )
                return result

            logger.info(f"Extraction: Call {call_sid} {extractor.name} extractor returned no entries")

        # Nothing accepted: keep what the first extractor said about missing names
        empty = first_result or ExtractionResult()
        return ExtractionResult(
            group_name=empty.group_name,
            entries=list(empty.entries),
            missing=list(empty.missing),
            reply=empty.reply or CLARIFICATION_REPLY,
            source=empty.source,
        )
