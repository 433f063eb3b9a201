"""
Record extraction: LLM primary path with heuristic fallback
"""

from .extraction_base import DEFAULT_CATEGORY, ExtractedEntry, ExtractionResult, ExtractorBase
from .heuristic_parser import HeuristicExtractor, parse_grades
from .llm_extractor import ExtractionPayload, LLMExtractor, Unparseable, parse_extraction_output
from .pipeline import ExtractionPipeline

__all__ = [
    "DEFAULT_CATEGORY",
    "ExtractedEntry",
    "ExtractionResult",
    "ExtractorBase",
    "HeuristicExtractor",
    "parse_grades",
    "ExtractionPayload",
    "LLMExtractor",
    "Unparseable",
    "parse_extraction_output",
    "ExtractionPipeline",
]
