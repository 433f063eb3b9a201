import asyncio
from typing import List, Optional

import pytest

from services.conversation.orchestrator import CallOrchestrator
from services.conversation.response_engine import ResponseEngine
from services.extraction import ExtractionPipeline, HeuristicExtractor, LLMExtractor
from services.llm.llm_base import LLMRequest, LLMResponse, LLMServiceBase
from services.specialists.specialist_directory import SpecialistDirectory
from services.storage import InMemoryCallStore
from services.telephony.twilio_service import TwiMLBuilder


class FakeLLM(LLMServiceBase):
    """Scripted completion service"""

    def __init__(self, content: str = "I hear you.", delay: float = 0.0, error: Optional[Exception] = None):
        super().__init__(api_key="test-key", model="fake-model")
        self.content = content
        self.delay = delay
        self.error = error
        self.requests: List[LLMRequest] = []

    async def chat(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return LLMResponse(content=self.content)


EMPTY_EXTRACTION = '{"className": null, "entries": [], "missing": [], "assistantReply": null}'


@pytest.fixture
def store():
    return InMemoryCallStore()


@pytest.fixture
def chat_llm():
    return FakeLLM("It sounds like a hard week. What has been weighing on you?")


@pytest.fixture
def extraction_llm():
    return FakeLLM(EMPTY_EXTRACTION)


@pytest.fixture
def empty_roster(tmp_path):
    path = tmp_path / "specialists.yaml"
    path.write_text("specialists: []\n")
    return str(path)


@pytest.fixture
def directory(store, empty_roster):
    return SpecialistDirectory(store, roster_path=empty_roster)


@pytest.fixture
def orchestrator(store, chat_llm, extraction_llm, directory):
    engine = ResponseEngine(chat_llm, store, timeout_seconds=0.5)
    pipeline = ExtractionPipeline([
        LLMExtractor(extraction_llm, timeout_seconds=0.5),
        HeuristicExtractor(),
    ])
    return CallOrchestrator(store, engine, pipeline, directory, TwiMLBuilder())
