import pytest

from services.conversation.escalation import EscalationReason, classify_escalation, detect_language
from services.conversation.response_engine import SYSTEM_PROMPT_EN, SYSTEM_PROMPT_SW, ResponseEngine
from services.llm.llm_base import LLMRole
from services.storage import MessageRole

from tests.conftest import FakeLLM


class TestEscalationClassifier:
    """Keyword escalation over the raw utterance"""

    @pytest.mark.parametrize("utterance", [
        "Sometimes I think about suicide",
        "I want to KILL MYSELF",
        "I have been doing self-harm",
        "Nataka kujiua",
    ])
    def test_crisis_terms(self, utterance):
        assert classify_escalation(utterance) == EscalationReason.CRISIS

    @pytest.mark.parametrize("utterance", [
        "Can I talk to a therapist?",
        "I need a professional",
        "Nahitaji msaada wa kitaalamu",
    ])
    def test_professional_terms(self, utterance):
        assert classify_escalation(utterance) == EscalationReason.REQUESTED_PROFESSIONAL

    def test_crisis_wins_over_professional(self):
        assert classify_escalation("I want a counselor because I think about suicide") == EscalationReason.CRISIS

    def test_no_escalation(self):
        assert classify_escalation("I had a long day at work") is None
        assert classify_escalation("") is None

    def test_language_hint(self):
        assert detect_language("Habari, nina huzuni") == "sw"
        assert detect_language("Hello, I feel sad") == "en"

    def test_language_markers_match_whole_words(self):
        assert detect_language("Pole sana") == "sw"
        assert detect_language("We watched a tadpole near the maypole") == "en"


class TestResponseEngine:
    """One conversational turn"""

    async def _open(self, store, utterance):
        session = await store.ensure_call("CA100", "+15550001111")
        await store.append_message_once(session.conversation.id, MessageRole.USER, utterance)
        return session.conversation.id

    @pytest.mark.asyncio
    async def test_reply_is_persisted(self, store):
        llm = FakeLLM("That sounds exhausting.")
        engine = ResponseEngine(llm, store)
        conversation_id = await self._open(store, "I had a long day")

        result = await engine.respond("CA100", conversation_id, "I had a long day")

        assert result.text == "That sounds exhausting."
        assert result.needs_escalation is False
        messages = await store.list_messages(conversation_id)
        assert [(m.role, m.content) for m in messages] == [
            (MessageRole.USER, "I had a long day"),
            (MessageRole.ASSISTANT, "That sounds exhausting."),
        ]

    @pytest.mark.asyncio
    async def test_history_ends_with_utterance_once(self, store):
        llm = FakeLLM("ok")
        engine = ResponseEngine(llm, store)
        conversation_id = await self._open(store, "I feel alone")

        await engine.respond("CA100", conversation_id, "I feel alone")

        sent = llm.requests[0].messages
        assert sent[0].role == LLMRole.SYSTEM
        assert sent[0].content == SYSTEM_PROMPT_EN
        assert [m.content for m in sent[1:]] == ["I feel alone"]

    @pytest.mark.asyncio
    async def test_swahili_prompt(self, store):
        llm = FakeLLM("Pole sana.")
        engine = ResponseEngine(llm, store)
        conversation_id = await self._open(store, "Habari, nina huzuni")

        await engine.respond("CA100", conversation_id, "Habari, nina huzuni")

        assert llm.requests[0].messages[0].content == SYSTEM_PROMPT_SW

    @pytest.mark.asyncio
    async def test_escalation_is_independent_of_reply(self, store):
        engine = ResponseEngine(FakeLLM("Let's talk about your weekend."), store)
        conversation_id = await self._open(store, "I keep thinking about suicide")

        result = await engine.respond("CA100", conversation_id, "I keep thinking about suicide")

        assert result.needs_escalation is True
        assert result.reason == EscalationReason.CRISIS

    @pytest.mark.asyncio
    async def test_timeout_returns_hold_reply_and_persists_nothing(self, store):
        engine = ResponseEngine(FakeLLM("late", delay=1.0), store, timeout_seconds=0.05)
        conversation_id = await self._open(store, "I want to kill myself")

        result = await engine.respond("CA100", conversation_id, "I want to kill myself")

        assert result.text == ResponseEngine.TIMEOUT_REPLY
        assert result.needs_escalation is False
        assert result.reason is None
        messages = await store.list_messages(conversation_id)
        assert [m.role for m in messages] == [MessageRole.USER]

    @pytest.mark.asyncio
    async def test_failure_returns_apology(self, store):
        engine = ResponseEngine(FakeLLM(error=RuntimeError("rate limited")), store)
        conversation_id = await self._open(store, "hello")

        result = await engine.respond("CA100", conversation_id, "hello")

        assert result.text == ResponseEngine.FAILURE_REPLY
        assert result.needs_escalation is False
        assert len(await store.list_messages(conversation_id)) == 1
