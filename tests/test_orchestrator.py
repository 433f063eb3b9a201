from unittest.mock import AsyncMock

import pytest

from services.conversation.orchestrator import WebhookEvent
from services.storage import CallerRole, CallStatus, MessageRole, SpecialistStatus, StorageError
from services.telephony import twilio_service as twiml


def speech(text, call_sid="CA1", from_number="+15550001111"):
    return WebhookEvent(CallSid=call_sid, From=from_number, To="+15559990000",
                        CallStatus="in-progress", SpeechResult=text)


class TestLifecycleEvents:

    @pytest.mark.asyncio
    async def test_connect_creates_call_once_and_greets(self, orchestrator, store):
        event = WebhookEvent(CallSid="CA1", From="+15550001111", CallStatus="in-progress")

        first = await orchestrator.handle_event(event)
        second = await orchestrator.handle_event(event)

        assert twiml.GREETING in first.body
        assert "<Gather" in first.body
        assert second.body == first.body
        assert len(store.calls) == 1

    @pytest.mark.asyncio
    async def test_ringing_greets_without_creating(self, orchestrator, store):
        reply = await orchestrator.handle_event(WebhookEvent(CallSid="CA1", CallStatus="ringing"))

        assert twiml.GREETING in reply.body
        assert store.calls == {}

    @pytest.mark.asyncio
    async def test_terminal_event_is_idempotent(self, orchestrator, store):
        specialist = await store.upsert_caller("+15550100001", CallerRole.SPECIALIST, "Grace")
        await orchestrator.handle_event(speech("I need a therapist"))
        assert (await store.get_caller(specialist.id)).status == SpecialistStatus.BUSY

        terminal = WebhookEvent(CallSid="CA1", CallStatus="completed")
        first = await orchestrator.handle_event(terminal)
        second = await orchestrator.handle_event(terminal)

        assert first.is_empty and second.is_empty
        call = await store.get_call("CA1")
        assert call.status == CallStatus.COMPLETED
        assert (await store.get_caller(specialist.id)).status == SpecialistStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_missing_call_sid(self, orchestrator):
        reply = await orchestrator.handle_event(WebhookEvent(SpeechResult="hello"))

        assert twiml.TECHNICAL_DIFFICULTY in reply.body

    @pytest.mark.asyncio
    async def test_blank_utterance(self, orchestrator, store):
        reply = await orchestrator.handle_event(speech("   "))

        assert twiml.DIDNT_CATCH in reply.body
        assert store.calls == {}


class TestConversationTurns:

    @pytest.mark.asyncio
    async def test_reply_is_spoken(self, orchestrator, chat_llm):
        chat_llm.content = "It's <ok> to feel that way & more"

        reply = await orchestrator.handle_event(speech("I feel low"))

        assert "Its ok to feel that way  more" in reply.body
        assert twiml.NEXT_TOPIC_PROMPT in reply.body

    @pytest.mark.asyncio
    async def test_duplicate_utterance_not_restored_but_answered(self, orchestrator, store, chat_llm):
        chat_llm.delay = 1.0
        orchestrator.engine.timeout_seconds = 0.05

        first = await orchestrator.handle_event(speech("I can't sleep"))
        second = await orchestrator.handle_event(speech("I can't sleep"))

        session = await store.ensure_call("CA1", "+15550001111")
        messages = await store.list_messages(session.conversation.id)
        assert [(m.role, m.content) for m in messages] == [(MessageRole.USER, "I can't sleep")]
        assert "<Response>" in first.body and "<Response>" in second.body

    @pytest.mark.asyncio
    async def test_timeout_speaks_hold_reply_without_escalating(self, orchestrator, store, chat_llm):
        await store.upsert_caller("+15550100001", CallerRole.SPECIALIST, "Grace")
        chat_llm.delay = 1.0
        orchestrator.engine.timeout_seconds = 0.05

        reply = await orchestrator.handle_event(speech("I want to kill myself"))

        assert "taking a bit longer" in reply.body
        assert "<Dial" not in reply.body
        assert store.escalations == {}


class TestEscalation:

    @pytest.mark.asyncio
    async def test_crisis_bridges_to_specialist(self, orchestrator, store):
        specialist = await store.upsert_caller("+15550100001", CallerRole.SPECIALIST, "Grace")

        reply = await orchestrator.handle_event(speech("I think about suicide every day"))

        assert "<Dial" in reply.body
        assert "+15550100001" in reply.body
        escalation = next(iter(store.escalations.values()))
        assert escalation.specialist_id == specialist.id
        assert escalation.notes.startswith("Reason: crisis\nSummary: Conversation summary: 2 messages exchanged.")

    @pytest.mark.asyncio
    async def test_no_specialist_available(self, orchestrator, store):
        reply = await orchestrator.handle_event(speech("Can I speak to a counselor?"))

        assert "currently unavailable" in reply.body
        assert "988" in reply.body
        assert "<Dial" not in reply.body
        assert (await store.get_call("CA1")).status == CallStatus.AI_HANDLING

    @pytest.mark.asyncio
    async def test_escalation_after_call_ended(self, orchestrator, store):
        await store.upsert_caller("+15550100001", CallerRole.SPECIALIST, "Grace")
        await orchestrator.handle_event(WebhookEvent(CallSid="CA1", From="+15550001111", CallStatus="in-progress"))
        await orchestrator.handle_event(WebhookEvent(CallSid="CA1", CallStatus="completed"))

        reply = await orchestrator.handle_event(speech("I need a therapist"))

        assert "currently unavailable" in reply.body
        assert store.escalations == {}

    @pytest.mark.asyncio
    async def test_terminal_before_connect_never_assigns(self, orchestrator, store):
        specialist = await store.upsert_caller("+15550100001", CallerRole.SPECIALIST, "Grace")
        await orchestrator.handle_event(WebhookEvent(CallSid="CA9", CallStatus="completed"))

        reply = await orchestrator.handle_event(speech("I need a therapist", call_sid="CA9"))

        assert "<Dial" not in reply.body
        assert "currently unavailable" in reply.body
        assert (await store.get_call("CA9")).status == CallStatus.COMPLETED
        assert (await store.get_caller(specialist.id)).status == SpecialistStatus.AVAILABLE
        assert store.escalations == {}


class TestDictation:

    @pytest.mark.asyncio
    async def test_heuristic_fallback_saves_entries(self, orchestrator, store, chat_llm):
        teacher = await store.upsert_caller("+15551234567", CallerRole.DICTATION_CALLER, "Teacher")

        reply = await orchestrator.handle_event(speech("Alice: Math 92, Biology 88", from_number="+15551234567"))

        assert "Saved 2 grade(s)." in reply.body
        assert twiml.DICTATION_PROMPT in reply.body
        assert [(r.category, r.value) for r in store.records] == [("Math", 92.0), ("Biology", 88.0)]
        assert [s.name for s in store.subjects.values()] == ["Alice"]
        assert chat_llm.requests == []

        session = await store.ensure_call("CA1", teacher.phone_number)
        messages = await store.list_messages(session.conversation.id)
        assert messages[-1].role == MessageRole.ASSISTANT
        assert messages[-1].content.startswith("Saved 2 grade(s).")

    @pytest.mark.asyncio
    async def test_redelivered_dictation_commits_once(self, orchestrator, store):
        teacher = await store.upsert_caller("+15551234567", CallerRole.DICTATION_CALLER, "Teacher")
        event = speech("Alice: Math 92, Biology 88", from_number="+15551234567")

        first = await orchestrator.handle_event(event)
        second = await orchestrator.handle_event(event)

        assert "Saved 2 grade(s)." in first.body
        assert "Saved 2 grade(s)." in second.body
        assert len(store.records) == 2

        session = await store.ensure_call("CA1", teacher.phone_number)
        messages = await store.list_messages(session.conversation.id)
        assert [m.role for m in messages] == [MessageRole.USER, MessageRole.ASSISTANT]

    @pytest.mark.asyncio
    async def test_llm_entries_with_group_and_missing(self, orchestrator, store, extraction_llm):
        await store.upsert_caller("+15551234567", CallerRole.DICTATION_CALLER, "Teacher")
        extraction_llm.content = (
            '{"className": "10B", "entries": ['
            '{"studentName": "John", "subject": null, "grade": 85},'
            '{"studentName": "Mary", "subject": "Math", "grade": null}],'
            '"missing": [], "assistantReply": null}'
        )

        reply = await orchestrator.handle_event(speech("class 10B John 85, Mary", from_number="+15551234567"))

        assert "Saved 1 grade(s) for class 10B." in reply.body
        assert "mentioned without grades: Mary." in reply.body
        assert [(r.category, r.value) for r in store.records] == [("General", 85.0)]
        assert [s.name for s in store.subjects.values()] == ["John"]
        assert [g.name for g in store.groups.values()] == ["10B"]

    @pytest.mark.asyncio
    async def test_no_entries_falls_through_to_conversation(self, orchestrator, store, chat_llm):
        await store.upsert_caller("+15551234567", CallerRole.DICTATION_CALLER, "Teacher")

        reply = await orchestrator.handle_event(speech("Good morning", from_number="+15551234567"))

        assert "Saved" not in reply.body
        assert len(chat_llm.requests) == 1
        assert store.records == []


class TestStorageFailures:

    @pytest.mark.asyncio
    async def test_storage_error_gives_technical_difficulty(self, orchestrator, store):
        store.append_message_once = AsyncMock(side_effect=StorageError("connection lost"))

        reply = await orchestrator.handle_event(speech("hello"))

        assert twiml.TECHNICAL_DIFFICULTY in reply.body
        assert "<Gather" in reply.body

    @pytest.mark.asyncio
    async def test_unexpected_error_still_returns_document(self, orchestrator):
        orchestrator.engine.respond = AsyncMock(side_effect=ValueError("bug"))

        reply = await orchestrator.handle_event(speech("hello"))

        assert "technical difficulties" in reply.body
        assert reply.body.startswith("<?xml")

    @pytest.mark.asyncio
    async def test_terminal_storage_error_acknowledges(self, orchestrator, store):
        store.complete_call = AsyncMock(side_effect=StorageError("down"))

        reply = await orchestrator.handle_event(WebhookEvent(CallSid="CA1", CallStatus="completed"))

        assert reply.is_empty
