import asyncio

import pytest

from services.storage import (
    CallerRole,
    CallStatus,
    MessageRole,
    RecordDraft,
    SpecialistStatus,
)


class TestCallLifecycle:
    """Idempotent connect and terminal handling"""

    @pytest.mark.asyncio
    async def test_duplicate_connect_creates_one_call(self, store):
        results = await asyncio.gather(*[store.ensure_call("CA1", "+15550001111") for _ in range(5)])

        assert sum(1 for session in results if session.created) == 1
        assert len({session.call.id for session in results}) == 1
        assert len({session.conversation.id for session in results}) == 1
        assert len(store.calls) == 1
        assert len(store.callers) == 1

    @pytest.mark.asyncio
    async def test_complete_call_applies_once(self, store):
        await store.ensure_call("CA1", "+15550001111")

        first = await store.complete_call("CA1")
        second = await store.complete_call("CA1")

        assert first is not None
        assert first.status == CallStatus.COMPLETED
        assert first.ended_at is not None
        assert second is None

    @pytest.mark.asyncio
    async def test_complete_unknown_call_without_caller(self, store):
        assert await store.complete_call("CA-missing") is None
        assert store.calls == {}

    @pytest.mark.asyncio
    async def test_terminal_before_connect_records_closed_call(self, store):
        first = await store.complete_call("CA9", "+15550001111")
        second = await store.complete_call("CA9", "+15550001111")
        session = await store.ensure_call("CA9", "+15550001111")

        assert first.status == CallStatus.COMPLETED
        assert second is None
        assert session.created is False
        assert session.call.status == CallStatus.COMPLETED
        assert len(store.calls) == 1

    @pytest.mark.asyncio
    async def test_complete_call_releases_specialist(self, store):
        specialist = await store.upsert_caller("+15550100001", CallerRole.SPECIALIST, "Grace")
        session = await store.ensure_call("CA1", "+15550001111")
        assert await store.reserve_specialist_for_call(session.call.id, specialist.id, "notes")

        await store.complete_call("CA1")

        released = await store.get_caller(specialist.id)
        assert released.status == SpecialistStatus.AVAILABLE


class TestMessages:
    """Duplicate message protection"""

    @pytest.mark.asyncio
    async def test_duplicate_utterance_stored_once(self, store):
        session = await store.ensure_call("CA1", "+15550001111")
        conversation_id = session.conversation.id

        stored = await asyncio.gather(*[
            store.append_message_once(conversation_id, MessageRole.USER, "I feel anxious")
            for _ in range(3)
        ])

        assert sorted(stored) == [False, False, True]
        assert len(await store.list_messages(conversation_id)) == 1

    @pytest.mark.asyncio
    async def test_redelivery_after_reply_not_stored_again(self, store):
        session = await store.ensure_call("CA1", "+15550001111")
        conversation_id = session.conversation.id

        await store.append_message_once(conversation_id, MessageRole.USER, "yes")
        await store.append_message(conversation_id, MessageRole.ASSISTANT, "Do you want to keep talking?")
        stored = await store.append_message_once(conversation_id, MessageRole.USER, "yes")

        assert stored is False
        assert [m.content for m in await store.list_messages(conversation_id)] == [
            "yes", "Do you want to keep talking?"
        ]


class TestRecords:
    """Dictation groups and subjects"""

    @pytest.mark.asyncio
    async def test_group_and_subject_reused(self, store):
        owner = await store.upsert_caller("+15551234567", CallerRole.DICTATION_CALLER, "Teacher")

        await store.save_records(owner.id, "10B", [RecordDraft("Alice", "Math", 92.0)])
        await store.save_records(owner.id, "10B", [RecordDraft("Alice", "Biology", 88.0)])

        assert len(store.groups) == 1
        assert len(store.subjects) == 1
        assert [(r.category, r.value) for r in store.records] == [("Math", 92.0), ("Biology", 88.0)]

    @pytest.mark.asyncio
    async def test_groups_are_per_owner(self, store):
        first = await store.upsert_caller("+15551230001", CallerRole.DICTATION_CALLER)
        second = await store.upsert_caller("+15551230002", CallerRole.DICTATION_CALLER)

        await store.save_records(first.id, "10B", [RecordDraft("Alice", "Math", 92.0)])
        await store.save_records(second.id, "10B", [RecordDraft("Alice", "Math", 75.0)])

        assert len(store.groups) == 2
        assert len(store.subjects) == 2


class TestDashboardSnapshot:

    @pytest.mark.asyncio
    async def test_ongoing_and_completed(self, store):
        session = await store.ensure_call("CA1", "+15550001111")
        await store.append_message(session.conversation.id, MessageRole.USER, "hello")
        await store.ensure_call("CA2", "+15550002222")
        await store.complete_call("CA2")

        snapshot = (await store.dashboard_snapshot()).to_dict()

        assert [c["call_sid"] for c in snapshot["ongoing_calls"]] == ["CA1"]
        assert snapshot["ongoing_calls"][0]["recent_messages"][0]["content"] == "hello"
        assert [c["call_sid"] for c in snapshot["call_logs"]] == ["CA2"]
        assert snapshot["stats"]["completed_today"] == 1
        assert snapshot["stats"]["total_escalations"] == 0
