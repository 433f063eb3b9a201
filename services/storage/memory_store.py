"""
=====================================================
Support Line - In-Memory Call Store
=====================================================
Process-local store used when no DATABASE_URL is configured and in
tests. A single asyncio.Lock serializes every operation, which gives
the same atomicity the PostgreSQL store gets from transactions.
"""

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional
from uuid import uuid4

from loguru import logger

from .store_base import (
    Call,
    Caller,
    CallerRole,
    CallSession,
    CallStatus,
    CallStore,
    Conversation,
    DashboardSnapshot,
    DictationGroup,
    DictationSubject,
    Escalation,
    MessageRole,
    RecordDraft,
    RecordEntry,
    SpecialistStatus,
    StoredMessage,
)


def _new_id() -> str:
    return str(uuid4())


class InMemoryCallStore(CallStore):
    """Dict-backed CallStore"""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.callers: Dict[str, Caller] = {}
        self.callers_by_phone: Dict[str, str] = {}
        self.calls: Dict[str, Call] = {}
        self.calls_by_sid: Dict[str, str] = {}
        self.conversations: Dict[str, Conversation] = {}
        self.conversation_by_call: Dict[str, str] = {}
        self.messages: Dict[str, List[StoredMessage]] = {}
        self.escalations: Dict[str, Escalation] = {}
        self.groups: Dict[str, DictationGroup] = {}
        self.subjects: Dict[str, DictationSubject] = {}
        self.records: List[RecordEntry] = []

    # ---- callers ------------------------------------------------

    def _upsert_caller_locked(self, phone_number: str, role: CallerRole, name: Optional[str]) -> Caller:
        caller_id = self.callers_by_phone.get(phone_number)
        if caller_id:
            return self.callers[caller_id]

        now = datetime.now()
        caller = Caller(
            id=_new_id(),
            phone_number=phone_number,
            role=role,
            name=name,
            status=SpecialistStatus.AVAILABLE if role == CallerRole.SPECIALIST else None,
            status_changed_at=now,
            created_at=now,
        )
        self.callers[caller.id] = caller
        self.callers_by_phone[phone_number] = caller.id
        return caller

    async def upsert_caller(
        self,
        phone_number: str,
        role: CallerRole = CallerRole.END_USER,
        name: Optional[str] = None
    ) -> Caller:
        async with self._lock:
            return replace(self._upsert_caller_locked(phone_number, role, name))

    async def get_caller(self, caller_id: str) -> Optional[Caller]:
        async with self._lock:
            caller = self.callers.get(caller_id)
            return replace(caller) if caller else None

    # ---- calls --------------------------------------------------

    async def ensure_call(self, call_sid: str, phone_number: str) -> CallSession:
        async with self._lock:
            created = False
            call_id = self.calls_by_sid.get(call_sid)
            if call_id is None:
                caller = self._upsert_caller_locked(phone_number, CallerRole.END_USER, None)
                call = Call(
                    id=_new_id(),
                    call_sid=call_sid,
                    caller_id=caller.id,
                    status=CallStatus.AI_HANDLING,
                    started_at=datetime.now(),
                )
                self.calls[call.id] = call
                self.calls_by_sid[call_sid] = call.id
                created = True
            else:
                call = self.calls[call_id]
                caller = self.callers[call.caller_id]

            conversation_id = self.conversation_by_call.get(call.id)
            if conversation_id is None:
                conversation = Conversation(
                    id=_new_id(),
                    call_id=call.id,
                    caller_id=caller.id,
                    created_at=datetime.now(),
                )
                self.conversations[conversation.id] = conversation
                self.conversation_by_call[call.id] = conversation.id
                self.messages[conversation.id] = []
            else:
                conversation = self.conversations[conversation_id]

            return CallSession(
                call=replace(call),
                caller=replace(caller),
                conversation=replace(conversation),
                created=created,
            )

    async def get_call(self, call_sid: str) -> Optional[Call]:
        async with self._lock:
            call_id = self.calls_by_sid.get(call_sid)
            return replace(self.calls[call_id]) if call_id else None

    async def complete_call(self, call_sid: str, phone_number: Optional[str] = None) -> Optional[Call]:
        async with self._lock:
            call_id = self.calls_by_sid.get(call_sid)
            if call_id is None:
                if phone_number is None:
                    return None
                caller = self._upsert_caller_locked(phone_number, CallerRole.END_USER, None)
                now = datetime.now()
                call = Call(
                    id=_new_id(),
                    call_sid=call_sid,
                    caller_id=caller.id,
                    status=CallStatus.COMPLETED,
                    started_at=now,
                    ended_at=now,
                )
                self.calls[call.id] = call
                self.calls_by_sid[call_sid] = call.id
                logger.info(f"Store: Call {call_sid} recorded as completed before connect")
                return replace(call)

            call = self.calls[call_id]
            if call.status == CallStatus.COMPLETED:
                return None

            call.status = CallStatus.COMPLETED
            call.ended_at = datetime.now()

            if call.assigned_specialist_id:
                specialist = self.callers.get(call.assigned_specialist_id)
                if specialist and specialist.status == SpecialistStatus.BUSY:
                    specialist.status = SpecialistStatus.AVAILABLE
                    specialist.status_changed_at = datetime.now()
            return replace(call)

    # ---- messages -----------------------------------------------

    def _append_locked(self, conversation_id: str, role: MessageRole, content: str) -> StoredMessage:
        if conversation_id not in self.conversations:
            raise KeyError(f"Unknown conversation {conversation_id}")
        message = StoredMessage(
            id=_new_id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=datetime.now(),
        )
        self.messages[conversation_id].append(message)
        return message

    async def append_message(self, conversation_id: str, role: MessageRole, content: str) -> StoredMessage:
        async with self._lock:
            return replace(self._append_locked(conversation_id, role, content))

    async def append_message_once(self, conversation_id: str, role: MessageRole, content: str) -> bool:
        async with self._lock:
            existing = self.messages.get(conversation_id, [])
            if any(m.role == role and m.content == content for m in existing):
                return False
            self._append_locked(conversation_id, role, content)
            return True

    async def list_messages(self, conversation_id: str) -> List[StoredMessage]:
        async with self._lock:
            return [replace(m) for m in self.messages.get(conversation_id, [])]

    # ---- specialists --------------------------------------------

    def _available_locked(self) -> List[Caller]:
        available = [c for c in self.callers.values() if c.is_available]
        return sorted(available, key=lambda c: (c.status_changed_at, c.created_at))

    async def find_available_specialist(self) -> Optional[Caller]:
        async with self._lock:
            available = self._available_locked()
            return replace(available[0]) if available else None

    async def set_specialist_status(
        self,
        specialist_id: str,
        status: SpecialistStatus,
        expected: Optional[SpecialistStatus] = None
    ) -> bool:
        async with self._lock:
            specialist = self.callers.get(specialist_id)
            if specialist is None or specialist.role != CallerRole.SPECIALIST:
                return False
            if expected is not None and specialist.status != expected:
                return False
            specialist.status = status
            specialist.status_changed_at = datetime.now()
            return True

    async def reserve_specialist_for_call(self, call_id: str, specialist_id: str, notes: str) -> Optional[Escalation]:
        async with self._lock:
            specialist = self.callers.get(specialist_id)
            call = self.calls.get(call_id)
            if specialist is None or not specialist.is_available:
                return None
            if call is None or call.status != CallStatus.AI_HANDLING:
                return None

            now = datetime.now()
            specialist.status = SpecialistStatus.BUSY
            specialist.status_changed_at = now
            call.status = CallStatus.COUNSELOR_ASSIGNED
            call.assigned_specialist_id = specialist_id
            escalation = Escalation(
                id=_new_id(),
                call_id=call_id,
                specialist_id=specialist_id,
                notes=notes,
                created_at=now,
            )
            self.escalations[escalation.id] = escalation
            return replace(escalation)

    async def list_specialists(self) -> List[Caller]:
        async with self._lock:
            specialists = [c for c in self.callers.values() if c.role == CallerRole.SPECIALIST]
            return [replace(c) for c in sorted(specialists, key=lambda c: c.created_at)]

    # ---- dictation ----------------------------------------------

    async def save_records(
        self,
        owner_id: str,
        group_name: Optional[str],
        drafts: List[RecordDraft]
    ) -> List[RecordEntry]:
        async with self._lock:
            group_id = None
            if group_name:
                group = next(
                    (g for g in self.groups.values() if g.owner_id == owner_id and g.name == group_name),
                    None,
                )
                if group is None:
                    group = DictationGroup(id=_new_id(), owner_id=owner_id, name=group_name)
                    self.groups[group.id] = group
                    logger.info(f"Store: Created group '{group_name}' for owner {owner_id}")
                group_id = group.id

            saved: List[RecordEntry] = []
            for draft in drafts:
                subject = next(
                    (s for s in self.subjects.values() if s.name == draft.subject_name and s.group_id == group_id),
                    None,
                )
                if subject is None:
                    subject = DictationSubject(id=_new_id(), name=draft.subject_name, group_id=group_id)
                    self.subjects[subject.id] = subject
                record = RecordEntry(
                    id=_new_id(),
                    subject_id=subject.id,
                    category=draft.category,
                    value=draft.value,
                    created_at=datetime.now(),
                )
                self.records.append(record)
                saved.append(replace(record))
            return saved

    # ---- dashboard ----------------------------------------------

    async def dashboard_snapshot(self) -> DashboardSnapshot:
        async with self._lock:
            calls = sorted(self.calls.values(), key=lambda c: c.started_at, reverse=True)
            escalation_by_call = {e.call_id: e for e in self.escalations.values()}
            snapshot = DashboardSnapshot()

            for call in calls:
                caller = self.callers.get(call.caller_id)
                entry = call.to_dict()
                entry["caller"] = caller.to_dict() if caller else None
                if call.status == CallStatus.AI_HANDLING:
                    conversation_id = self.conversation_by_call.get(call.id)
                    recent = self.messages.get(conversation_id, [])[-5:] if conversation_id else []
                    entry["recent_messages"] = [m.to_dict() for m in reversed(recent)]
                    snapshot.ongoing_calls.append(entry)
                elif len(snapshot.call_logs) < 50:
                    escalation = escalation_by_call.get(call.id)
                    if escalation:
                        specialist = self.callers.get(escalation.specialist_id)
                        entry["escalation"] = escalation.to_dict()
                        entry["escalation"]["specialist"] = specialist.to_dict() if specialist else None
                    snapshot.call_logs.append(entry)

            today = datetime.now().date()
            snapshot.completed_today = sum(
                1 for c in calls
                if c.status != CallStatus.AI_HANDLING and c.started_at and c.started_at.date() == today
            )

            recent_escalations = sorted(self.escalations.values(), key=lambda e: e.created_at, reverse=True)[:20]
            for escalation in recent_escalations:
                entry = escalation.to_dict()
                specialist = self.callers.get(escalation.specialist_id)
                entry["specialist"] = specialist.to_dict() if specialist else None
                snapshot.escalations.append(entry)
            snapshot.total_escalations = len(self.escalations)
            return snapshot
