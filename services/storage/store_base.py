"""
=====================================================
Support Line - Call Store Interface
=====================================================
Records and the abstract storage contract shared by the
PostgreSQL and in-memory implementations.

Every method that reads shared state and then writes it runs
atomically inside the store (transaction or store lock), so
concurrent webhook deliveries never act on the same precondition.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class StorageError(Exception):
    """Raised when the backing store fails to read or write"""


class CallerRole(str, Enum):
    """Roles a caller can have"""
    END_USER = "end_user"
    DICTATION_CALLER = "dictation_caller"
    SPECIALIST = "specialist"


class SpecialistStatus(str, Enum):
    """Availability of a specialist"""
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class CallStatus(str, Enum):
    """Lifecycle of a call. Transitions never leave COMPLETED."""
    AI_HANDLING = "ai_handling"
    COUNSELOR_ASSIGNED = "counselor_assigned"
    COMPLETED = "completed"


class MessageRole(str, Enum):
    """Author of a stored conversation message"""
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Caller:
    """A phone identity; specialists carry an availability status"""
    id: str
    phone_number: str
    role: CallerRole = CallerRole.END_USER
    name: Optional[str] = None
    status: Optional[SpecialistStatus] = None
    status_changed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_available(self) -> bool:
        return self.role == CallerRole.SPECIALIST and self.status == SpecialistStatus.AVAILABLE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phone_number": self.phone_number,
            "name": self.name,
            "role": self.role.value,
            "status": self.status.value if self.status else None,
            "is_available": self.is_available,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class Call:
    """One telephony session keyed by the gateway call SID"""
    id: str
    call_sid: str
    caller_id: str
    status: CallStatus = CallStatus.AI_HANDLING
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    assigned_specialist_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "call_sid": self.call_sid,
            "caller_id": self.caller_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "assigned_specialist_id": self.assigned_specialist_id,
        }


@dataclass
class Conversation:
    """Message thread attached one-to-one to a call"""
    id: str
    call_id: str
    caller_id: str
    created_at: Optional[datetime] = None


@dataclass
class StoredMessage:
    """Append-only conversation message"""
    id: str
    conversation_id: str
    role: MessageRole
    content: str
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class Escalation:
    """Immutable record of one hand-off to a specialist"""
    id: str
    call_id: str
    specialist_id: str
    notes: str
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "call_id": self.call_id,
            "specialist_id": self.specialist_id,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class DictationGroup:
    """Classroom owned by a dictation caller, unique by name per owner"""
    id: str
    owner_id: str
    name: str


@dataclass
class DictationSubject:
    """Student within a group (or without one)"""
    id: str
    name: str
    group_id: Optional[str] = None


@dataclass
class RecordEntry:
    """One accepted score"""
    id: str
    subject_id: str
    category: str
    value: float
    created_at: Optional[datetime] = None


@dataclass
class RecordDraft:
    """An entry that passed validation and is ready to commit"""
    subject_name: str
    category: str
    value: float


@dataclass
class CallSession:
    """Call with its caller and conversation, as resolved for one event"""
    call: Call
    caller: Caller
    conversation: Conversation
    created: bool = False


@dataclass
class DashboardSnapshot:
    """Operator view of current and recent activity"""
    ongoing_calls: List[Dict[str, Any]] = field(default_factory=list)
    call_logs: List[Dict[str, Any]] = field(default_factory=list)
    escalations: List[Dict[str, Any]] = field(default_factory=list)
    completed_today: int = 0
    total_escalations: int = 0

    def to_dict(self) -> dict:
        return {
            "ongoing_calls": self.ongoing_calls,
            "call_logs": self.call_logs,
            "escalations": self.escalations,
            "stats": {
                "completed_today": self.completed_today,
                "total_escalations": self.total_escalations,
            },
        }


class CallStore(ABC):
    """
    Abstract storage for callers, calls, conversations, escalations
    and dictated records.
    """

    # ---- callers ------------------------------------------------

    @abstractmethod
    async def upsert_caller(
        self,
        phone_number: str,
        role: CallerRole = CallerRole.END_USER,
        name: Optional[str] = None
    ) -> Caller:
        """
        Insert a caller by phone or return the existing one unchanged.

        Specialists are created as AVAILABLE.
        """

    @abstractmethod
    async def get_caller(self, caller_id: str) -> Optional[Caller]:
        """Fetch a caller by id"""

    # ---- calls --------------------------------------------------

    @abstractmethod
    async def ensure_call(self, call_sid: str, phone_number: str) -> CallSession:
        """
        Resolve or create caller, call and conversation for a call SID.

        Safe under duplicate and concurrent delivery: exactly one call
        and one conversation exist per SID afterwards.
        """

    @abstractmethod
    async def get_call(self, call_sid: str) -> Optional[Call]:
        """Fetch a call by gateway SID"""

    @abstractmethod
    async def complete_call(self, call_sid: str, phone_number: Optional[str] = None) -> Optional[Call]:
        """
        Mark a call completed and release its specialist.

        A terminal event can arrive before the call was ever connected.
        When phone_number is given, an unknown SID is recorded as an
        already completed call so later deliveries for it find it closed.

        Returns:
            The completed call if this invocation made the transition,
            None if the call is already completed (or unknown and no
            phone_number was given).
        """

    # ---- messages -----------------------------------------------

    @abstractmethod
    async def append_message(self, conversation_id: str, role: MessageRole, content: str) -> StoredMessage:
        """Append a message unconditionally"""

    @abstractmethod
    async def append_message_once(self, conversation_id: str, role: MessageRole, content: str) -> bool:
        """
        Append a message unless an identical one (same role and content)
        already exists anywhere in the conversation.

        Returns:
            True if inserted
        """

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> List[StoredMessage]:
        """All messages of a conversation in insertion order"""

    # ---- specialists --------------------------------------------

    @abstractmethod
    async def find_available_specialist(self) -> Optional[Caller]:
        """Longest-idle available specialist, or None"""

    @abstractmethod
    async def set_specialist_status(
        self,
        specialist_id: str,
        status: SpecialistStatus,
        expected: Optional[SpecialistStatus] = None
    ) -> bool:
        """
        Change a specialist's status.

        When ``expected`` is given the change is a compare-and-set and only
        happens if the current status equals it.

        Returns:
            True if the row changed
        """

    @abstractmethod
    async def reserve_specialist_for_call(self, call_id: str, specialist_id: str, notes: str) -> Optional[Escalation]:
        """
        Atomically: specialist available→busy, call ai_handling→counselor_assigned,
        insert the escalation. Nothing changes if either precondition fails.

        Returns:
            The escalation, or None if the reservation lost a race
        """

    @abstractmethod
    async def list_specialists(self) -> List[Caller]:
        """All specialists in creation order"""

    # ---- dictation ----------------------------------------------

    @abstractmethod
    async def save_records(
        self,
        owner_id: str,
        group_name: Optional[str],
        drafts: List[RecordDraft]
    ) -> List[RecordEntry]:
        """
        Commit drafts in one transaction. The group is created on first
        reference per owner and reused afterwards; subjects are looked up
        by name within the group.
        """

    # ---- dashboard ----------------------------------------------

    @abstractmethod
    async def dashboard_snapshot(self) -> DashboardSnapshot:
        """Ongoing calls, recent call log, escalations and daily stats"""

    async def close(self) -> None:
        """Release resources held by the store"""
