"""
=====================================================
Support Line - PostgreSQL Call Store
=====================================================
asyncpg-backed CallStore. Read-then-write operations run in a single
transaction and use either a row lock (SELECT ... FOR UPDATE) or a
compare-and-set UPDATE (... WHERE status = $n RETURNING) so two
concurrent webhook deliveries cannot both act on one precondition.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional
from uuid import UUID

import asyncpg
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
    Escalation,
    MessageRole,
    RecordDraft,
    RecordEntry,
    SpecialistStatus,
    StorageError,
    StoredMessage,
)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS callers (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    phone_number TEXT NOT NULL UNIQUE,
    name TEXT,
    role TEXT NOT NULL DEFAULT 'end_user'
        CHECK (role IN ('end_user', 'dictation_caller', 'specialist')),
    status TEXT CHECK (status IN ('available', 'busy', 'offline')),
    status_changed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS calls (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    call_sid TEXT NOT NULL UNIQUE,
    caller_id UUID NOT NULL REFERENCES callers(id),
    status TEXT NOT NULL DEFAULT 'ai_handling'
        CHECK (status IN ('ai_handling', 'counselor_assigned', 'completed')),
    started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    ended_at TIMESTAMPTZ,
    assigned_specialist_id UUID REFERENCES callers(id)
);

CREATE TABLE IF NOT EXISTS conversations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    call_id UUID NOT NULL UNIQUE REFERENCES calls(id),
    caller_id UUID NOT NULL REFERENCES callers(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS messages (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    seq BIGSERIAL,
    conversation_id UUID NOT NULL REFERENCES conversations(id),
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS messages_conversation_seq_idx ON messages (conversation_id, seq);

CREATE TABLE IF NOT EXISTS escalations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    call_id UUID NOT NULL UNIQUE REFERENCES calls(id),
    specialist_id UUID NOT NULL REFERENCES callers(id),
    notes TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS dictation_groups (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    owner_id UUID NOT NULL REFERENCES callers(id),
    name TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (owner_id, name)
);

CREATE TABLE IF NOT EXISTS dictation_subjects (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    group_id UUID REFERENCES dictation_groups(id),
    name TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS record_entries (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    subject_id UUID NOT NULL REFERENCES dictation_subjects(id),
    category TEXT NOT NULL,
    value DOUBLE PRECISION NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def _as_uuid(value: str) -> Optional[UUID]:
    """Parse an id coming from outside; malformed ids match nothing"""
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _str_or_none(value) -> Optional[str]:
    return str(value) if value is not None else None


def _caller_from_row(row) -> Caller:
    return Caller(
        id=str(row["id"]),
        phone_number=row["phone_number"],
        role=CallerRole(row["role"]),
        name=row["name"],
        status=SpecialistStatus(row["status"]) if row["status"] else None,
        status_changed_at=row["status_changed_at"],
        created_at=row["created_at"],
    )


def _call_from_row(row) -> Call:
    return Call(
        id=str(row["id"]),
        call_sid=row["call_sid"],
        caller_id=str(row["caller_id"]),
        status=CallStatus(row["status"]),
        started_at=row["started_at"],
        ended_at=row["ended_at"],
        assigned_specialist_id=_str_or_none(row["assigned_specialist_id"]),
    )


def _conversation_from_row(row) -> Conversation:
    return Conversation(
        id=str(row["id"]),
        call_id=str(row["call_id"]),
        caller_id=str(row["caller_id"]),
        created_at=row["created_at"],
    )


def _message_from_row(row) -> StoredMessage:
    return StoredMessage(
        id=str(row["id"]),
        conversation_id=str(row["conversation_id"]),
        role=MessageRole(row["role"]),
        content=row["content"],
        created_at=row["created_at"],
    )


def _escalation_from_row(row) -> Escalation:
    return Escalation(
        id=str(row["id"]),
        call_id=str(row["call_id"]),
        specialist_id=str(row["specialist_id"]),
        notes=row["notes"],
        created_at=row["created_at"],
    )


class PostgresCallStore(CallStore):
    """CallStore over a shared asyncpg pool"""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection; driver failures surface as StorageError"""
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Store: {operation} failed: {e}")
            raise StorageError(f"{operation} failed: {e}") from e

    async def ensure_schema(self) -> None:
        """Create tables if they do not exist"""
        async with self._connection("ensure_schema") as conn:
            await conn.execute(SCHEMA_SQL)
        logger.info("Store: Schema ensured")

    # ---- callers ------------------------------------------------

    async def _upsert_caller(
        self,
        conn: asyncpg.Connection,
        phone_number: str,
        role: CallerRole,
        name: Optional[str]
    ):
        status = SpecialistStatus.AVAILABLE.value if role == CallerRole.SPECIALIST else None
        row = await conn.fetchrow(
            """
            INSERT INTO callers (phone_number, role, name, status)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT (phone_number) DO NOTHING
            RETURNING *
            """,
            phone_number, role.value, name, status,
        )
        if row is None:
            row = await conn.fetchrow("SELECT * FROM callers WHERE phone_number = $1", phone_number)
        return row

    async def upsert_caller(
        self,
        phone_number: str,
        role: CallerRole = CallerRole.END_USER,
        name: Optional[str] = None
    ) -> Caller:
        async with self._connection("upsert_caller") as conn:
            row = await self._upsert_caller(conn, phone_number, role, name)
        return _caller_from_row(row)

    async def get_caller(self, caller_id: str) -> Optional[Caller]:
        caller_uuid = _as_uuid(caller_id)
        if caller_uuid is None:
            return None
        async with self._connection("get_caller") as conn:
            row = await conn.fetchrow("SELECT * FROM callers WHERE id = $1", caller_uuid)
        return _caller_from_row(row) if row else None

    # ---- calls --------------------------------------------------

    async def ensure_call(self, call_sid: str, phone_number: str) -> CallSession:
        async with self._connection("ensure_call") as conn:
            async with conn.transaction():
                created = False
                call_row = await conn.fetchrow("SELECT * FROM calls WHERE call_sid = $1", call_sid)
                if call_row is None:
                    caller_row = await self._upsert_caller(conn, phone_number, CallerRole.END_USER, None)
                    call_row = await conn.fetchrow(
                        """
                        INSERT INTO calls (call_sid, caller_id, status)
                        VALUES ($1, $2, 'ai_handling')
                        ON CONFLICT (call_sid) DO NOTHING
                        RETURNING *
                        """,
                        call_sid, caller_row["id"],
                    )
                    if call_row is None:
                        # A concurrent delivery created it first
                        call_row = await conn.fetchrow("SELECT * FROM calls WHERE call_sid = $1", call_sid)
                    else:
                        created = True

                caller_row = await conn.fetchrow("SELECT * FROM callers WHERE id = $1", call_row["caller_id"])

                conversation_row = await conn.fetchrow(
                    """
                    INSERT INTO conversations (call_id, caller_id)
                    VALUES ($1, $2)
                    ON CONFLICT (call_id) DO NOTHING
                    RETURNING *
                    """,
                    call_row["id"], call_row["caller_id"],
                )
                if conversation_row is None:
                    conversation_row = await conn.fetchrow(
                        "SELECT * FROM conversations WHERE call_id = $1", call_row["id"]
                    )

        return CallSession(
            call=_call_from_row(call_row),
            caller=_caller_from_row(caller_row),
            conversation=_conversation_from_row(conversation_row),
            created=created,
        )

    async def get_call(self, call_sid: str) -> Optional[Call]:
        async with self._connection("get_call") as conn:
            row = await conn.fetchrow("SELECT * FROM calls WHERE call_sid = $1", call_sid)
        return _call_from_row(row) if row else None

    async def _complete_existing(self, conn: asyncpg.Connection, call_sid: str):
        return await conn.fetchrow(
            """
            UPDATE calls
            SET status = 'completed', ended_at = NOW()
            WHERE call_sid = $1 AND status <> 'completed'
            RETURNING *
            """,
            call_sid,
        )

    async def complete_call(self, call_sid: str, phone_number: Optional[str] = None) -> Optional[Call]:
        async with self._connection("complete_call") as conn:
            async with conn.transaction():
                row = await self._complete_existing(conn, call_sid)
                if row is None:
                    if phone_number is None:
                        return None
                    known = await conn.fetchval("SELECT 1 FROM calls WHERE call_sid = $1", call_sid)
                    if known:
                        return None
                    caller_row = await self._upsert_caller(conn, phone_number, CallerRole.END_USER, None)
                    row = await conn.fetchrow(
                        """
                        INSERT INTO calls (call_sid, caller_id, status, ended_at)
                        VALUES ($1, $2, 'completed', NOW())
                        ON CONFLICT (call_sid) DO NOTHING
                        RETURNING *
                        """,
                        call_sid, caller_row["id"],
                    )
                    if row is None:
                        # A concurrent connect created it first
                        row = await self._complete_existing(conn, call_sid)
                    if row is None:
                        return None
                if row["assigned_specialist_id"] is not None:
                    await conn.execute(
                        """
                        UPDATE callers
                        SET status = 'available', status_changed_at = NOW()
                        WHERE id = $1 AND status = 'busy'
                        """,
                        row["assigned_specialist_id"],
                    )
        return _call_from_row(row)

    # ---- messages -----------------------------------------------

    async def append_message(self, conversation_id: str, role: MessageRole, content: str) -> StoredMessage:
        async with self._connection("append_message") as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO messages (conversation_id, role, content)
                VALUES ($1, $2, $3)
                RETURNING *
                """,
                UUID(conversation_id), role.value, content,
            )
        return _message_from_row(row)

    async def append_message_once(self, conversation_id: str, role: MessageRole, content: str) -> bool:
        conversation_uuid = UUID(conversation_id)
        async with self._connection("append_message_once") as conn:
            async with conn.transaction():
                # Serializes dedupe-then-insert per conversation
                await conn.execute(
                    "SELECT id FROM conversations WHERE id = $1 FOR UPDATE", conversation_uuid
                )
                exists = await conn.fetchval(
                    """
                    SELECT 1 FROM messages
                    WHERE conversation_id = $1
                      AND role = $2
                      AND content = $3
                    LIMIT 1
                    """,
                    conversation_uuid, role.value, content,
                )
                if exists:
                    return False
                await conn.execute(
                    "INSERT INTO messages (conversation_id, role, content) VALUES ($1, $2, $3)",
                    conversation_uuid, role.value, content,
                )
        return True

    async def list_messages(self, conversation_id: str) -> List[StoredMessage]:
        async with self._connection("list_messages") as conn:
            rows = await conn.fetch(
                "SELECT * FROM messages WHERE conversation_id = $1 ORDER BY seq",
                UUID(conversation_id),
            )
        return [_message_from_row(row) for row in rows]

    # ---- specialists --------------------------------------------

    async def find_available_specialist(self) -> Optional[Caller]:
        async with self._connection("find_available_specialist") as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM callers
                WHERE role = 'specialist' AND status = 'available'
                ORDER BY status_changed_at, created_at
                LIMIT 1
                """
            )
        return _caller_from_row(row) if row else None

    async def set_specialist_status(
        self,
        specialist_id: str,
        status: SpecialistStatus,
        expected: Optional[SpecialistStatus] = None
    ) -> bool:
        specialist_uuid = _as_uuid(specialist_id)
        if specialist_uuid is None:
            return False
        async with self._connection("set_specialist_status") as conn:
            updated = await conn.fetchval(
                """
                UPDATE callers
                SET status = $2, status_changed_at = NOW()
                WHERE id = $1
                  AND role = 'specialist'
                  AND ($3::text IS NULL OR status = $3::text)
                RETURNING id
                """,
                specialist_uuid, status.value, expected.value if expected else None,
            )
        return updated is not None

    async def reserve_specialist_for_call(self, call_id: str, specialist_id: str, notes: str) -> Optional[Escalation]:
        call_uuid = UUID(call_id)
        specialist_uuid = UUID(specialist_id)
        async with self._connection("reserve_specialist_for_call") as conn:
            async with conn.transaction():
                call_status = await conn.fetchval(
                    "SELECT status FROM calls WHERE id = $1 FOR UPDATE", call_uuid
                )
                if call_status != CallStatus.AI_HANDLING.value:
                    return None

                reserved = await conn.fetchval(
                    """
                    UPDATE callers
                    SET status = 'busy', status_changed_at = NOW()
                    WHERE id = $1 AND role = 'specialist' AND status = 'available'
                    RETURNING id
                    """,
                    specialist_uuid,
                )
                if reserved is None:
                    return None

                await conn.execute(
                    """
                    UPDATE calls
                    SET status = 'counselor_assigned', assigned_specialist_id = $2
                    WHERE id = $1
                    """,
                    call_uuid, specialist_uuid,
                )
                row = await conn.fetchrow(
                    """
                    INSERT INTO escalations (call_id, specialist_id, notes)
                    VALUES ($1, $2, $3)
                    RETURNING *
                    """,
                    call_uuid, specialist_uuid, notes,
                )
        return _escalation_from_row(row)

    async def list_specialists(self) -> List[Caller]:
        async with self._connection("list_specialists") as conn:
            rows = await conn.fetch(
                "SELECT * FROM callers WHERE role = 'specialist' ORDER BY created_at"
            )
        return [_caller_from_row(row) for row in rows]

    # ---- dictation ----------------------------------------------

    async def save_records(
        self,
        owner_id: str,
        group_name: Optional[str],
        drafts: List[RecordDraft]
    ) -> List[RecordEntry]:
        saved: List[RecordEntry] = []
        async with self._connection("save_records") as conn:
            async with conn.transaction():
                group_id = None
                if group_name:
                    group_id = await conn.fetchval(
                        """
                        INSERT INTO dictation_groups (owner_id, name)
                        VALUES ($1, $2)
                        ON CONFLICT (owner_id, name) DO UPDATE SET name = EXCLUDED.name
                        RETURNING id
                        """,
                        UUID(owner_id), group_name,
                    )

                for draft in drafts:
                    subject_id = await conn.fetchval(
                        """
                        SELECT id FROM dictation_subjects
                        WHERE name = $1 AND group_id IS NOT DISTINCT FROM $2
                        ORDER BY created_at
                        LIMIT 1
                        """,
                        draft.subject_name, group_id,
                    )
                    if subject_id is None:
                        subject_id = await conn.fetchval(
                            "INSERT INTO dictation_subjects (group_id, name) VALUES ($1, $2) RETURNING id",
                            group_id, draft.subject_name,
                        )
                    row = await conn.fetchrow(
                        """
                        INSERT INTO record_entries (subject_id, category, value)
                        VALUES ($1, $2, $3)
                        RETURNING *
                        """,
                        subject_id, draft.category, float(draft.value),
                    )
                    saved.append(RecordEntry(
                        id=str(row["id"]),
                        subject_id=str(row["subject_id"]),
                        category=row["category"],
                        value=row["value"],
                        created_at=row["created_at"],
                    ))
        return saved

    # ---- dashboard ----------------------------------------------

    async def dashboard_snapshot(self) -> DashboardSnapshot:
        snapshot = DashboardSnapshot()
        async with self._connection("dashboard_snapshot") as conn:
            ongoing = await conn.fetch(
                """
                SELECT c.*, cv.id AS conversation_id
                FROM calls c
                LEFT JOIN conversations cv ON cv.call_id = c.id
                WHERE c.status = 'ai_handling'
                ORDER BY c.started_at DESC
                """
            )
            for row in ongoing:
                entry = _call_from_row(row).to_dict()
                caller_row = await conn.fetchrow("SELECT * FROM callers WHERE id = $1", row["caller_id"])
                entry["caller"] = _caller_from_row(caller_row).to_dict() if caller_row else None
                recent = []
                if row["conversation_id"] is not None:
                    recent = await conn.fetch(
                        """
                        SELECT * FROM messages WHERE conversation_id = $1
                        ORDER BY seq DESC LIMIT 5
                        """,
                        row["conversation_id"],
                    )
                entry["recent_messages"] = [_message_from_row(m).to_dict() for m in recent]
                snapshot.ongoing_calls.append(entry)

            logs = await conn.fetch(
                """
                SELECT c.*, e.id AS escalation_id
                FROM calls c
                LEFT JOIN escalations e ON e.call_id = c.id
                WHERE c.status <> 'ai_handling'
                ORDER BY c.started_at DESC
                LIMIT 50
                """
            )
            for row in logs:
                entry = _call_from_row(row).to_dict()
                caller_row = await conn.fetchrow("SELECT * FROM callers WHERE id = $1", row["caller_id"])
                entry["caller"] = _caller_from_row(caller_row).to_dict() if caller_row else None
                if row["escalation_id"] is not None:
                    escalation_row = await conn.fetchrow(
                        "SELECT * FROM escalations WHERE id = $1", row["escalation_id"]
                    )
                    specialist_row = await conn.fetchrow(
                        "SELECT * FROM callers WHERE id = $1", escalation_row["specialist_id"]
                    )
                    entry["escalation"] = _escalation_from_row(escalation_row).to_dict()
                    entry["escalation"]["specialist"] = (
                        _caller_from_row(specialist_row).to_dict() if specialist_row else None
                    )
                snapshot.call_logs.append(entry)

            escalations = await conn.fetch(
                "SELECT * FROM escalations ORDER BY created_at DESC LIMIT 20"
            )
            for row in escalations:
                entry = _escalation_from_row(row).to_dict()
                specialist_row = await conn.fetchrow("SELECT * FROM callers WHERE id = $1", row["specialist_id"])
                entry["specialist"] = _caller_from_row(specialist_row).to_dict() if specialist_row else None
                snapshot.escalations.append(entry)

            snapshot.completed_today = await conn.fetchval(
                """
                SELECT COUNT(*) FROM calls
                WHERE status <> 'ai_handling' AND started_at >= date_trunc('day', NOW())
                """
            )
            snapshot.total_escalations = await conn.fetchval("SELECT COUNT(*) FROM escalations")
        return snapshot

    async def close(self) -> None:
        from services.database import close_db_pool
        await close_db_pool()
