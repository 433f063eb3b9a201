"""
=====================================================
Support Line - Specialist Directory
=====================================================
Shared pool of human specialists. Availability lives in the store;
reservation is a compare-and-set there, never an in-process flag.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger

from services.storage import (
    Call,
    Caller,
    CallerRole,
    CallStatus,
    CallStore,
    Escalation,
    SpecialistStatus,
)


class AssignmentOutcome(Enum):
    """Result of trying to hand a call to a specialist"""
    ASSIGNED = "assigned"
    ALREADY_ASSIGNED = "already_assigned"
    NONE_AVAILABLE = "none_available"
    CALL_CLOSED = "call_closed"


@dataclass
class Assignment:
    """Assignment decision for one escalation"""
    outcome: AssignmentOutcome
    specialist: Optional[Caller] = None
    escalation: Optional[Escalation] = None

    @property
    def should_bridge(self) -> bool:
        return self.specialist is not None and self.outcome in (
            AssignmentOutcome.ASSIGNED,
            AssignmentOutcome.ALREADY_ASSIGNED,
        )


class SpecialistDirectory:
    """
    Finds, reserves and releases specialists.

    The roster (names and phone numbers) can be seeded from a YAML file
    so new specialists can be added without code changes.
    """

    def __init__(self, store: CallStore, roster_path: Optional[str] = None, max_attempts: int = 3):
        """
        Initialize specialist directory

        Args:
            store: Backing call store
            roster_path: Path to a specialists YAML file; None or empty seeds nothing
            max_attempts: Lookups to try when a reservation loses a race
        """
        self.store = store
        self.roster_path = roster_path
        self.max_attempts = max(1, max_attempts)

    # ---- roster -------------------------------------------------

    def load_roster(self) -> List[Dict[str, Any]]:
        """Read specialist entries from the roster YAML file"""
        if not self.roster_path:
            logger.info("Specialists: No roster configured")
            return []
        if not os.path.exists(self.roster_path):
            logger.warning(f"Specialists: Roster not found: {self.roster_path}")
            return []

        with open(self.roster_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        roster = []
        for entry in data.get('specialists', []):
            if not entry.get('phone'):
                logger.warning(f"Specialists: Skipping roster entry without phone: {entry}")
                continue
            roster.append(entry)
        return roster

    async def seed_roster(self) -> List[Caller]:
        """Register every roster entry as a specialist (idempotent)"""
        seeded = []
        for entry in self.load_roster():
            caller = await self.store.upsert_caller(
                str(entry['phone']),
                CallerRole.SPECIALIST,
                entry.get('name'),
            )
            if caller.role != CallerRole.SPECIALIST:
                logger.warning(
                    f"Specialists: {entry['phone']} is already a {caller.role.value}, not seeding"
                )
                continue
            seeded.append(caller)
        logger.info(f"Specialists: Seeded {len(seeded)} specialists from {self.roster_path}")
        return seeded

    # ---- availability -------------------------------------------

    async def find_one_available(self) -> Optional[Caller]:
        """The longest-idle available specialist, if any"""
        return await self.store.find_available_specialist()

    async def reserve(self, specialist_id: str) -> bool:
        """available → busy; False if someone else got there first"""
        return await self.store.set_specialist_status(
            specialist_id, SpecialistStatus.BUSY, expected=SpecialistStatus.AVAILABLE
        )

    async def release(self, specialist_id: str) -> bool:
        """busy → available"""
        return await self.store.set_specialist_status(
            specialist_id, SpecialistStatus.AVAILABLE, expected=SpecialistStatus.BUSY
        )

    async def set_status(self, specialist_id: str, status: SpecialistStatus) -> bool:
        """Operator status change; False if the specialist is unknown"""
        changed = await self.store.set_specialist_status(specialist_id, status)
        if changed:
            logger.info(f"Specialists: {specialist_id} set to {status.value}")
        return changed

    async def list_specialists(self) -> List[Caller]:
        return await self.store.list_specialists()

    # ---- escalation ---------------------------------------------

    async def assign_to_call(self, call_sid: str, notes: str) -> Assignment:
        """
        Hand a call to one available specialist.

        Lookup and reservation are separate steps, so a concurrent
        escalation can take the specialist in between. The reservation
        is atomic in the store; on a lost race the lookup is re-run.
        """
        for attempt in range(1, self.max_attempts + 1):
            call = await self.store.get_call(call_sid)
            decided = await self._decided_for(call)
            if decided is not None:
                return decided

            candidate = await self.find_one_available()
            if candidate is None:
                logger.info(f"Specialists: No specialist available for call {call_sid}")
                return Assignment(AssignmentOutcome.NONE_AVAILABLE)

            escalation = await self.store.reserve_specialist_for_call(call.id, candidate.id, notes)
            if escalation is not None:
                candidate.status = SpecialistStatus.BUSY
                logger.info(
                    f"Specialists: Assigned {candidate.name or candidate.id} to call {call_sid} "
                    f"(attempt {attempt})"
                )
                return Assignment(AssignmentOutcome.ASSIGNED, candidate, escalation)

            logger.warning(
                f"Specialists: Reservation of {candidate.id} for call {call_sid} lost a race "
                f"(attempt {attempt}/{self.max_attempts})"
            )

        call = await self.store.get_call(call_sid)
        decided = await self._decided_for(call)
        if decided is not None:
            return decided
        return Assignment(AssignmentOutcome.NONE_AVAILABLE)

    async def _decided_for(self, call: Optional[Call]) -> Optional[Assignment]:
        """Assignment already implied by the call's current state, if any"""
        if call is None or call.status == CallStatus.COMPLETED:
            return Assignment(AssignmentOutcome.CALL_CLOSED)
        if call.status == CallStatus.COUNSELOR_ASSIGNED and call.assigned_specialist_id:
            specialist = await self.store.get_caller(call.assigned_specialist_id)
            return Assignment(AssignmentOutcome.ALREADY_ASSIGNED, specialist)
        return None
