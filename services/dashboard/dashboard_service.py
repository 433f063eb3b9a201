"""
=====================================================
Support Line - Dashboard Service
=====================================================
Operator read model (ongoing calls, call log, escalations) and
specialist availability management.
"""

from typing import Dict, List, Optional

from loguru import logger

from services.specialists.specialist_directory import SpecialistDirectory
from services.storage import CallerRole, CallStore, SpecialistStatus


class SpecialistNotFound(Exception):
    """No specialist with that id"""


class InvalidSpecialistStatus(ValueError):
    """Status outside available/busy/offline"""


class DashboardService:
    """
    Dashboard service for the operator API

    Provides the live call overview and lets operators change a
    specialist's availability.
    """

    def __init__(self, store: CallStore, directory: SpecialistDirectory):
        """
        Initialize dashboard service

        Args:
            store: Call store
            directory: Specialist directory (status changes go through it)
        """
        self.store = store
        self.directory = directory

    # ============================================================
    # OVERVIEW
    # ============================================================

    async def get_overview(self) -> Dict:
        """
        Ongoing calls, recent call log, recent escalations and stats

        Returns:
            {
                'ongoing_calls': [...],
                'call_logs': [...],
                'escalations': [...],
                'stats': {'completed_today': int, 'total_escalations': int}
            }
        """
        snapshot = await self.store.dashboard_snapshot()
        logger.debug(
            f"Dashboard: {len(snapshot.ongoing_calls)} ongoing calls, "
            f"{snapshot.completed_today} completed today"
        )
        return snapshot.to_dict()

    # ============================================================
    # SPECIALISTS
    # ============================================================

    async def list_specialists(self) -> List[Dict]:
        specialists = await self.directory.list_specialists()
        return [specialist.to_dict() for specialist in specialists]

    async def update_specialist_status(self, specialist_id: str, status: Optional[str]) -> Dict:
        """
        Set a specialist's status

        Raises:
            InvalidSpecialistStatus: unknown status value
            SpecialistNotFound: unknown id, or the id is not a specialist
        """
        try:
            new_status = SpecialistStatus(status)
        except ValueError:
            raise InvalidSpecialistStatus(
                f"Invalid status '{status}'; expected one of "
                f"{', '.join(s.value for s in SpecialistStatus)}"
            )

        caller = await self.store.get_caller(specialist_id)
        if caller is None or caller.role != CallerRole.SPECIALIST:
            raise SpecialistNotFound(specialist_id)

        await self.directory.set_status(specialist_id, new_status)
        logger.info(f"Dashboard: Specialist {caller.name or specialist_id} set to {new_status.value}")

        updated = await self.store.get_caller(specialist_id)
        return updated.to_dict()


def get_dashboard_service() -> DashboardService:
    """Dashboard service over the running orchestrator's store"""
    from services.conversation.orchestrator import get_orchestrator

    orchestrator = get_orchestrator()
    return DashboardService(orchestrator.store, orchestrator.directory)
