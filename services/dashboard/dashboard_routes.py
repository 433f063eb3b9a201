"""
=====================================================
Support Line - Dashboard API Routes
=====================================================
JSON endpoints for the operator dashboard.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from services.dashboard.dashboard_service import (
    DashboardService,
    InvalidSpecialistStatus,
    SpecialistNotFound,
    get_dashboard_service,
)


# =====================================================
# ROUTER SETUP
# =====================================================

router = APIRouter(prefix="/api", tags=["dashboard"])


class SpecialistStatusUpdate(BaseModel):
    status: Optional[str] = None


# =====================================================
# OVERVIEW
# =====================================================

@router.get("/dashboard")
async def get_dashboard(service: DashboardService = Depends(get_dashboard_service)):
    """Ongoing calls, recent calls, recent escalations and stats"""
    return await service.get_overview()


# =====================================================
# SPECIALISTS
# =====================================================

@router.get("/specialists")
async def list_specialists(service: DashboardService = Depends(get_dashboard_service)):
    return {"specialists": await service.list_specialists()}


@router.patch("/specialists/{specialist_id}")
async def update_specialist(
    specialist_id: str,
    update: SpecialistStatusUpdate,
    service: DashboardService = Depends(get_dashboard_service)
):
    """Change a specialist's availability"""
    try:
        specialist = await service.update_specialist_status(specialist_id, update.status)
    except InvalidSpecialistStatus as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SpecialistNotFound:
        raise HTTPException(status_code=404, detail="Specialist not found")

    return {"specialist": specialist}
