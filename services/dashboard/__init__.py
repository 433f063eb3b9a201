"""
Support Line - Dashboard Module
"""

from services.dashboard.dashboard_service import (
    DashboardService,
    InvalidSpecialistStatus,
    SpecialistNotFound,
    get_dashboard_service,
)

__all__ = [
    "DashboardService",
    "InvalidSpecialistStatus",
    "SpecialistNotFound",
    "get_dashboard_service",
]
