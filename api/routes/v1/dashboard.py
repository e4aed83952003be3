"""
api/routes/v1/dashboard.py -- Dashboard summary routes.

Routes:
  GET /dashboard/users       -- every user with their cars (no pagination)
  GET /dashboard/statistics  -- {totalUsers, totalCars}

totalCars counts owned cars only; available cars are not part of any user's
fleet.
"""

from fastapi import APIRouter, Depends, Request

from api.models import StatisticsResponse, UserResponse
from auth.dependencies import require_identity
from fleet.service import FleetService

router = APIRouter(dependencies=[Depends(require_identity)])


@router.get("/dashboard/users", response_model=list[UserResponse])
def dashboard_users(request: Request) -> list[UserResponse]:
    service: FleetService = request.app.state.service
    return [UserResponse.from_domain(u) for u in service.users_with_cars()]


@router.get("/dashboard/statistics", response_model=StatisticsResponse)
def dashboard_statistics(request: Request) -> StatisticsResponse:
    service: FleetService = request.app.state.service
    stats = service.statistics()
    return StatisticsResponse(total_users=stats["totalUsers"], total_cars=stats["totalCars"])
