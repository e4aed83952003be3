"""
api/routes/v1/users.py -- User CRUD and car ownership routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /users                                -- paginated listing (public)
  GET    /users/available-cars                 -- cars with no owner (public)
  POST   /users                                -- create user, optionally with cars
  GET    /users/{user_id}                      -- user detail with cars
  PUT    /users/{user_id}                      -- overwrite profile
  DELETE /users/{user_id}                      -- delete user and its cars
  PATCH  /users/{user_id}/remove-car/{car_id}  -- detach one of the user's cars
  PATCH  /users/{user_id}/add-cars             -- assign cars (body: [ids]), all or nothing

Pagination:
  GET /users takes page (zero-based), size and sortBy. Totals travel in the
  X-Total-Count, X-Page-Number and X-Page-Size headers so the body stays a
  plain list.
"""

from fastapi import APIRouter, Body, Depends, Query, Request, Response

from api.models import CarResponse, MessageResponse, UserCreate, UserResponse, UserUpdate
from auth.dependencies import require_identity
from fleet.service import FleetService

# Router-level dependency runs the authorize step for every route here. The
# two listings are on the public allow-list, so they pass without a token.
router = APIRouter(dependencies=[Depends(require_identity)])


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    response: Response,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=10, ge=1, le=100),
    sort_by: str = Query(default="id", alias="sortBy"),
) -> list[UserResponse]:
    """Return one page of users with their cars."""
    service: FleetService = request.app.state.service
    users = service.list_users(page=page, size=size, sort_by=sort_by)
    response.headers["X-Total-Count"] = str(service.count_users())
    response.headers["X-Page-Number"] = str(page)
    response.headers["X-Page-Size"] = str(size)
    return [UserResponse.from_domain(u) for u in users]


@router.get("/users/available-cars", response_model=list[CarResponse])
def available_cars(request: Request) -> list[CarResponse]:
    """Return every car that currently has no owner."""
    service: FleetService = request.app.state.service
    return [CarResponse.from_domain(c) for c in service.available_cars()]


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(request: Request, body: UserCreate) -> UserResponse:
    """Create a user. Nested cars are created in the same transaction and owned by the new user."""
    service: FleetService = request.app.state.service
    return UserResponse.from_domain(service.create_user(body.to_draft(), body.car_drafts()))


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int) -> UserResponse:
    service: FleetService = request.app.state.service
    return UserResponse.from_domain(service.get_user(user_id))


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(request: Request, user_id: int, body: UserUpdate) -> UserResponse:
    """Overwrite every profile field. The password only changes when a non-blank one is sent."""
    service: FleetService = request.app.state.service
    return UserResponse.from_domain(service.update_user(user_id, body.to_draft()))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(request: Request, user_id: int) -> Response:
    """Delete the user and every car it owns."""
    service: FleetService = request.app.state.service
    service.delete_user(user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------


@router.patch("/users/{user_id}/remove-car/{car_id}", response_model=MessageResponse)
def remove_car(request: Request, user_id: int, car_id: int) -> MessageResponse:
    """Detach a car from its owner. The car is kept and becomes available."""
    service: FleetService = request.app.state.service
    service.remove_car_from_user(user_id, car_id)
    return MessageResponse(message="Car removed successfully.")


@router.patch("/users/{user_id}/add-cars", response_model=MessageResponse)
def add_cars(request: Request, user_id: int, car_ids: list[int] = Body(...)) -> MessageResponse:
    """Assign the listed cars to the user. If any id is unknown nothing is assigned (404)."""
    service: FleetService = request.app.state.service
    service.add_cars_to_user(user_id, car_ids)
    return MessageResponse(message="Cars associated successfully.")
