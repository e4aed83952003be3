"""
api/routes/v1/cars.py -- Car routes, scoped to the authenticated owner.

Routes:
  POST   /cars          -- create a car (owner defaults to the caller)
  GET    /cars          -- the caller's cars
  GET    /cars/{car_id} -- one of the caller's cars
  PUT    /cars/{car_id} -- overwrite one of the caller's cars
  DELETE /cars/{car_id} -- delete one of the caller's cars

A car owned by someone else answers 404, the same as a missing car, so ids
of other users' cars are not confirmed to exist.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.models import CarCreate, CarResponse
from auth.dependencies import require_identity
from auth.models import Identity
from fleet.service import FleetService

router = APIRouter(dependencies=[Depends(require_identity)])


@router.post("/cars", response_model=CarResponse, status_code=201)
def create_car(
    request: Request,
    body: CarCreate,
    identity: Identity = Depends(require_identity),
) -> CarResponse:
    """Create a car. Without ownerId in the body it belongs to the caller."""
    service: FleetService = request.app.state.service
    return CarResponse.from_domain(service.create_car(body.to_draft(), identity))


@router.get("/cars", response_model=list[CarResponse])
def list_cars(request: Request, identity: Identity = Depends(require_identity)) -> list[CarResponse]:
    service: FleetService = request.app.state.service
    return [CarResponse.from_domain(c) for c in service.list_cars(identity)]


@router.get("/cars/{car_id}", response_model=CarResponse)
def get_car(request: Request, car_id: int, identity: Identity = Depends(require_identity)) -> CarResponse:
    service: FleetService = request.app.state.service
    return CarResponse.from_domain(service.get_car(car_id, identity))


@router.put("/cars/{car_id}", response_model=CarResponse)
def update_car(
    request: Request,
    car_id: int,
    body: CarCreate,
    identity: Identity = Depends(require_identity),
) -> CarResponse:
    """Overwrite a car. The plate must stay unique among all other cars."""
    service: FleetService = request.app.state.service
    return CarResponse.from_domain(service.update_car(car_id, body.to_draft(), identity))


@router.delete("/cars/{car_id}", status_code=204)
def delete_car(request: Request, car_id: int, identity: Identity = Depends(require_identity)) -> Response:
    service: FleetService = request.app.state.service
    service.delete_car(car_id, identity)
    return Response(status_code=204)
