"""
API request and response models for the CarFleet REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in fleet/models.py, which own the
internal domain representation. Route handlers map between the two.

JSON uses camelCase (firstName, licensePlate, ownerId). Python attributes
stay snake_case; the alias generator translates, and populate_by_name lets
tests and internal code construct models with either spelling.

Required-field checks for users are deliberately left to the service
(fields are Optional here) so a missing email, login or password is
reported as "Missing fields" rather than a schema error.
"""

import re
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from fleet.models import LICENSE_PLATE_PATTERN, PHONE_PATTERN, Car, CarDraft, UserDraft, UserWithCars

# Deliberately loose: one @, no whitespace, a dot in the domain.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_EMAIL_RE = re.compile(EMAIL_PATTERN)


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SigninRequest(_ApiModel):
    """Request body for POST /api/v1/signin. username is the account login."""

    username: Optional[str] = Field(default=None, max_length=100)
    password: Optional[str] = None


class CarCreate(_ApiModel):
    """Request body for POST /api/v1/cars and PUT /api/v1/cars/{id}, and nested cars on user creation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    license_plate: str = Field(pattern=LICENSE_PLATE_PATTERN, description="Format ABC-1234.")
    model: str = Field(min_length=1, max_length=100)
    color: str = Field(min_length=1, max_length=50)
    year: int = Field(gt=0)
    owner_id: Optional[int] = Field(default=None, description="Defaults to the authenticated user.")

    @field_validator("license_plate", mode="before")
    @classmethod
    def normalize_plate(cls, value):
        """Uppercase the plate before the pattern check so abc-1234 is accepted."""
        return value.strip().upper() if isinstance(value, str) else value

    def to_draft(self) -> CarDraft:
        return CarDraft(
            license_plate=self.license_plate,
            model=self.model,
            color=self.color,
            year=self.year,
            owner_id=self.owner_id,
        )


class UserUpdate(_ApiModel):
    """Request body for PUT /api/v1/users/{id}. A blank password keeps the current one."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255)
    login: Optional[str] = Field(default=None, max_length=100)
    password: Optional[str] = None
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    birthday: Optional[date] = None
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: Optional[str]) -> Optional[str]:
        """Blank passes through (the service reports it as missing); anything else must look like an email."""
        if value and not _EMAIL_RE.match(value):
            raise ValueError("Invalid email")
        return value

    def to_draft(self) -> UserDraft:
        return UserDraft(
            login=self.login,
            email=self.email,
            password=self.password,
            first_name=self.first_name,
            last_name=self.last_name,
            birthday=self.birthday,
            phone=self.phone,
        )


class UserCreate(UserUpdate):
    """Request body for POST /api/v1/signup and POST /api/v1/users."""

    cars: list[CarCreate] = Field(default_factory=list, max_length=50)

    def car_drafts(self) -> list[CarDraft]:
        return [car.to_draft() for car in self.cars]


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class CarResponse(_FrozenApiModel):
    id: int
    license_plate: str
    model: str
    color: str
    year: int
    owner_id: Optional[int]

    @classmethod
    def from_domain(cls, car: Car) -> "CarResponse":
        return cls(
            id=car.id,
            license_plate=car.license_plate,
            model=car.model,
            color=car.color,
            year=car.year,
            owner_id=car.owner_id,
        )


class UserResponse(_FrozenApiModel):
    """A user with the cars it owns. The password hash is never exposed."""

    id: int
    login: str
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    birthday: Optional[date]
    phone: Optional[str]
    created_at: str
    last_login: Optional[str] = None
    cars: list[CarResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, entry: UserWithCars) -> "UserResponse":
        """Factory Method: the mapping lives with the output model, not in route handlers."""
        user = entry.user
        return cls(
            id=user.id,
            login=user.login,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            birthday=user.birthday,
            phone=user.phone,
            created_at=user.created_at,
            last_login=user.last_login,
            cars=[CarResponse.from_domain(c) for c in entry.cars],
        )


class SigninResponse(_FrozenApiModel):
    token: str
    message: str = "Authentication successful"
    name: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(_FrozenApiModel):
    message: str


class StatisticsResponse(_FrozenApiModel):
    total_users: int
    total_cars: int


class ErrorResponse(_FrozenApiModel):
    """Error envelope returned on every 4xx/5xx response.

    error_code repeats the HTTP status; code is a stable machine-readable
    string (e.g. "duplicate_email").
    """

    message: str
    error_code: int
    code: str
    detail: Optional[str] = None


class HealthResponse(_FrozenApiModel):
    """Response for GET /api/v1/health."""

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
