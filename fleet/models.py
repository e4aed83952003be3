"""
fleet/models.py -- Domain dataclasses for users and cars.

Pure data containers with zero logic. Uniqueness rules, ownership transfer
and cascades live in fleet/service.py; persistence lives in fleet/store.py.

Ownership is a plain foreign-key field (Car.owner_id). A user's cars are
found by querying cars by owner, never through a back-reference on User.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Plate format: three uppercase letters, dash, four digits (ABC-1234).
LICENSE_PLATE_PATTERN = r"^[A-Z]{3}-\d{4}$"

PHONE_PATTERN = r"^\d{10,11}$"

MIN_PASSWORD_LENGTH = 8

# bcrypt only accepts up to 72 bytes of input (UTF-8 encoded, not characters).
MAX_PASSWORD_BYTES = 72


@dataclass
class User:
    """A registered account.

    password always holds the bcrypt hash once the record has been persisted.
    id is None before the record is written to the database.
    """

    login: str
    email: str
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birthday: Optional[date] = None
    phone: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    last_login: Optional[str] = None


@dataclass
class Car:
    """A car, optionally owned by a user.

    owner_id None means the car is available.
    """

    license_plate: str
    model: str
    color: str
    year: int
    owner_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class UserDraft:
    """Unvalidated user fields as submitted by a caller.

    Every field is optional so the service can report missing fields itself
    instead of relying on the transport layer.
    """

    login: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    birthday: Optional[date] = None
    phone: Optional[str] = None


@dataclass
class CarDraft:
    license_plate: str
    model: str
    color: str
    year: int
    owner_id: Optional[int] = None


@dataclass
class UserWithCars:
    """Read model: a user plus the cars it currently owns."""

    user: User
    cars: list[Car] = field(default_factory=list)
