"""
core/errors.py -- Typed domain failures for CarFleet.

Domain code (fleet/, auth/) raises these; api/main.py is the single place that
turns them into HTTP responses. Each class carries the status code and a
machine-readable code so the exception handler needs no lookup table.

  FleetError
    ValidationError      400  missing / malformed fields
      MissingFields
      InvalidFields
    ConflictError        409  uniqueness violations
      DuplicateEmail
      DuplicateLogin
      DuplicateLicensePlate
    NotFoundError        404  missing user / car / association
      UserNotFound
      CarNotFound
      CarNotAssociated
      SomeCarsInvalid
    AuthenticationError  401  bad credentials, invalid or expired token

Layer rule: core/ imports nothing from api/, auth/ or fleet/.
"""

from __future__ import annotations


class FleetError(Exception):
    """Base class for every expected domain failure."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# 400
# ---------------------------------------------------------------------------


class ValidationError(FleetError):
    status_code = 400
    code = "validation_error"
    default_message = "Invalid fields"


class MissingFields(ValidationError):
    code = "missing_fields"
    default_message = "Missing fields"


class InvalidFields(ValidationError):
    code = "invalid_fields"
    default_message = "Invalid fields"


# ---------------------------------------------------------------------------
# 409
# ---------------------------------------------------------------------------


class ConflictError(FleetError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists"


class DuplicateEmail(ConflictError):
    code = "duplicate_email"
    default_message = "Email already exists"


class DuplicateLogin(ConflictError):
    code = "duplicate_login"
    default_message = "Login already exists"


class DuplicateLicensePlate(ConflictError):
    code = "duplicate_license_plate"
    default_message = "License plate already exists"


# ---------------------------------------------------------------------------
# 404
# ---------------------------------------------------------------------------


class NotFoundError(FleetError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class UserNotFound(NotFoundError):
    code = "user_not_found"
    default_message = "User not found"


class CarNotFound(NotFoundError):
    code = "car_not_found"
    default_message = "Car not found"


class CarNotAssociated(NotFoundError):
    code = "car_not_associated"
    default_message = "Car not found or not associated with the user"


class SomeCarsInvalid(NotFoundError):
    code = "cars_not_found"
    default_message = "One or more cars not found"


# ---------------------------------------------------------------------------
# 401
# ---------------------------------------------------------------------------


class AuthenticationError(FleetError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"
