"""
fleet/service.py -- Relationship manager for users and cars.

FleetService owns every rule that spans more than one row:

  Uniqueness
    login, email and license plate are unique. Each write pre-checks with an
    exists_* query (excluding the record's own id on update) so callers get
    a specific error, email before login. The pre-check is not atomic
    against concurrent writers: the storage UNIQUE constraints are the real
    guard, and an IntegrityError from the store is re-diagnosed into the
    same specific ConflictError by running the checks again.

  Ownership
    remove_car_from_user() only touches a car the user actually owns and
    sets its owner to NULL; the car itself survives.
    add_cars_to_user() is all-or-nothing: every requested id must exist or
    no car is reassigned.

  Cascades
    delete_user() removes the user's cars along with the user.

The caller's identity is always an explicit argument. This module never
reads request state.

Failures are raised as core.errors subclasses; api/main.py maps them to HTTP.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import NoReturn, Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Identity
from auth.tokens import authenticate_user, create_access_token, hash_password
from core.errors import (
    AuthenticationError,
    CarNotAssociated,
    CarNotFound,
    ConflictError,
    DuplicateEmail,
    DuplicateLicensePlate,
    DuplicateLogin,
    InvalidFields,
    MissingFields,
    SomeCarsInvalid,
    UserNotFound,
)
from fleet.models import MAX_PASSWORD_BYTES, MIN_PASSWORD_LENGTH, Car, CarDraft, User, UserDraft, UserWithCars
from fleet.store import FleetStore

logger = logging.getLogger("carfleet.fleet")

# API sort keys (camelCase) to store column keys.
_SORT_FIELDS = {
    "id": "id",
    "login": "login",
    "email": "email",
    "firstName": "first_name",
    "lastName": "last_name",
    "birthday": "birthday",
}


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class FleetService:
    """Application service over a FleetStore.

    Usage:
        service = FleetService(store)
        created = service.create_user(UserDraft(email="a@b.com", login="abc", password="longenough"))
        user, token = service.signin("abc", "longenough")
    """

    def __init__(self, store: FleetStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def signin(self, login: Optional[str], password: Optional[str]) -> tuple[User, str]:
        """Verify credentials and issue a token. Raises AuthenticationError on any mismatch."""
        if _blank(login) or _blank(password):
            raise AuthenticationError("Invalid login or password")
        user = authenticate_user(self.store, login, password)
        if user is None:
            logger.warning("Failed signin for %r", login)
            raise AuthenticationError("Invalid login or password")
        self.store.update_last_login(user.id)
        return user, create_access_token(user.login)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, draft: UserDraft, cars: Sequence[CarDraft] = ()) -> UserWithCars:
        """Register a user, optionally with cars it owns from the start.

        Order of checks: required fields, password length, email, login,
        license plates.
        """
        if _blank(draft.email) or _blank(draft.login) or _blank(draft.password):
            raise MissingFields()
        self._check_password(draft.password)
        self._check_user_unique(draft.email, draft.login)
        plates = [car.license_plate for car in cars]
        self._check_plates_unique(plates)

        user = User(
            login=draft.login,
            email=draft.email,
            password=hash_password(draft.password),
            first_name=draft.first_name,
            last_name=draft.last_name,
            birthday=draft.birthday,
            phone=draft.phone,
        )
        new_cars = [Car(license_plate=c.license_plate, model=c.model, color=c.color, year=c.year) for c in cars]
        try:
            user_id = self.store.create_user(user, new_cars)
        except IntegrityError as exc:
            self._raise_conflict(exc, email=draft.email, login=draft.login, plates=plates)
        logger.info("Created user %d (%s) with %d car(s)", user_id, draft.login, len(new_cars))
        return self.get_user(user_id)

    def get_user(self, user_id: int) -> UserWithCars:
        user = self.store.get_user(user_id)
        if user is None:
            raise UserNotFound()
        return UserWithCars(user=user, cars=self.store.get_cars_by_owner(user_id))

    def me(self, identity: Identity) -> UserWithCars:
        return self.get_user(identity.user_id)

    def list_users(self, page: int = 0, size: int = 10, sort_by: str = "id") -> list[UserWithCars]:
        """Return one page of users with their cars. Raises InvalidFields on a bad sort or page."""
        column = _SORT_FIELDS.get(sort_by)
        if column is None:
            raise InvalidFields(f"Cannot sort by {sort_by!r}")
        try:
            users = self.store.list_users(page=page, size=size, sort_by=column)
        except ValueError as exc:
            raise InvalidFields(str(exc)) from exc
        return self._with_cars(users)

    def count_users(self) -> int:
        return self.store.count_users()

    def users_with_cars(self) -> list[UserWithCars]:
        return self._with_cars(self.store.list_all_users())

    def update_user(self, user_id: int, draft: UserDraft) -> UserWithCars:
        """Overwrite a user's profile.

        Every profile field is replaced with the submitted value. The password
        is only re-hashed and replaced when a non-blank one is supplied.
        """
        if self.store.get_user(user_id) is None:
            raise UserNotFound()
        if _blank(draft.email) or _blank(draft.login):
            raise MissingFields()
        self._check_user_unique(draft.email, draft.login, exclude_id=user_id)

        fields = {
            "email": draft.email,
            "login": draft.login,
            "first_name": draft.first_name,
            "last_name": draft.last_name,
            "birthday": draft.birthday,
            "phone": draft.phone,
        }
        if not _blank(draft.password):
            self._check_password(draft.password)
            fields["password"] = hash_password(draft.password)

        try:
            self.store.update_user(user_id, **fields)
        except IntegrityError as exc:
            self._raise_conflict(exc, email=draft.email, login=draft.login, user_id=user_id)
        logger.info("Updated user %d", user_id)
        return self.get_user(user_id)

    def delete_user(self, user_id: int) -> None:
        """Delete a user together with every car it owns."""
        if not self.store.delete_user(user_id):
            raise UserNotFound()
        logger.info("Deleted user %d and its cars", user_id)

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def remove_car_from_user(self, user_id: int, car_id: int) -> None:
        """Detach one of the user's cars. The car stays, with no owner.

        The car is looked up among the user's own cars, not globally, so a car
        owned by someone else is reported as not associated and left alone.
        """
        if self.store.get_user(user_id) is None:
            raise UserNotFound()
        owned_ids = {car.id for car in self.store.get_cars_by_owner(user_id)}
        if car_id not in owned_ids:
            raise CarNotAssociated()
        # Guarded on the current owner in case another request moved the car.
        if not self.store.clear_car_owner(car_id, user_id):
            raise CarNotAssociated()
        logger.info("Removed car %d from user %d", car_id, user_id)

    def add_cars_to_user(self, user_id: int, car_ids: Iterable[int]) -> None:
        """Assign every car in car_ids to the user, or none of them.

        Duplicate ids count once. Cars owned by another user are transferred.
        """
        if self.store.get_user(user_id) is None:
            raise UserNotFound()
        requested = list(dict.fromkeys(car_ids))
        found = self.store.get_cars_by_ids(requested)
        if len(found) != len(requested):
            missing = sorted(set(requested) - {car.id for car in found})
            raise SomeCarsInvalid(f"Cars not found: {', '.join(str(i) for i in missing)}")
        self.store.assign_cars(user_id, requested)
        logger.info("Assigned %d car(s) to user %d", len(requested), user_id)

    # ------------------------------------------------------------------
    # Cars
    # ------------------------------------------------------------------

    def create_car(self, draft: CarDraft, identity: Identity) -> Car:
        """Create a car. Without an explicit owner it belongs to the caller."""
        self._check_plates_unique([draft.license_plate])
        owner_id = self._resolve_owner(draft.owner_id, identity)
        car = Car(
            license_plate=draft.license_plate,
            model=draft.model,
            color=draft.color,
            year=draft.year,
            owner_id=owner_id,
        )
        try:
            car_id = self.store.create_car(car)
        except IntegrityError as exc:
            self._raise_conflict(exc, plates=[draft.license_plate])
        logger.info("Created car %d (%s) for user %s", car_id, draft.license_plate, owner_id)
        return self.store.get_car(car_id)

    def list_cars(self, identity: Identity) -> list[Car]:
        return self.store.get_cars_by_owner(identity.user_id)

    def get_car(self, car_id: int, identity: Identity) -> Car:
        """Return one of the caller's cars. Cars owned by others are reported as not found."""
        car = self.store.get_car(car_id)
        if car is None or car.owner_id != identity.user_id:
            raise CarNotFound()
        return car

    def update_car(self, car_id: int, draft: CarDraft, identity: Identity) -> Car:
        self.get_car(car_id, identity)
        self._check_plates_unique([draft.license_plate], exclude_id=car_id)
        owner_id = self._resolve_owner(draft.owner_id, identity)
        try:
            self.store.update_car(
                car_id,
                license_plate=draft.license_plate,
                model=draft.model,
                color=draft.color,
                year=draft.year,
                owner_id=owner_id,
            )
        except IntegrityError as exc:
            self._raise_conflict(exc, plates=[draft.license_plate], car_id=car_id)
        logger.info("Updated car %d", car_id)
        return self.store.get_car(car_id)

    def delete_car(self, car_id: int, identity: Identity) -> None:
        """Delete one of the caller's cars."""
        if not self.store.delete_car(car_id, owner_id=identity.user_id):
            raise CarNotFound("Car not found or not owned by the user")
        logger.info("Deleted car %d", car_id)

    def available_cars(self) -> list[Car]:
        return self.store.list_available_cars()

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    def statistics(self) -> dict[str, int]:
        return {
            "totalUsers": self.store.count_users(),
            "totalCars": self.store.count_owned_cars(),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _with_cars(self, users: list[User]) -> list[UserWithCars]:
        cars = self.store.get_cars_by_owners(u.id for u in users)
        return [UserWithCars(user=u, cars=cars.get(u.id, [])) for u in users]

    def _resolve_owner(self, owner_id: Optional[int], identity: Identity) -> int:
        if owner_id is None:
            return identity.user_id
        if self.store.get_user(owner_id) is None:
            raise UserNotFound()
        return owner_id

    @staticmethod
    def _check_password(password: str) -> None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidFields(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise InvalidFields(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")

    def _check_user_unique(self, email: str, login: str, exclude_id: Optional[int] = None) -> None:
        if self.store.exists_by_email(email, exclude_id=exclude_id):
            raise DuplicateEmail()
        if self.store.exists_by_login(login, exclude_id=exclude_id):
            raise DuplicateLogin()

    def _check_plates_unique(self, plates: Sequence[str], exclude_id: Optional[int] = None) -> None:
        if len(set(plates)) != len(plates):
            raise DuplicateLicensePlate()
        for plate in plates:
            if self.store.exists_by_license_plate(plate, exclude_id=exclude_id):
                raise DuplicateLicensePlate()

    def _raise_conflict(
        self,
        exc: IntegrityError,
        email: Optional[str] = None,
        login: Optional[str] = None,
        plates: Sequence[str] = (),
        user_id: Optional[int] = None,
        car_id: Optional[int] = None,
    ) -> NoReturn:
        """Turn a storage IntegrityError into the matching ConflictError.

        Reached only when a concurrent writer slipped in between the pre-check
        and the write. The checks are re-run in their usual order; if none of
        them fire the error is reported as a generic conflict.
        """
        logger.warning("Integrity violation after pre-check passed: %s", exc.orig)
        try:
            if email is not None and login is not None:
                self._check_user_unique(email, login, exclude_id=user_id)
            if plates:
                self._check_plates_unique(plates, exclude_id=car_id)
        except ConflictError as conflict:
            raise conflict from exc
        raise ConflictError() from exc
