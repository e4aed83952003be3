"""Unit tests for fleet/service.py -- FleetService business rules.

Covers:
- Signup: required fields, password length, hashing, email checked before login
- Duplicate email / login / plate leave the store unchanged
- IntegrityError from a lost race is re-diagnosed into the specific conflict
- Update: uniqueness excludes self, blank password keeps the old hash
- Ownership: remove-car only detaches the user's own car; add-cars is all or nothing
- Delete cascades to the user's cars
- Cars are scoped to the caller's identity
- Signin issues a token and stamps last_login
"""

from __future__ import annotations

import pytest

from auth.models import Identity
from auth.tokens import validate_token, verify_password
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
from fleet.models import CarDraft, UserDraft


def make_user(service, login: str, email: str | None = None, password: str = "testpass123", cars=()):
    return service.create_user(
        UserDraft(login=login, email=email or f"{login}@example.com", password=password, first_name=login.title()),
        list(cars),
    )


def car_draft(plate: str, owner_id: int | None = None) -> CarDraft:
    return CarDraft(license_plate=plate, model="Civic", color="Blue", year=2020, owner_id=owner_id)


def _identity(entry) -> Identity:
    return Identity(user_id=entry.user.id, username=entry.user.login)


class TestSignup:
    def test_valid_signup_stores_hash(self, service, store) -> None:
        created = service.create_user(UserDraft(email="a@b.com", login="abc", password="longenough"))
        stored = store.get_user(created.user.id)
        assert stored.password != "longenough"
        assert verify_password("longenough", stored.password)

    @pytest.mark.parametrize(
        "draft",
        [
            UserDraft(login="abc", password="longenough"),
            UserDraft(email="a@b.com", password="longenough"),
            UserDraft(email="a@b.com", login="abc"),
            UserDraft(email="  ", login="abc", password="longenough"),
        ],
    )
    def test_missing_required_field(self, service, store, draft: UserDraft) -> None:
        with pytest.raises(MissingFields) as exc_info:
            service.create_user(draft)
        assert exc_info.value.message == "Missing fields"
        assert store.count_users() == 0

    def test_short_password_rejected(self, service, store) -> None:
        with pytest.raises(InvalidFields):
            service.create_user(UserDraft(email="a@b.com", login="abc", password="short"))
        assert store.count_users() == 0

    def test_password_over_72_utf8_bytes_rejected(self, service, store) -> None:
        with pytest.raises(InvalidFields):
            service.create_user(UserDraft(email="a@b.com", login="abc", password="é" * 40))
        assert store.count_users() == 0

    def test_password_of_exactly_72_utf8_bytes_accepted(self, service, store) -> None:
        created = service.create_user(UserDraft(email="a@b.com", login="abc", password="é" * 36))
        assert verify_password("é" * 36, store.get_user(created.user.id).password)

    def test_duplicate_email_creates_nothing(self, service, store) -> None:
        make_user(service, "alice", email="shared@example.com")
        with pytest.raises(DuplicateEmail) as exc_info:
            make_user(service, "bob", email="shared@example.com")
        assert exc_info.value.message == "Email already exists"
        assert store.count_users() == 1

    def test_duplicate_login(self, service) -> None:
        make_user(service, "alice")
        with pytest.raises(DuplicateLogin) as exc_info:
            make_user(service, "alice", email="new@example.com")
        assert exc_info.value.message == "Login already exists"

    def test_email_checked_before_login(self, service) -> None:
        make_user(service, "alice")
        with pytest.raises(DuplicateEmail):
            make_user(service, "alice", email="alice@example.com")

    def test_signup_with_cars(self, service) -> None:
        created = make_user(service, "alice", cars=[car_draft("AAA-0001"), car_draft("AAA-0002")])
        assert [c.license_plate for c in created.cars] == ["AAA-0001", "AAA-0002"]
        assert all(c.owner_id == created.user.id for c in created.cars)

    def test_duplicate_plate_in_batch_rejected(self, service, store) -> None:
        with pytest.raises(DuplicateLicensePlate):
            make_user(service, "alice", cars=[car_draft("AAA-0001"), car_draft("AAA-0001")])
        assert store.count_users() == 0

    def test_integrity_error_rediagnosed(self, service, store, monkeypatch) -> None:
        """A duplicate that slips past the pre-check still surfaces as DuplicateEmail."""
        make_user(service, "alice", email="shared@example.com")
        real_exists = store.exists_by_email
        calls = {"n": 0}

        def stale_first_check(email, exclude_id=None):
            calls["n"] += 1
            return False if calls["n"] == 1 else real_exists(email, exclude_id=exclude_id)

        monkeypatch.setattr(store, "exists_by_email", stale_first_check)
        with pytest.raises(DuplicateEmail):
            make_user(service, "bob", email="shared@example.com")
        assert store.count_users() == 1

    def test_integrity_error_without_diagnosis_is_generic_conflict(self, service, store, monkeypatch) -> None:
        make_user(service, "alice")
        monkeypatch.setattr(store, "exists_by_login", lambda login, exclude_id=None: False)
        with pytest.raises(ConflictError) as exc_info:
            make_user(service, "alice", email="second@example.com")
        assert type(exc_info.value) is ConflictError


class TestSignin:
    def test_signin_returns_token_and_stamps_last_login(self, service, store) -> None:
        created = make_user(service, "alice", password="longenough")
        user, token = service.signin("alice", "longenough")
        assert user.id == created.user.id
        assert validate_token(token, "alice")
        assert store.get_user(user.id).last_login is not None

    @pytest.mark.parametrize("login,password", [("alice", "wrongpass"), ("nobody", "longenough"), ("", ""), (None, None)])
    def test_bad_credentials(self, service, login, password) -> None:
        make_user(service, "alice", password="longenough")
        with pytest.raises(AuthenticationError):
            service.signin(login, password)


class TestUpdateUser:
    def test_update_keeping_own_email_and_login(self, service) -> None:
        created = make_user(service, "alice")
        updated = service.update_user(
            created.user.id, UserDraft(email="alice@example.com", login="alice", first_name="Alicia")
        )
        assert updated.user.first_name == "Alicia"

    def test_update_to_other_users_email(self, service) -> None:
        make_user(service, "alice")
        bob = make_user(service, "bob")
        with pytest.raises(DuplicateEmail):
            service.update_user(bob.user.id, UserDraft(email="alice@example.com", login="bob"))

    def test_blank_password_keeps_hash(self, service, store) -> None:
        created = make_user(service, "alice", password="longenough")
        before = store.get_user(created.user.id).password
        service.update_user(created.user.id, UserDraft(email="alice@example.com", login="alice", password=""))
        assert store.get_user(created.user.id).password == before

    def test_new_password_is_hashed(self, service, store) -> None:
        created = make_user(service, "alice", password="longenough")
        service.update_user(
            created.user.id, UserDraft(email="alice@example.com", login="alice", password="evenlonger")
        )
        assert verify_password("evenlonger", store.get_user(created.user.id).password)

    def test_new_password_over_72_utf8_bytes_rejected(self, service, store) -> None:
        created = make_user(service, "alice", password="longenough")
        before = store.get_user(created.user.id).password
        with pytest.raises(InvalidFields):
            service.update_user(
                created.user.id, UserDraft(email="alice@example.com", login="alice", password="é" * 40)
            )
        assert store.get_user(created.user.id).password == before

    def test_update_missing_user(self, service) -> None:
        with pytest.raises(UserNotFound):
            service.update_user(999, UserDraft(email="x@example.com", login="x"))

    def test_update_requires_email_and_login(self, service) -> None:
        created = make_user(service, "alice")
        with pytest.raises(MissingFields):
            service.update_user(created.user.id, UserDraft(login="alice"))


class TestListing:
    def test_sort_by_camel_case_field(self, service) -> None:
        for login in ("carol", "alice", "bob"):
            service.create_user(
                UserDraft(login=login, email=f"{login}@example.com", password="longenough", first_name=login[::-1])
            )
        names = [u.user.first_name for u in service.list_users(sort_by="firstName")]
        assert names == sorted(names)

    @pytest.mark.parametrize("sort_by", ["password", "first_name", "nope"])
    def test_unknown_sort_rejected(self, service, sort_by: str) -> None:
        with pytest.raises(InvalidFields):
            service.list_users(sort_by=sort_by)

    def test_statistics_count_owned_cars(self, service, store) -> None:
        alice = make_user(service, "alice", cars=[car_draft("AAA-0001")])
        make_user(service, "bob")
        service.create_car(car_draft("FRE-0001"), _identity(alice))
        service.remove_car_from_user(alice.user.id, alice.cars[0].id)
        assert service.statistics() == {"totalUsers": 2, "totalCars": 1}
        assert [c.license_plate for c in service.available_cars()] == ["AAA-0001"]


class TestOwnership:
    def test_remove_own_car_keeps_car(self, service, store) -> None:
        alice = make_user(service, "alice", cars=[car_draft("AAA-0001")])
        car_id = alice.cars[0].id
        service.remove_car_from_user(alice.user.id, car_id)
        car = store.get_car(car_id)
        assert car is not None and car.owner_id is None

    def test_remove_other_users_car_changes_nothing(self, service, store) -> None:
        alice = make_user(service, "alice", cars=[car_draft("AAA-0001")])
        bob = make_user(service, "bob", cars=[car_draft("BBB-0001")])
        with pytest.raises(CarNotAssociated):
            service.remove_car_from_user(alice.user.id, bob.cars[0].id)
        assert store.get_car(bob.cars[0].id).owner_id == bob.user.id
        assert len(store.get_cars_by_owner(alice.user.id)) == 1

    def test_remove_car_unknown_user(self, service) -> None:
        with pytest.raises(UserNotFound):
            service.remove_car_from_user(999, 1)

    def test_add_cars_all_or_nothing(self, service, store) -> None:
        alice = make_user(service, "alice")
        bob = make_user(service, "bob", cars=[car_draft("BBB-0001")])
        bobs_car = bob.cars[0].id
        with pytest.raises(SomeCarsInvalid):
            service.add_cars_to_user(alice.user.id, [bobs_car, 424242])
        assert store.get_car(bobs_car).owner_id == bob.user.id
        assert store.get_cars_by_owner(alice.user.id) == []

    def test_add_cars_transfers_and_dedupes(self, service, store) -> None:
        alice = make_user(service, "alice")
        bob = make_user(service, "bob", cars=[car_draft("BBB-0001")])
        bobs_car = bob.cars[0].id
        service.add_cars_to_user(alice.user.id, [bobs_car, bobs_car])
        assert [c.id for c in store.get_cars_by_owner(alice.user.id)] == [bobs_car]
        assert store.get_cars_by_owner(bob.user.id) == []

    def test_delete_user_cascades(self, service, store) -> None:
        alice = make_user(service, "alice", cars=[car_draft("AAA-0001")])
        service.delete_user(alice.user.id)
        assert store.get_car(alice.cars[0].id) is None
        with pytest.raises(UserNotFound):
            service.delete_user(alice.user.id)


class TestCars:
    def test_create_defaults_owner_to_caller(self, service) -> None:
        alice = make_user(service, "alice")
        car = service.create_car(car_draft("AAA-0001"), _identity(alice))
        assert car.owner_id == alice.user.id

    def test_create_with_unknown_owner(self, service) -> None:
        alice = make_user(service, "alice")
        with pytest.raises(UserNotFound):
            service.create_car(car_draft("AAA-0001", owner_id=999), _identity(alice))

    def test_duplicate_plate(self, service) -> None:
        alice = make_user(service, "alice", cars=[car_draft("AAA-0001")])
        with pytest.raises(DuplicateLicensePlate):
            service.create_car(car_draft("AAA-0001"), _identity(alice))

    def test_other_users_car_is_not_found(self, service) -> None:
        alice = make_user(service, "alice")
        bob = make_user(service, "bob", cars=[car_draft("BBB-0001")])
        with pytest.raises(CarNotFound):
            service.get_car(bob.cars[0].id, _identity(alice))
        with pytest.raises(CarNotFound):
            service.delete_car(bob.cars[0].id, _identity(alice))

    def test_update_keeps_own_plate(self, service) -> None:
        alice = make_user(service, "alice", cars=[car_draft("AAA-0001")])
        car_id = alice.cars[0].id
        updated = service.update_car(
            car_id, CarDraft(license_plate="AAA-0001", model="Golf", color="Black", year=2022), _identity(alice)
        )
        assert updated.model == "Golf"
        assert updated.owner_id == alice.user.id

    def test_update_to_taken_plate(self, service) -> None:
        alice = make_user(service, "alice", cars=[car_draft("AAA-0001"), car_draft("AAA-0002")])
        with pytest.raises(DuplicateLicensePlate):
            service.update_car(alice.cars[1].id, car_draft("AAA-0001"), _identity(alice))

    def test_list_cars_only_callers(self, service) -> None:
        alice = make_user(service, "alice", cars=[car_draft("AAA-0001")])
        make_user(service, "bob", cars=[car_draft("BBB-0001")])
        assert [c.license_plate for c in service.list_cars(_identity(alice))] == ["AAA-0001"]
