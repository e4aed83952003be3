"""
fleet/store.py -- SQLAlchemy Core persistence layer for users and cars.

Uses SQLAlchemy Core (not ORM) so the dataclasses in fleet/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. FleetStore is the repository;
_row_to_user / _row_to_car are the mappers. Service and route code never
touch SQL directly.

Integrity:
  UNIQUE(login), UNIQUE(email) and UNIQUE(license_plate) are declared on the
  tables. They are the authoritative guard against duplicates; the service's
  exists_* pre-checks only give a friendlier error on the common path.
  Inserts and updates that lose a race raise sqlalchemy.exc.IntegrityError.

  cars.owner_id references users.id with ON DELETE CASCADE. SQLite only
  enforces foreign keys when PRAGMA foreign_keys=ON, which the connect
  listener sets on every pooled connection.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = FleetStore("sqlite:///carfleet.db")
    user_id = store.create_user(user)
    store.assign_cars(user_id, [1, 2])
    store.close()
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import Pool

from fleet.models import Car, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("login", String(100), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password", Text, nullable=False),  # bcrypt hash
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("birthday", String(10)),  # YYYY-MM-DD
    Column("phone", String(20)),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_cars = Table(
    "cars",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("license_plate", String(8), nullable=False, unique=True),
    Column("model", String(100), nullable=False),
    Column("color", String(50), nullable=False),
    Column("year", Integer, nullable=False),
    Column("owner_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True),
)

# Sortable user columns for paginated listings. Keys are domain field names.
_USER_SORT_COLUMNS = {
    "id": _users.c.id,
    "login": _users.c.login,
    "email": _users.c.email,
    "first_name": _users.c.first_name,
    "last_name": _users.c.last_name,
    "birthday": _users.c.birthday,
}


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable foreign keys and WAL journal mode.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _date_to_str(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _user_values(user: User) -> dict:
    return {
        "login": user.login,
        "email": user.email,
        "password": user.password,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "birthday": _date_to_str(user.birthday),
        "phone": user.phone,
    }


def _car_values(car: Car) -> dict:
    return {
        "license_plate": car.license_plate,
        "model": car.model,
        "color": car.color,
        "year": car.year,
        "owner_id": car.owner_id,
    }


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class FleetStore:
    """Repository for User and Car entities."""

    def __init__(self, db_url: str, poolclass: Optional[type[Pool]] = None) -> None:
        """Open the engine and create missing tables.

        poolclass overrides SQLAlchemy's pool choice. In-memory SQLite URLs
        shared across threads need StaticPool so every thread sees one database.
        """
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        engine_kwargs: dict = {"connect_args": connect_args}
        if poolclass is not None:
            engine_kwargs["poolclass"] = poolclass
        self.engine: Engine = create_engine(db_url, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User, cars: Iterable[Car] = ()) -> int:
        """Insert a user and, in the same transaction, any cars it arrives with.

        The cars' owner_id is overwritten with the new user's id. Raises
        IntegrityError on a duplicate login, email or plate; nothing is
        written in that case.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_users.insert().values(**_user_values(user), created_at=_now_iso()))
            user_id = result.inserted_primary_key[0]
            rows = [{**_car_values(car), "owner_id": user_id} for car in cars]
            if rows:
                conn.execute(_cars.insert(), rows)
        return user_id

    def get_user(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_login(self, login: str) -> User | None:
        """Look up a user by exact login (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.login == login)).fetchone()
        return _row_to_user(row) if row is not None else None

    def exists_by_email(self, email: str, exclude_id: Optional[int] = None) -> bool:
        """True if another user holds this email. exclude_id skips the caller's own row."""
        query = select(_users.c.id).where(_users.c.email == email)
        if exclude_id is not None:
            query = query.where(_users.c.id != exclude_id)
        with self.engine.connect() as conn:
            return conn.execute(query.limit(1)).first() is not None

    def exists_by_login(self, login: str, exclude_id: Optional[int] = None) -> bool:
        query = select(_users.c.id).where(_users.c.login == login)
        if exclude_id is not None:
            query = query.where(_users.c.id != exclude_id)
        with self.engine.connect() as conn:
            return conn.execute(query.limit(1)).first() is not None

    def exists_by_email_or_login(self, email: str, login: str) -> bool:
        query = select(_users.c.id).where((_users.c.email == email) | (_users.c.login == login))
        with self.engine.connect() as conn:
            return conn.execute(query.limit(1)).first() is not None

    def list_users(self, page: int = 0, size: int = 10, sort_by: str = "id") -> list[User]:
        """Return one page of users ordered by sort_by (zero-based page index).

        Only keys of _USER_SORT_COLUMNS are accepted. Unknown keys raise
        ValueError rather than being interpolated into SQL.
        """
        column = _USER_SORT_COLUMNS.get(sort_by)
        if column is None:
            raise ValueError(f"Unknown sort field: {sort_by!r}")
        if page < 0 or size < 1:
            raise ValueError("page must be >= 0 and size >= 1")
        query = _users.select().order_by(column, _users.c.id).limit(size).offset(page * size)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_user(r) for r in rows]

    def list_all_users(self) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    def update_user(self, user_id: int, **fields) -> bool:
        """Update columns on an existing user.

        Accepted fields: login, email, password, first_name, last_name,
        birthday (date), phone. Returns False if user_id was not found.
        Raises IntegrityError on a uniqueness violation.
        """
        if "birthday" in fields:
            fields["birthday"] = _date_to_str(fields["birthday"])
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Delete a user and every car it owns, in one transaction.

        The explicit car delete does not rely on the FK cascade so the policy
        holds on databases where foreign keys are not enforced.
        """
        with self.engine.begin() as conn:
            conn.execute(_cars.delete().where(_cars.c.owner_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Car queries
    # ------------------------------------------------------------------

    def create_car(self, car: Car) -> int:
        """Insert a car and return its id. Raises IntegrityError on a duplicate plate."""
        with self.engine.connect() as conn:
            result = conn.execute(_cars.insert().values(**_car_values(car)))
            conn.commit()
            return result.inserted_primary_key[0]

    def get_car(self, car_id: int) -> Car | None:
        with self.engine.connect() as conn:
            row = conn.execute(_cars.select().where(_cars.c.id == car_id)).fetchone()
        return _row_to_car(row) if row is not None else None

    def get_cars_by_owner(self, owner_id: int) -> list[Car]:
        with self.engine.connect() as conn:
            rows = conn.execute(_cars.select().where(_cars.c.owner_id == owner_id).order_by(_cars.c.id)).fetchall()
        return [_row_to_car(r) for r in rows]

    def get_cars_by_owners(self, owner_ids: Iterable[int]) -> dict[int, list[Car]]:
        """Return {owner_id: [cars]} for a batch of users with a single query."""
        ids = list(owner_ids)
        grouped: dict[int, list[Car]] = {owner_id: [] for owner_id in ids}
        if not ids:
            return grouped
        with self.engine.connect() as conn:
            rows = conn.execute(_cars.select().where(_cars.c.owner_id.in_(ids)).order_by(_cars.c.id)).fetchall()
        for row in rows:
            grouped[row.owner_id].append(_row_to_car(row))
        return grouped

    def get_cars_by_ids(self, car_ids: Iterable[int]) -> list[Car]:
        ids = list(car_ids)
        if not ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(_cars.select().where(_cars.c.id.in_(ids)).order_by(_cars.c.id)).fetchall()
        return [_row_to_car(r) for r in rows]

    def list_available_cars(self) -> list[Car]:
        """Return cars with no owner."""
        with self.engine.connect() as conn:
            rows = conn.execute(_cars.select().where(_cars.c.owner_id.is_(None)).order_by(_cars.c.id)).fetchall()
        return [_row_to_car(r) for r in rows]

    def exists_by_license_plate(self, license_plate: str, exclude_id: Optional[int] = None) -> bool:
        query = select(_cars.c.id).where(_cars.c.license_plate == license_plate)
        if exclude_id is not None:
            query = query.where(_cars.c.id != exclude_id)
        with self.engine.connect() as conn:
            return conn.execute(query.limit(1)).first() is not None

    def count_owned_cars(self) -> int:
        with self.engine.connect() as conn:
            return (
                conn.execute(select(func.count()).select_from(_cars).where(_cars.c.owner_id.is_not(None))).scalar()
                or 0
            )

    def update_car(self, car_id: int, **fields) -> bool:
        """Update columns on an existing car. Returns False if car_id was not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_cars.update().where(_cars.c.id == car_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_car(self, car_id: int, owner_id: Optional[int] = None) -> bool:
        """Delete a car. When owner_id is given the row must also belong to that owner."""
        condition = _cars.c.id == car_id
        if owner_id is not None:
            condition = condition & (_cars.c.owner_id == owner_id)
        with self.engine.connect() as conn:
            result = conn.execute(_cars.delete().where(condition))
            conn.commit()
        return result.rowcount > 0

    def clear_car_owner(self, car_id: int, owner_id: int) -> bool:
        """Set owner_id to NULL, but only while the car still belongs to owner_id.

        Returns False if the car is missing or owned by someone else, in which
        case nothing changes.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _cars.update().where((_cars.c.id == car_id) & (_cars.c.owner_id == owner_id)).values(owner_id=None)
            )
            conn.commit()
        return result.rowcount > 0

    def assign_cars(self, owner_id: int, car_ids: Iterable[int]) -> int:
        """Point every car in car_ids at owner_id with one multi-row UPDATE.

        Returns the number of rows changed.
        """
        ids = list(car_ids)
        if not ids:
            return 0
        with self.engine.begin() as conn:
            result = conn.execute(_cars.update().where(_cars.c.id.in_(ids)).values(owner_id=owner_id))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        login=row.login,
        email=row.email,
        password=row.password,
        first_name=row.first_name,
        last_name=row.last_name,
        birthday=date.fromisoformat(row.birthday) if row.birthday else None,
        phone=row.phone,
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_car(row) -> Car:
    return Car(
        id=row.id,
        license_plate=row.license_plate,
        model=row.model,
        color=row.color,
        year=row.year,
        owner_id=row.owner_id,
    )
