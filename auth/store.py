"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Route, dependency and orchestrator code never touches SQL.

The method set mirrors a document-store interface: find by exact email, find
by id, find-by-id-and-update returning the fresh record, delete by id, count
by filter, and a filtered/paged/sorted listing for admin search.

Security:
  All queries use bound parameters. No f-strings in SQL.

  update_user() accepts only whitelisted columns; the column names never come
  from raw request input.

  consume_reset_token() is a single UPDATE whose WHERE clause carries the
  token hash and the expiry check. Two concurrent resets with the same token
  cannot both succeed, and the password, token and expiry change together.

DB URL: Settings.database_url (default sqlite:///authservice.db).

Layer rule: no imports from api/, core/, or sessions/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(50), nullable=False, server_default=""),
    Column("last_name", String(50), nullable=False, server_default=""),
    Column("phone", String(32)),
    Column("role", String(30), nullable=False, server_default="customer"),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("is_email_verified", Boolean, nullable=False, server_default="0"),
    Column("is_phone_verified", Boolean, nullable=False, server_default="0"),
    Column("language", String(8), nullable=False, server_default="en"),
    Column("currency", String(8), nullable=False, server_default="USD"),
    Column("timezone", String(64), nullable=False, server_default="UTC"),
    Column("marketing_emails", Boolean, nullable=False, server_default="0"),
    Column("sms_notifications", Boolean, nullable=False, server_default="0"),
    Column("address_street", String(200)),
    Column("address_city", String(100)),
    Column("address_state", String(100)),
    Column("address_country", String(100)),
    Column("address_zip_code", String(20)),
    Column("profile_picture", Text),
    Column("password_reset_token", String(64), index=True),  # HMAC-SHA256 hex
    Column("password_reset_expires", Integer),  # unix seconds
    Column("last_login", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Columns an admin, profile, preference or address update may touch. Security-sensitive columns
# (hashed_password, reset fields) have dedicated methods.
_UPDATABLE = frozenset(
    {
        "first_name",
        "last_name",
        "phone",
        "role",
        "is_active",
        "is_email_verified",
        "is_phone_verified",
        "language",
        "currency",
        "timezone",
        "marketing_emails",
        "sms_notifications",
        "address_street",
        "address_city",
        "address_state",
        "address_country",
        "address_zip_code",
        "profile_picture",
    }
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///authservice.db")
        user_id = store.create_user(User(email="a@example.com", hashed_password=hash_password("secret")))
        user = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///authservice.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> User | None:
        """Exact (case-sensitive) email match. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token(self, token_hash: str, now_ts: int) -> User | None:
        """Return the user holding this reset token hash if it has not expired."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(
                    (_users.c.password_reset_token == token_hash) & (_users.c.password_reset_expires > now_ts)
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Admin search
    # ------------------------------------------------------------------

    @staticmethod
    def _filters(role: str | None, is_active: bool | None, search: str | None) -> list:
        clauses: list = []
        if role:
            clauses.append(_users.c.role == role)
        if is_active is not None:
            clauses.append(_users.c.is_active == is_active)
        if search:
            # Case-insensitive substring; autoescape keeps % and _ literal.
            clauses.append(
                or_(
                    _users.c.first_name.icontains(search, autoescape=True),
                    _users.c.last_name.icontains(search, autoescape=True),
                    _users.c.email.icontains(search, autoescape=True),
                )
            )
        return clauses

    def count_users(self, role: str | None = None, is_active: bool | None = None, search: str | None = None) -> int:
        stmt = select(func.count()).select_from(_users).where(*self._filters(role, is_active, search))
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def list_users(
        self,
        role: str | None = None,
        is_active: bool | None = None,
        search: str | None = None,
        skip: int = 0,
        limit: int = 10,
    ) -> list[User]:
        """Return users matching the filters, newest first."""
        stmt = (
            _users.select()
            .where(*self._filters(role, is_active, search))
            .order_by(_users.c.created_at.desc(), _users.c.id)
            .offset(skip)
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists. The
        orchestrator checks first, but the UNIQUE constraint is what holds
        under concurrent registrations.
        """
        user_id = uuid.uuid4().hex
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    phone=user.phone,
                    role=user.role,
                    is_active=user.is_active,
                    is_email_verified=user.is_email_verified,
                    is_phone_verified=user.is_phone_verified,
                    language=user.language,
                    currency=user.currency,
                    timezone=user.timezone,
                    marketing_emails=user.marketing_emails,
                    sms_notifications=user.sms_notifications,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def update_user(self, user_id: str, **fields) -> User | None:
        """Update whitelisted fields and return the fresh record, or None if not found.

        Unknown field names raise ValueError -- fail fast rather than silently
        dropping part of an update.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if fields:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields)
                )
                conn.commit()
            if result.rowcount == 0:
                return None
        return self.get_by_id(user_id)

    def update_last_login(self, user_id: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def set_password(self, user_id: str, hashed_password: str) -> bool:
        """Replace the password hash and clear any pending reset in one statement."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    hashed_password=hashed_password,
                    password_reset_token=None,
                    password_reset_expires=None,
                    updated_at=_now_iso(),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def set_reset_token(self, user_id: str, token_hash: str, expires_at: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_reset_token=token_hash, password_reset_expires=expires_at, updated_at=_now_iso())
            )
            conn.commit()

    def consume_reset_token(self, user_id: str, token_hash: str, now_ts: int, hashed_password: str) -> bool:
        """Swap the password if and only if the token still matches and has not expired.

        The guard lives in the WHERE clause, so this is one atomic write: the
        new hash lands and the token and expiry are cleared together, or
        nothing changes. Returns True if a row was updated.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.password_reset_token == token_hash)
                    & (_users.c.password_reset_expires > now_ts)
                )
                .values(
                    hashed_password=hashed_password,
                    password_reset_token=None,
                    password_reset_expires=None,
                    updated_at=_now_iso(),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        role=row.role,
        is_active=bool(row.is_active),
        is_email_verified=bool(row.is_email_verified),
        is_phone_verified=bool(row.is_phone_verified),
        language=row.language,
        currency=row.currency,
        timezone=row.timezone,
        marketing_emails=bool(row.marketing_emails),
        sms_notifications=bool(row.sms_notifications),
        address_street=row.address_street,
        address_city=row.address_city,
        address_state=row.address_state,
        address_country=row.address_country,
        address_zip_code=row.address_zip_code,
        profile_picture=row.profile_picture,
        password_reset_token=row.password_reset_token,
        password_reset_expires=row.password_reset_expires,
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
