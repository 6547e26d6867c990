"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthStore is the repository; _row_to_user / _row_to_progress / _row_to_session
are the mappers. Services (credentials, ledger, sessions) never touch SQL.

Atomicity:
  Every mutation runs inside one engine.begin() transaction, so a request
  aborted mid-flight can never leave a record half-written.

  add_experience() increments the total in SQL (experience = experience + n)
  and re-derives the level from the persisted total inside the same
  transaction. Two racing awards can land in either order; the level always
  matches whatever total wins.

  Upserts try UPDATE first and fall back to INSERT inside a SAVEPOINT. If a
  concurrent writer inserted the row first, the IntegrityError rolls back only
  the savepoint and the UPDATE is retried.

  rotate_session() revokes the old row (guarded by revoked = 0 AND
  expired = 0) and inserts the replacement in one transaction. Only one of
  several concurrent rotations can win the guard.

Failures:
  Any DBAPIError other than an IntegrityError is logged and re-raised as
  StoreUnavailable. The store never retries -- retry policy belongs to the
  caller.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Session tokens are stored as HMAC digests only (see auth/sessions.py).

Timestamps are ISO 8601 UTC strings in a fixed-width format so that string
comparison in SQL matches chronological order.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError

from auth.errors import DuplicateUsername, StoreUnavailable
from auth.models import Session, SkillProgress, User

logger = logging.getLogger("levelgate.store")

_DEFAULT_DB_URL = "sqlite:///levelgate.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(64), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_skill_progress = Table(
    "skill_progress",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("skill_name", String(64), nullable=False),
    Column("level", Integer, nullable=False, server_default="0"),
    Column("experience", Integer, nullable=False, server_default="0"),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("user_id", "skill_name", name="uq_skill_progress_user_skill"),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("user_id", Integer, nullable=False, index=True),
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("expired", Integer, nullable=False, server_default="0"),
    Column("rotation", Integer, nullable=False, server_default="0"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(moment: datetime) -> str:
    """Fixed-width UTC ISO 8601 (always with microseconds) so strings sort chronologically."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User, SkillProgress and Session records.

    Usage:
        store = AuthStore("sqlite:///levelgate.db")
        uid = store.create_user(User(username="ada", password_hash=digest))
        progress = store.add_experience(uid, "publishing", 150, level_of)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        with self._guard():
            _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _guard(self) -> Iterator[None]:
        """Translate driver failures into StoreUnavailable.

        IntegrityError passes through untouched: callers turn it into a
        domain error (DuplicateUsername) or use it to drive a retry.
        """
        try:
            yield
        except IntegrityError:
            raise
        except DBAPIError as exc:
            logger.error("Store operation failed: %s", exc.__class__.__name__)
            raise StoreUnavailable() from exc

    @contextmanager
    def _read(self) -> Iterator[Connection]:
        with self._guard(), self.engine.connect() as conn:
            yield conn

    @contextmanager
    def _write(self) -> Iterator[Connection]:
        with self._guard(), self.engine.begin() as conn:
            yield conn

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self._read() as conn:
                conn.execute(_users.select().limit(1)).fetchall()
        except StoreUnavailable:
            return False
        return True

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned ID.

        Raises DuplicateUsername if the UNIQUE(username) constraint fires.
        The constraint, not a prior lookup, is the authority: two concurrent
        registrations for the same name cannot both succeed.
        """
        try:
            with self._write() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=user.username,
                        password_hash=user.password_hash,
                        created_at=_now_iso(),
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateUsername() from exc

    def get_by_username(self, username: str) -> User | None:
        with self._read() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self._read() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        with self._read() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_password_hash(self, user_id: int, password_hash: str) -> bool:
        """Replace the stored digest. Returns False if the user does not exist."""
        with self._write() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Delete a user with their skill progress and sessions, all in one transaction."""
        with self._write() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.execute(_skill_progress.delete().where(_skill_progress.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Skill progress
    # ------------------------------------------------------------------

    def get_progress(self, user_id: int, skill: str) -> SkillProgress | None:
        with self._read() as conn:
            row = conn.execute(
                _skill_progress.select().where(
                    (_skill_progress.c.user_id == user_id) & (_skill_progress.c.skill_name == skill)
                )
            ).fetchone()
        return _row_to_progress(row) if row is not None else None

    def list_progress(self, user_id: int) -> list[SkillProgress]:
        with self._read() as conn:
            rows = conn.execute(
                _skill_progress.select()
                .where(_skill_progress.c.user_id == user_id)
                .order_by(_skill_progress.c.skill_name)
            ).fetchall()
        return [_row_to_progress(r) for r in rows]

    def add_experience(
        self,
        user_id: int,
        skill: str,
        amount: int,
        level_of: Callable[[int], int],
    ) -> SkillProgress:
        """Add amount to the (user, skill) total and re-derive the level.

        level_of maps a total to a level (the skill's curve). It is applied to
        the total read back inside the transaction, never to a value computed
        in Python before the write.
        """
        key = (_skill_progress.c.user_id == user_id) & (_skill_progress.c.skill_name == skill)
        with self._write() as conn:
            bump = _skill_progress.update().where(key).values(
                experience=_skill_progress.c.experience + amount,
                updated_at=_now_iso(),
            )
            if conn.execute(bump).rowcount == 0:
                try:
                    with conn.begin_nested():
                        conn.execute(
                            _skill_progress.insert().values(
                                user_id=user_id,
                                skill_name=skill,
                                level=0,
                                experience=amount,
                                updated_at=_now_iso(),
                            )
                        )
                except IntegrityError:
                    # A concurrent award created the row first; add on top of it.
                    conn.execute(bump)
            total = conn.execute(_skill_progress.select().where(key)).fetchone().experience
            conn.execute(_skill_progress.update().where(key).values(level=level_of(total)))
            row = conn.execute(_skill_progress.select().where(key)).fetchone()
        return _row_to_progress(row)

    def put_progress(self, user_id: int, skill: str, level: int, experience: int) -> SkillProgress:
        """Overwrite the (user, skill) record. Caller guarantees level matches experience."""
        key = (_skill_progress.c.user_id == user_id) & (_skill_progress.c.skill_name == skill)
        with self._write() as conn:
            write = _skill_progress.update().where(key).values(
                level=level,
                experience=experience,
                updated_at=_now_iso(),
            )
            if conn.execute(write).rowcount == 0:
                try:
                    with conn.begin_nested():
                        conn.execute(
                            _skill_progress.insert().values(
                                user_id=user_id,
                                skill_name=skill,
                                level=level,
                                experience=experience,
                                updated_at=_now_iso(),
                            )
                        )
                except IntegrityError:
                    conn.execute(write)
            row = conn.execute(_skill_progress.select().where(key)).fetchone()
        return _row_to_progress(row)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> Session:
        """Insert a session row and return it with its assigned ID.

        A token_hash collision raises IntegrityError. With 256-bit tokens that
        is not a realistic event, so it is not translated.
        """
        with self._write() as conn:
            session.id = self._insert_session(conn, session)
        return session

    def get_session(self, token_hash: str) -> Session | None:
        with self._read() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
        return _row_to_session(row) if row is not None else None

    def mark_expired(self, session_id: int) -> None:
        """Persist the Expired state. Revoked rows are left alone -- revocation is final."""
        with self._write() as conn:
            conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.revoked == 0))
                .values(expired=1)
            )

    def revoke_session(self, token_hash: str) -> bool:
        """Revoke one session. Returns False if unknown or already revoked."""
        with self._write() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.token_hash == token_hash) & (_sessions.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount > 0

    def revoke_user_sessions(self, user_id: int) -> int:
        """Revoke every live session for user_id. Returns the number revoked."""
        with self._write() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.revoked == 0))
                .values(revoked=1)
            )
        return result.rowcount

    def rotate_session(self, old_token_hash: str, replacement: Session) -> Session | None:
        """Revoke old_token_hash and insert replacement atomically.

        Returns None (and writes nothing) if the old session was already
        revoked or expired, e.g. because a concurrent request rotated it first.
        """
        with self._write() as conn:
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.token_hash == old_token_hash)
                    & (_sessions.c.revoked == 0)
                    & (_sessions.c.expired == 0)
                )
                .values(revoked=1)
            )
            if result.rowcount != 1:
                return None
            replacement.id = self._insert_session(conn, replacement)
        return replacement

    def list_active_sessions(self, user_id: int, now: datetime) -> list[Session]:
        with self._read() as conn:
            rows = conn.execute(
                _sessions.select()
                .where(
                    (_sessions.c.user_id == user_id)
                    & (_sessions.c.revoked == 0)
                    & (_sessions.c.expired == 0)
                    & (_sessions.c.expires_at > to_iso(now))
                )
                .order_by(_sessions.c.issued_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def purge_sessions(self, now: datetime) -> int:
        """Delete revoked, expired and past-expiry rows. Returns the number deleted."""
        with self._write() as conn:
            result = conn.execute(
                _sessions.delete().where(
                    (_sessions.c.revoked == 1) | (_sessions.c.expired == 1) | (_sessions.c.expires_at <= to_iso(now))
                )
            )
        return result.rowcount

    @staticmethod
    def _insert_session(conn: Connection, session: Session) -> int:
        result = conn.execute(
            _sessions.insert().values(
                token_hash=session.token_hash,
                user_id=session.user_id,
                issued_at=to_iso(session.issued_at),
                expires_at=to_iso(session.expires_at),
                revoked=1 if session.revoked else 0,
                expired=1 if session.expired else 0,
                rotation=session.rotation,
            )
        )
        return result.inserted_primary_key[0]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        created_at=row.created_at,
    )


def _row_to_progress(row) -> SkillProgress:
    return SkillProgress(
        user_id=row.user_id,
        skill=row.skill_name,
        level=row.level,
        experience=row.experience,
        updated_at=row.updated_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        token_hash=row.token_hash,
        user_id=row.user_id,
        issued_at=from_iso(row.issued_at),
        expires_at=from_iso(row.expires_at),
        revoked=bool(row.revoked),
        expired=bool(row.expired),
        rotation=row.rotation,
    )
