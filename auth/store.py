"""
auth/store.py -- SQLAlchemy Core persistence layer for principals (the Credential Store).

Pattern: Repository + Data Mapper. PrincipalStore is the repository;
_row_to_principal is the mapper. Services and dependencies never touch SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.
  hashed_password is written only from values produced by PasswordHasher; the
  store never hashes, and never sees plaintext.

Timeouts:
  Every call is bounded by timeout_seconds -- SQLite's busy timeout for lock
  waits and the pool's checkout timeout for everything else -- so a slow store
  cannot pin request threads indefinitely. In-memory databases use a
  SingletonThreadPool (one connection per thread, no checkout wait), so only
  the busy timeout applies there.

Uniqueness:
  username and email carry UNIQUE constraints. create() maps an IntegrityError
  to DuplicatePrincipalError naming the colliding field, which covers the
  race where two registrations pass the service's pre-check concurrently.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import Pool, QueuePool, SingletonThreadPool

from auth.models import Principal, Role

logger = logging.getLogger("tokengate.auth")

_DEFAULT_DB_URL = "sqlite:///tokengate_auth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_principals = Table(
    "principals",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("username", String(30), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(50)),
    Column("last_name", String(50)),
    Column("avatar", Text, nullable=False, server_default=""),
    Column("role", String(20), nullable=False, server_default=Role.user.value),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_MUTABLE_FIELDS = frozenset({"first_name", "last_name", "avatar", "role", "is_active", "hashed_password"})


class DuplicatePrincipalError(Exception):
    """Raised by create() when a unique field already exists."""

    def __init__(self, field: str) -> None:
        super().__init__(f"duplicate {field}")
        self.field = field


# ---------------------------------------------------------------------------
# Connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def _is_memory_url(db_url: str) -> bool:
    return db_url.startswith("sqlite") and (":memory:" in db_url or "mode=memory" in db_url or db_url == "sqlite://")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PrincipalStore:
    """Repository for Principal records.

    Usage:
        store = PrincipalStore("sqlite:///auth.db", timeout_seconds=5)
        principal_id = store.create(Principal(username="alice", email="a@x.com", hashed_password=digest))
        principal = store.get_by_email("a@x.com")
        store.close()
    """

    def __init__(
        self,
        db_url: str = _DEFAULT_DB_URL,
        timeout_seconds: float = 5.0,
        *,
        poolclass: type[Pool] | None = None,
    ) -> None:
        in_memory = _is_memory_url(db_url)
        connect_args: dict = {}
        engine_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout_seconds
        if in_memory:
            # A named shared-cache database lives only while a connection holds it.
            engine_args["poolclass"] = poolclass or SingletonThreadPool
        else:
            if poolclass is not None:
                engine_args["poolclass"] = poolclass
            if poolclass is None or issubclass(poolclass, QueuePool):
                engine_args["pool_timeout"] = timeout_seconds
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_args)
        if db_url.startswith("sqlite") and not in_memory:
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, principal_id: str) -> Principal | None:
        with self.engine.connect() as conn:
            row = conn.execute(_principals.select().where(_principals.c.id == principal_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_email(self, email: str) -> Principal | None:
        """Look up by normalized email. Callers normalize before calling."""
        with self.engine.connect() as conn:
            row = conn.execute(_principals.select().where(_principals.c.email == email)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_username(self, username: str) -> Principal | None:
        with self.engine.connect() as conn:
            row = conn.execute(_principals.select().where(_principals.c.username == username)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def count_active_admins(self) -> int:
        """Used by set_status() to prevent deactivating the last admin [M4]."""
        query = (
            select(func.count())
            .select_from(_principals)
            .where((_principals.c.role == Role.admin.value) & (_principals.c.is_active.is_(True)))
        )
        with self.engine.connect() as conn:
            result = conn.execute(query).scalar()
        return result or 0

    def ping(self) -> bool:
        """Liveness check for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, principal: Principal) -> str:
        """Insert a new principal and return its generated id.

        Raises DuplicatePrincipalError if username or email already exists.
        """
        if not principal.hashed_password:
            raise ValueError("Refusing to store a principal without a password hash.")
        principal_id = uuid.uuid4().hex
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _principals.insert().values(
                        id=principal_id,
                        username=principal.username,
                        email=principal.email,
                        hashed_password=principal.hashed_password,
                        first_name=principal.first_name,
                        last_name=principal.last_name,
                        avatar=principal.avatar or "",
                        role=Role(principal.role).value,
                        is_active=principal.is_active,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            message = str(exc.orig).lower()
            field = "email" if "email" in message else "username"
            raise DuplicatePrincipalError(field) from exc
        return principal_id

    def update(self, principal_id: str, **fields) -> bool:
        """Update mutable fields and bump updated_at.

        Accepted fields: first_name, last_name, avatar, role, is_active,
        hashed_password. Returns True if a row was updated.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown principal fields: {sorted(unknown)!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_principals.update().where(_principals.c.id == principal_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def record_login(self, principal_id: str) -> None:
        """Stamp the current UTC time as last_login. updated_at is left alone."""
        with self.engine.connect() as conn:
            conn.execute(_principals.update().where(_principals.c.id == principal_id).values(last_login=_now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        avatar=row.avatar or "",
        role=Role(row.role),
        is_active=bool(row.is_active),
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
