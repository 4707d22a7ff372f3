"""Account storage.

The console database is the system of record for roles. Every mutation is a
single-row write guarded by an optimistic version check so two concurrent
transitions on the same account cannot silently overwrite each other.

Two implementations share the ``AccountStore`` contract:
    - InMemoryAccountStore : thread-safe dict, used by tests and demo mode
    - SqlAccountStore      : SQLAlchemy 2.0 backed relational store
"""
from __future__ import annotations
import datetime
import threading
import uuid
from typing import Iterable, Optional, Protocol

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint, create_engine, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import Conflict, NotFound, Unavailable
from .models import UserAccount, utcnow
from .roles import Role


class AccountStore(Protocol):
    """Operations the role engine needs from the relational store."""

    def get(self, user_id: str) -> Optional[UserAccount]: ...

    def find_by_email(self, organization_id: Optional[str], email: str) -> Optional[UserAccount]: ...

    def add(self, account: UserAccount) -> UserAccount: ...

    def compare_and_set_role(
        self, user_id: str, expected_role: Role, expected_version: int, new_role: Role
    ) -> UserAccount: ...

    def set_external_id(self, user_id: str, external_id: str) -> UserAccount: ...

    def list_lagging(self) -> list[UserAccount]: ...


def new_account_id() -> str:
    return str(uuid.uuid4())


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


# ─────────────────────────────────────────────────────────────────────────────
# In-memory store
# ─────────────────────────────────────────────────────────────────────────────
class InMemoryAccountStore:
    """Thread-safe in-process store with the same CAS semantics as SQL."""

    def __init__(self, accounts: Iterable[UserAccount] = ()):
        self._lock = threading.Lock()
        self._accounts: dict[str, UserAccount] = {}
        for account in accounts:
            self._accounts[account.id] = account

    def get(self, user_id: str) -> Optional[UserAccount]:
        with self._lock:
            return self._accounts.get(user_id)

    def find_by_email(self, organization_id: Optional[str], email: str) -> Optional[UserAccount]:
        wanted = _normalize_email(email)
        with self._lock:
            for account in self._accounts.values():
                if account.organization_id == organization_id and _normalize_email(account.email) == wanted:
                    return account
        return None

    def add(self, account: UserAccount) -> UserAccount:
        with self._lock:
            if account.id in self._accounts:
                raise Conflict(f"User '{account.id}' already exists")
            wanted = _normalize_email(account.email)
            for existing in self._accounts.values():
                if existing.organization_id == account.organization_id and _normalize_email(existing.email) == wanted:
                    raise Conflict(f"A user with email '{account.email}' already exists in this organization")
            self._accounts[account.id] = account
            return account

    def compare_and_set_role(
        self, user_id: str, expected_role: Role, expected_version: int, new_role: Role
    ) -> UserAccount:
        with self._lock:
            current = self._accounts.get(user_id)
            if current is None:
                raise NotFound(f"User '{user_id}' not found")
            if current.role is not expected_role or current.version != expected_version:
                raise Conflict(
                    f"User '{user_id}' was modified concurrently "
                    f"(expected {expected_role.value} v{expected_version}, "
                    f"found {current.role.value} v{current.version})"
                )
            updated = current.with_changes(role=new_role, version=current.version + 1, modified_at=utcnow())
            self._accounts[user_id] = updated
            return updated

    def set_external_id(self, user_id: str, external_id: str) -> UserAccount:
        with self._lock:
            current = self._accounts.get(user_id)
            if current is None:
                raise NotFound(f"User '{user_id}' not found")
            updated = current.with_changes(
                external_id=external_id, version=current.version + 1, modified_at=utcnow()
            )
            self._accounts[user_id] = updated
            return updated

    def list_lagging(self) -> list[UserAccount]:
        with self._lock:
            return [a for a in self._accounts.values() if a.directory_lagging]


# ─────────────────────────────────────────────────────────────────────────────
# SQLAlchemy store
# ─────────────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass


class AccountRow(Base):
    __tablename__ = "console_user_accounts"
    __table_args__ = (UniqueConstraint("organization_id", "email", name="uq_account_org_email"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    organization_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    modified_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_account(self) -> UserAccount:
        return UserAccount(
            id=self.id,
            display_name=self.display_name,
            email=self.email,
            role=Role(self.role),
            organization_id=self.organization_id,
            active=self.active,
            external_id=self.external_id,
            version=self.version,
            created_at=self.created_at,
            modified_at=self.modified_at,
        )


class SqlAccountStore:
    """Relational store; each write is one UPDATE guarded by role+version."""

    def __init__(self, database_url: str, *, create_schema: bool = True, echo: bool = False):
        engine_kwargs: dict = {"future": True, "echo": echo, "pool_pre_ping": True}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection so every session sees the same in-memory database
            engine_kwargs.update(connect_args={"check_same_thread": False}, poolclass=StaticPool)
        self.engine = create_engine(database_url, **engine_kwargs)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        if create_schema:
            Base.metadata.create_all(self.engine)

    def _session(self) -> Session:
        return self._sessions()

    def get(self, user_id: str) -> Optional[UserAccount]:
        try:
            with self._session() as session:
                row = session.get(AccountRow, user_id)
                return row.to_account() if row else None
        except OperationalError as exc:
            raise Unavailable(f"Account store unavailable: {exc.orig}") from exc

    @staticmethod
    def _email_query(organization_id: Optional[str], email: str):
        # ``== None`` renders IS NULL, so system accounts without an organization match too
        return select(AccountRow).where(
            AccountRow.organization_id == organization_id,
            AccountRow.email == _normalize_email(email),
        )

    def find_by_email(self, organization_id: Optional[str], email: str) -> Optional[UserAccount]:
        try:
            with self._session() as session:
                row = session.scalars(self._email_query(organization_id, email)).first()
                return row.to_account() if row else None
        except OperationalError as exc:
            raise Unavailable(f"Account store unavailable: {exc.orig}") from exc

    def add(self, account: UserAccount) -> UserAccount:
        row = AccountRow(
            id=account.id,
            display_name=account.display_name,
            email=_normalize_email(account.email),
            role=account.role.value,
            organization_id=account.organization_id,
            active=account.active,
            external_id=account.external_id,
            version=account.version,
            created_at=account.created_at,
            modified_at=account.modified_at,
        )
        # The unique constraint treats NULL organizations as distinct; check explicitly.
        try:
            with self._session() as session, session.begin():
                if session.scalars(self._email_query(account.organization_id, account.email)).first() is not None:
                    raise Conflict(f"A user with email '{account.email}' already exists in this organization")
                session.add(row)
        except IntegrityError as exc:
            raise Conflict(f"A user with email '{account.email}' already exists in this organization") from exc
        except OperationalError as exc:
            raise Unavailable(f"Account store unavailable: {exc.orig}") from exc
        return row.to_account()

    def compare_and_set_role(
        self, user_id: str, expected_role: Role, expected_version: int, new_role: Role
    ) -> UserAccount:
        stmt = (
            update(AccountRow)
            .where(
                AccountRow.id == user_id,
                AccountRow.role == expected_role.value,
                AccountRow.version == expected_version,
            )
            .values(role=new_role.value, version=AccountRow.version + 1, modified_at=utcnow())
        )
        return self._guarded_update(user_id, stmt, f"expected {expected_role.value} v{expected_version}")

    def set_external_id(self, user_id: str, external_id: str) -> UserAccount:
        stmt = (
            update(AccountRow)
            .where(AccountRow.id == user_id)
            .values(external_id=external_id, version=AccountRow.version + 1, modified_at=utcnow())
        )
        return self._guarded_update(user_id, stmt, "external id update")

    def _guarded_update(self, user_id: str, stmt, expectation: str) -> UserAccount:
        try:
            with self._session() as session, session.begin():
                result = session.execute(stmt.execution_options(synchronize_session=False))
                if result.rowcount == 1:
                    return session.get(AccountRow, user_id, populate_existing=True).to_account()
                current = session.get(AccountRow, user_id)
        except OperationalError as exc:
            raise Unavailable(f"Account store unavailable: {exc.orig}") from exc
        if current is None:
            raise NotFound(f"User '{user_id}' not found")
        raise Conflict(
            f"User '{user_id}' was modified concurrently ({expectation}, "
            f"found {current.role} v{current.version})"
        )

    def list_lagging(self) -> list[UserAccount]:
        stmt = select(AccountRow).where(AccountRow.active.is_(True), AccountRow.external_id.is_(None))
        try:
            with self._session() as session:
                return [row.to_account() for row in session.scalars(stmt)]
        except OperationalError as exc:
            raise Unavailable(f"Account store unavailable: {exc.orig}") from exc
