"""
Async DB helpers for the reminder store.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import AsyncGenerator

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint,
    func, select, update
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import (
    DeclarativeBase, Mapped, mapped_column, relationship
)
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncSession
)

from app.errors import StoreUnavailable, UserAlreadyExists
from app.types.reminder_contract import ContactKind, DueReminder

# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass

# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise StoreUnavailable("DATABASE_URL not set")
    if "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def get_engine():
    global _engine
    if _engine is None:
        _engine = create_async_engine(_build_url(), pool_size=5, max_overflow=5)
    return _engine

def get_session() -> AsyncGenerator[AsyncSession, None]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async def _session_scope():
        async with _session_maker() as session:
            yield session
    return _session_scope()

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("kind", "contact_address", name="uq_users_kind_contact_address"),
    )

    id:              Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contact_address: Mapped[str] = mapped_column(String(255))
    kind:            Mapped[str] = mapped_column(String(16))
    created_at:      Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at:      Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    reminders: Mapped[list["Reminder"]] = relationship(back_populates="user")


class Reminder(Base):
    __tablename__ = "reminders"
    __table_args__ = (
        Index("ix_reminders_pending_due", "is_completed", "due_at"),
        CheckConstraint("retry_count >= 0", name="ck_reminders_retry_count_non_negative"),
    )

    id:             Mapped[int]  = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id:        Mapped[int]  = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    message:        Mapped[str]  = mapped_column(Text)
    due_at:         Mapped[datetime] = mapped_column(DateTime(timezone=True))
    timeline_label: Mapped[str]  = mapped_column(String(20))
    is_completed:   Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    retry_count:    Mapped[int]  = mapped_column(Integer, default=0, server_default="0")
    created_at:     Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at:     Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    user: Mapped[User] = relationship(back_populates="reminders")


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (run once at startup or from Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 5. CRUD helpers
# ──────────────────────────────────────────────────────────────────────

def _require_aware(name: str, value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware")
    return value


def _kind_value(kind: ContactKind | str) -> str:
    return kind.value if isinstance(kind, ContactKind) else str(kind)


# 5.1 Users ------------------------------------------------------------
async def get_user(kind: ContactKind | str, address: str) -> User | None:
    try:
        async for s in get_session():
            res = await s.execute(
                select(User).where(
                    User.kind == _kind_value(kind),
                    User.contact_address == address,
                )
            )
            return res.scalar_one_or_none()
    except (SQLAlchemyError, OSError) as exc:
        raise StoreUnavailable(str(exc)) from exc


async def create_user(kind: ContactKind | str, address: str, now: datetime) -> User:
    _require_aware("now", now)
    user = User(
        contact_address=address,
        kind=_kind_value(kind),
        created_at=now,
        updated_at=now,
    )
    try:
        async for s in get_session():
            s.add(user)
            await s.commit()
    except IntegrityError as exc:
        raise UserAlreadyExists(_kind_value(kind), address) from exc
    except (SQLAlchemyError, OSError) as exc:
        raise StoreUnavailable(str(exc)) from exc
    return user


async def get_or_create_user(kind: ContactKind | str, address: str, now: datetime) -> User:
    user = await get_user(kind, address)
    if user is not None:
        return user
    try:
        return await create_user(kind, address, now)
    except UserAlreadyExists:
        # lost a race with a concurrent request for the same address
        return await get_user(kind, address)


# 5.2 Insert reminder --------------------------------------------------
async def insert_reminder(
    user_id: int,
    message: str,
    due_at: datetime,
    timeline_label: str,
    now: datetime,
) -> Reminder:
    _require_aware("due_at", due_at)
    _require_aware("now", now)
    reminder = Reminder(
        user_id=user_id,
        message=message,
        due_at=due_at,
        timeline_label=timeline_label,
        is_completed=False,
        retry_count=0,
        created_at=now,
        updated_at=now,
    )
    try:
        async for s in get_session():
            s.add(reminder)
            await s.commit()
    except (SQLAlchemyError, OSError) as exc:
        raise StoreUnavailable(str(exc)) from exc
    return reminder


async def get_reminder(reminder_id: int) -> tuple[Reminder, User] | None:
    try:
        async for s in get_session():
            res = await s.execute(
                select(Reminder, User)
                .join(User, Reminder.user_id == User.id)
                .where(Reminder.id == reminder_id)
            )
            row = res.first()
            return (row[0], row[1]) if row else None
    except (SQLAlchemyError, OSError) as exc:
        raise StoreUnavailable(str(exc)) from exc


# 5.3 Due reminders ----------------------------------------------------
async def fetch_due_reminders(now: datetime, max_retries: int) -> list[DueReminder]:
    """Pending, not exhausted reminders with ``due_at <= now``, with owners."""
    _require_aware("now", now)
    stmt = (
        select(Reminder, User.contact_address, User.kind)
        .join(User, Reminder.user_id == User.id)
        .where(
            Reminder.is_completed.is_(False),
            Reminder.retry_count < max_retries,
            Reminder.due_at <= now,
        )
        .order_by(Reminder.due_at)
    )
    try:
        async for s in get_session():
            res = await s.execute(stmt)
            return [
                DueReminder(
                    id=r.id,
                    user_id=r.user_id,
                    message=r.message,
                    due_at=r.due_at,
                    timeline_label=r.timeline_label,
                    is_completed=r.is_completed,
                    retry_count=r.retry_count,
                    contact_address=address,
                    contact_kind=kind,
                )
                for r, address, kind in res.all()
            ]
    except (SQLAlchemyError, OSError) as exc:
        raise StoreUnavailable(str(exc)) from exc


# 5.4 Reminder state ---------------------------------------------------
async def save_reminder_state(
    reminder_id: int,
    is_completed: bool,
    retry_count: int,
    updated_at: datetime,
) -> bool:
    """Write a reminder's delivery state in one statement.

    The ``retry_count <= :new`` guard keeps the counter monotonic even if a
    stale writer shows up. Returns ``False`` when no row matched.
    """
    _require_aware("updated_at", updated_at)
    try:
        async for s in get_session():
            res = await s.execute(
                update(Reminder)
                .where(
                    Reminder.id == reminder_id,
                    Reminder.retry_count <= retry_count,
                )
                .values(
                    is_completed=is_completed,
                    retry_count=retry_count,
                    updated_at=updated_at,
                )
            )
            await s.commit()
            return res.rowcount > 0
    except (SQLAlchemyError, OSError) as exc:
        raise StoreUnavailable(str(exc)) from exc


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None
