"""
Async DB helpers for the outbound gateway.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.
"""

from __future__ import annotations

import os
from datetime import datetime, time, timezone
from typing import Any, Iterable
from uuid import uuid4

from sqlalchemy import (
    JSON, Boolean, DateTime, Index, Integer, String, Text, Time,
    case, func, or_, select, text, update,
)
from sqlalchemy.orm import (
    DeclarativeBase, Mapped, mapped_column
)
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncSession
)

from gateway.types.envelope_contract import EnvelopeStatus, Priority


class InvalidTransition(RuntimeError):
    """Raised when an update targets an envelope that is no longer pending."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_aware(name: str, value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        raise ValueError(f"{name} must be timezone-aware")
    return value.astimezone(timezone.utc)


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)

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
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith("sqlite"):
        return url
    if "+asyncpg" not in url:
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def get_engine():
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            _engine = create_async_engine(url)
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5)
    return _engine

def get_session() -> AsyncSession:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_maker()

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

class OutboundEnvelope(Base):
    __tablename__ = "outbound_envelopes"

    id:           Mapped[str]  = mapped_column(String(36), primary_key=True)
    user_id:      Mapped[str]  = mapped_column(String, index=True)
    message_type: Mapped[str]  = mapped_column(String(32))
    content:      Mapped[str]  = mapped_column(Text)
    media_url:    Mapped[str | None] = mapped_column(Text)
    scheduled_for:Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    priority:     Mapped[str]  = mapped_column(String(8), default=Priority.NORMAL.value)
    meta:         Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    status:       Mapped[str]  = mapped_column(String(16), default=EnvelopeStatus.PENDING.value)
    provider_message_id: Mapped[str | None] = mapped_column(String)
    error:        Mapped[str | None] = mapped_column(Text)
    created_at:   Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    sent_at:      Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at:   Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_outbound_envelopes_status_scheduled", "status", "scheduled_for"),
    )


class GatewaySession(Base):
    __tablename__ = "gateway_sessions"

    id:            Mapped[str]  = mapped_column(String(36), primary_key=True)
    user_id:       Mapped[str]  = mapped_column(String)
    channel:       Mapped[str]  = mapped_column(String(32))
    conversation_context: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    is_active:     Mapped[bool] = mapped_column(Boolean, default=True)
    last_activity: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    created_at:    Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index(
            "uq_gateway_sessions_active",
            "user_id",
            "channel",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )


class ProactiveAuditLog(Base):
    __tablename__ = "proactive_audit_log"

    id:              Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id:         Mapped[str] = mapped_column(String, index=True)
    envelope_id:     Mapped[str | None] = mapped_column(String(36))
    job_type:        Mapped[str] = mapped_column(String(32))
    status:          Mapped[str] = mapped_column(String(16))
    message_preview: Mapped[str | None] = mapped_column(Text)
    channel:         Mapped[str] = mapped_column(String(32))
    created_at:      Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )


# Owned upstream (profile + preference subsystems); read-only here.
class UserProfile(Base):
    __tablename__ = "user_profiles"

    id:           Mapped[str] = mapped_column(String, primary_key=True)
    phone_number: Mapped[str | None] = mapped_column(String)


class UserPreferences(Base):
    __tablename__ = "user_preferences"

    user_id:            Mapped[str] = mapped_column(String, primary_key=True)
    quiet_hours_start:  Mapped[time | None] = mapped_column(Time)
    quiet_hours_end:    Mapped[time | None] = mapped_column(Time)
    timezone:           Mapped[str | None] = mapped_column(String(64))
    proactive_enabled:  Mapped[bool] = mapped_column(Boolean, default=True)
    max_daily_messages: Mapped[int | None] = mapped_column(Integer)


def _as_dict(row: Base) -> dict[str, Any]:
    """Column-name keyed copy of *row*; datetimes come back as UTC-aware."""
    out: dict[str, Any] = {}
    for attr in row.__mapper__.column_attrs:
        value = getattr(row, attr.key)
        if isinstance(value, datetime) and value.tzinfo is None:
            # SQLite drops the offset; everything is written in UTC.
            value = value.replace(tzinfo=timezone.utc)
        out[attr.columns[0].name] = value
    return out


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (tests and local dev; production uses Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 5. Envelope store
# ──────────────────────────────────────────────────────────────────────

_PRIORITY_RANK = case(
    {Priority.HIGH.value: 2, Priority.NORMAL.value: 1, Priority.LOW.value: 0},
    value=OutboundEnvelope.priority,
    else_=1,
)


# 5.1 Insert envelope --------------------------------------------------
async def insert_envelope(envelope: dict) -> str:
    eid = envelope.get("id") or str(uuid4())
    env = OutboundEnvelope(
        id=eid,
        user_id=envelope["user_id"],
        message_type=_enum_value(envelope["message_type"]),
        content=envelope["content"],
        media_url=envelope.get("media_url"),
        scheduled_for=_require_aware("scheduled_for", envelope.get("scheduled_for")),
        priority=_enum_value(envelope.get("priority") or Priority.NORMAL),
        meta=envelope.get("metadata") or {},
        status=_enum_value(envelope.get("status") or EnvelopeStatus.PENDING),
        provider_message_id=envelope.get("provider_message_id"),
        error=envelope.get("error"),
        sent_at=_require_aware("sent_at", envelope.get("sent_at")),
        created_at=_require_aware("created_at", envelope.get("created_at")) or _utcnow(),
    )
    async with get_session() as s:
        s.add(env)
        await s.commit()
    return eid


async def get_envelope(envelope_id: str) -> dict | None:
    async with get_session() as s:
        env = await s.get(OutboundEnvelope, envelope_id)
        return _as_dict(env) if env else None


# 5.2 Eligible batch ---------------------------------------------------
async def list_eligible(now: datetime, limit: int = 50) -> list[dict]:
    """Pending envelopes due at *now*, highest priority first, then oldest."""
    now = _require_aware("now", now)
    stmt = (
        select(OutboundEnvelope)
        .where(
            OutboundEnvelope.status == EnvelopeStatus.PENDING.value,
            or_(
                OutboundEnvelope.scheduled_for.is_(None),
                OutboundEnvelope.scheduled_for <= now,
            ),
        )
        .order_by(
            _PRIORITY_RANK.desc(),
            func.coalesce(OutboundEnvelope.scheduled_for, OutboundEnvelope.created_at).asc(),
            OutboundEnvelope.created_at.asc(),
        )
        .limit(limit)
    )
    async with get_session() as s:
        res = await s.execute(stmt)
        return [_as_dict(e) for e in res.scalars()]


# 5.3 Status transitions ----------------------------------------------
async def update_envelope_status(envelope_id: str, status: EnvelopeStatus | str, **fields):
    """Move a pending envelope to *status*, writing *fields* alongside.

    Only pending rows are touched; anything else raises InvalidTransition.
    """
    values: dict[str, Any] = {"status": EnvelopeStatus(status).value, "updated_at": _utcnow()}
    for key, value in fields.items():
        if isinstance(value, datetime):
            value = _require_aware(key, value)
        values[key] = value

    async with get_session() as s:
        res = await s.execute(
            update(OutboundEnvelope)
            .where(
                OutboundEnvelope.id == envelope_id,
                OutboundEnvelope.status == EnvelopeStatus.PENDING.value,
            )
            .values(**values)
        )
        await s.commit()
    if res.rowcount == 0:
        raise InvalidTransition(
            f"envelope {envelope_id} is missing or not pending; cannot move to {values['status']}"
        )


async def reschedule_envelope(envelope_id: str, scheduled_for: datetime):
    await update_envelope_status(
        envelope_id, EnvelopeStatus.PENDING, scheduled_for=scheduled_for
    )


async def count_sent_since(
    user_id: str,
    since: datetime,
    message_types: Iterable[str],
) -> int:
    """Envelopes of *message_types* delivered at or after *since*."""
    stmt = select(func.count()).select_from(OutboundEnvelope).where(
        OutboundEnvelope.user_id == user_id,
        OutboundEnvelope.message_type.in_([_enum_value(t) for t in message_types]),
        OutboundEnvelope.status == EnvelopeStatus.SENT.value,
        OutboundEnvelope.sent_at >= _require_aware("since", since),
    )
    async with get_session() as s:
        res = await s.execute(stmt)
        return int(res.scalar_one())


# ──────────────────────────────────────────────────────────────────────
# 6. Audit log
# ──────────────────────────────────────────────────────────────────────
async def insert_audit_entry(entry: dict) -> str:
    aid = str(uuid4())
    async with get_session() as s:
        s.add(
            ProactiveAuditLog(
                id=aid,
                user_id=entry["user_id"],
                envelope_id=entry.get("envelope_id"),
                job_type=_enum_value(entry["job_type"]),
                status=entry.get("status", "sent"),
                message_preview=(entry.get("content") or "")[:200],
                channel=entry.get("channel", "sms"),
            )
        )
        await s.commit()
    return aid


# ──────────────────────────────────────────────────────────────────────
# 7. Sessions
# ──────────────────────────────────────────────────────────────────────
async def latest_active_session(user_id: str, channel: str) -> dict | None:
    async with get_session() as s:
        stmt = (
            select(GatewaySession)
            .where(
                GatewaySession.user_id == user_id,
                GatewaySession.channel == channel,
                GatewaySession.is_active.is_(True),
            )
            .order_by(GatewaySession.last_activity.desc())
            .limit(1)
        )
        res = await s.execute(stmt)
        row = res.scalar_one_or_none()
        return _as_dict(row) if row else None


async def insert_session(user_id: str, channel: str) -> dict:
    """Insert a fresh active session; IntegrityError if one already exists."""
    now = _utcnow()
    row = GatewaySession(
        id=str(uuid4()),
        user_id=user_id,
        channel=channel,
        conversation_context={},
        is_active=True,
        last_activity=now,
        created_at=now,
    )
    async with get_session() as s:
        s.add(row)
        await s.commit()
    return _as_dict(row)


# ──────────────────────────────────────────────────────────────────────
# 8. Upstream lookups (profiles / preferences)
# ──────────────────────────────────────────────────────────────────────
async def fetch_phone_number(user_id: str) -> str | None:
    async with get_session() as s:
        res = await s.execute(
            select(UserProfile.phone_number).where(UserProfile.id == user_id)
        )
        return res.scalar_one_or_none()


async def fetch_preferences(user_id: str) -> dict | None:
    async with get_session() as s:
        prefs = await s.get(UserPreferences, user_id)
        return _as_dict(prefs) if prefs else None


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _session_maker = None
