from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String, unique=True)
    # owner | agent; the owner bypasses scope checks.
    role: Mapped[str] = mapped_column(String, default="agent")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    label: Mapped[str] = mapped_column(String)
    # Provider OAuth client id; upsert key for config sync.
    client_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    # AES-GCM record from the credential vault, never plaintext.
    client_secret_encrypted: Mapped[str] = mapped_column(Text)
    oauth_scope: Mapped[str | None] = mapped_column(String, nullable=True)
    oauth_audience: Mapped[str | None] = mapped_column(String, nullable=True)
    is_parent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Fleet(Base):
    __tablename__ = "fleets"
    __table_args__ = (
        UniqueConstraint("account_id", "external_ref", name="uq_fleets_account_external_ref"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(String, ForeignKey("accounts.id"), index=True)
    name: Mapped[str] = mapped_column(String)
    # Provider fleet sid.
    external_ref: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class Sim(Base):
    __tablename__ = "sims"
    __table_args__ = (
        Index("ix_sims_account_iccid", "account_id", "iccid"),
        Index("ix_sims_account_unique_name", "account_id", "unique_name"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(String, ForeignKey("accounts.id"), index=True)
    fleet_id: Mapped[str] = mapped_column(String, ForeignKey("fleets.id"), index=True)
    # Provider sim sid, globally unique; upsert key for device sync.
    sim_sid: Mapped[str] = mapped_column(String, unique=True, index=True)
    iccid: Mapped[str] = mapped_column(String)
    unique_name: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="unknown")
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class UserScope(Base):
    __tablename__ = "user_scopes"
    __table_args__ = (
        # NULL fleet_id rows are not covered by this constraint; repos look them up explicitly.
        UniqueConstraint("user_id", "account_id", "fleet_id", name="uq_user_scopes_user_account_fleet"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, index=True)
    account_id: Mapped[str] = mapped_column(String, ForeignKey("accounts.id"), index=True)
    fleet_id: Mapped[str | None] = mapped_column(String, ForeignKey("fleets.id"), nullable=True)
    can_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_write: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_invite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class CommandLog(Base):
    __tablename__ = "command_logs"
    __table_args__ = (
        Index("ix_command_logs_sim_created", "sim_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    account_id: Mapped[str] = mapped_column(String, ForeignKey("accounts.id"), index=True)
    sim_id: Mapped[str] = mapped_column(String, ForeignKey("sims.id"))
    command: Mapped[str] = mapped_column(String)
    # outbound rows are written at dispatch; provider rows mirror remote logs.
    direction: Mapped[str] = mapped_column(String)
    payload: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    provider_sid: Mapped[str | None] = mapped_column(String, unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
