# ideagen/entities.py
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    JSON,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from typing import TypeAlias
UUID: TypeAlias = str

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )


class CreditAccount(Base, TimestampMixin):
    __tablename__ = "credit_account"

    user_id: Mapped[UUID] = mapped_column(String(64), primary_key=True)

    balance: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        server_default=text("0"),
    )

    # free / entrepreneur / business
    plan: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        server_default=text("'free'"),
    )

    # set once the free first analysis has been claimed
    first_analysis_done: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_account_balance_non_negative"),
    )


class LedgerEntry(Base):
    """
    Append-only audit trail. One row per successful debit (kind='debit') or
    top-up (kind='grant'). Rows are never updated.
    """
    __tablename__ = "credit_transactions"

    id: Mapped[UUID] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[UUID] = mapped_column(String(64), nullable=False)

    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="debit")
    feature: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # idea (or any other item) the charge refers to
    item_id: Mapped[str | None] = mapped_column(String(64))

    # same key twice -> same entry, never a second charge
    idempotency_key: Mapped[str | None] = mapped_column(String(255), unique=True)

    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_transactions_amount_positive"),
        Index("ix_credit_transactions_user_id", "user_id"),
    )


class Idea(Base, TimestampMixin):
    __tablename__ = "ideas"

    id: Mapped[UUID] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[UUID] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        Index("ix_ideas_user_id", "user_id"),
    )


class GeneratedContent(Base):
    __tablename__ = "generated_content"

    id: Mapped[UUID] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[UUID] = mapped_column(String(64), nullable=False)

    # null for custom ideas
    idea_id: Mapped[UUID | None] = mapped_column(String(36))

    content_type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content_data: Mapped[dict[str, object]] = mapped_column(JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        Index("ix_generated_content_user_type", "user_id", "content_type"),
    )
