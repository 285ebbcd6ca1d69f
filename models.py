from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    running = "running"
    succeeded = "succeeded"
    failed = "failed"


class RecomputeTrigger(str, Enum):
    manual = "manual"
    tag_renamed = "tag_renamed"
    tag_deleted = "tag_deleted"
    transaction_updated = "transaction_updated"
    transactions_bulk_updated = "transactions_bulk_updated"
    nightly = "nightly"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class StoreTable(Base, TimestampMixin):
    """A logical table of the document store."""

    __tablename__ = "store_tables"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)

    documents: Mapped[list["Document"]] = relationship(
        "Document", back_populates="table", cascade="all, delete-orphan"
    )


class Document(Base, TimestampMixin):
    """One schema-free item of a logical table.

    ``seq`` grows with every insert and doubles as the scan cursor, so a scan
    resumed after a cursor never revisits an item.
    """

    __tablename__ = "documents"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(
        ForeignKey("store_tables.name", ondelete="CASCADE"), nullable=False
    )
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    table: Mapped["StoreTable"] = relationship(
        "StoreTable", back_populates="documents"
    )

    __table_args__ = (
        UniqueConstraint("table_name", "key", name="uq_document_table_key"),
        Index("ix_documents_table_seq", "table_name", "seq"),
    )
