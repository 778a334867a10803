"""
Database configuration and session management with SQLAlchemy.

Uses async SQLAlchemy for non-blocking database operations.
Invoices and distribution runs are persisted for audit and so a
settled invoice can be tied to exactly one distribution.

Design Decisions:
- AsyncSession for non-blocking operations
- One Database object per application, created in the lifespan
- Explicit transaction management
- Session-per-request pattern
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator
from uuid import uuid4

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class InvoiceRecord(Base):
    """
    Persisted funding invoice.

    Mirrors the domain Invoice plus the id of the distribution that
    consumed it (an invoice funds one distribution only).
    """
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    asset: Mapped[str] = mapped_column(String(128))
    amount: Mapped[str] = mapped_column(String(64))  # Decimal as string, no float rounding
    pay_to: Mapped[str] = mapped_column(String(64), index=True)
    network: Mapped[str] = mapped_column(String(32))
    description: Mapped[str] = mapped_column(Text, default="")
    payment_url: Mapped[str | None] = mapped_column(String(512))

    status: Mapped[str] = mapped_column(String(16), index=True)
    payment_header: Mapped[str | None] = mapped_column(Text)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    failure_code: Mapped[str | None] = mapped_column(String(64))
    settlement_tx_hash: Mapped[str | None] = mapped_column(String(128))
    settlement_network: Mapped[str | None] = mapped_column(String(64))

    # Set once a live distribution spends this invoice
    distribution_id: Mapped[str | None] = mapped_column(String(36))


class DistributionRecord(Base):
    """
    Audit record for a distribution run.

    Dry-runs are recorded too, so operators can compare a preview
    with the live run that followed it.
    """
    __tablename__ = "distribution_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )

    source_address: Mapped[str] = mapped_column(String(64), index=True)
    asset: Mapped[str] = mapped_column(String(128))
    mode: Mapped[str] = mapped_column(String(16))
    invoice_id: Mapped[str | None] = mapped_column(String(64), ForeignKey("invoices.id"))

    total_requested: Mapped[int] = mapped_column(Integer)
    succeeded_count: Mapped[int] = mapped_column(Integer)
    failed_count: Mapped[int] = mapped_column(Integer)
    total_amount: Mapped[str] = mapped_column(String(64))
    cancelled: Mapped[bool] = mapped_column(default=False)

    outcomes_json: Mapped[list] = mapped_column(JSON, default=list)


class Database:
    """
    Owns the async engine and session factory.

    Usage:
        db = Database("sqlite+aiosqlite:///./rewardai.db")
        await db.create_all()
        async with db.session() as session:
            session.add(record)
            await session.commit()
        await db.dispose()
    """

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        engine_kwargs = {"echo": echo}
        if not url.startswith("sqlite"):
            engine_kwargs.update(pool_size=5, max_overflow=10, pool_timeout=30)
        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info(f"Database engine created for {self.engine.url.render_as_string(hide_password=True)}")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session, rolled back on error."""
        session = self.session_factory()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def create_all(self) -> None:
        """
        Initialize database tables.

        Call this on application startup to ensure tables exist.
        In production, use Alembic migrations instead.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialized")

    async def dispose(self) -> None:
        """Close database connections on shutdown."""
        await self.engine.dispose()
        logger.info("Database connections closed")
