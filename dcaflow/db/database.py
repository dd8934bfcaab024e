"""
Database schema and engine construction.

This module provides:
- SQLAlchemy Core table definitions for tokens, plans and executions
- Engine creation with per-dialect timeouts
"""
from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    true,
)
from sqlalchemy.engine import Engine


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration (non-SQLite)
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# 256-bit unsigned integers as decimal strings
AMOUNT = String(78)

tokens = Table(
    "tokens",
    metadata,
    Column("address", String(42), primary_key=True),
    Column("symbol", String(32), nullable=False),
    Column("decimals", Integer, nullable=False),
    Column("is_wrapped", Boolean, nullable=False, default=False),
    Column("fee_tier", Integer, nullable=True),
)

plans = Table(
    "plans",
    metadata,
    Column("plan_hash", String(66), primary_key=True),
    Column("user_wallet", String(42), nullable=False, index=True),
    Column("token_out_address", String(42), ForeignKey("tokens.address"), nullable=False),
    Column("recipient", String(42), nullable=False),
    Column("amount_in", AMOUNT, nullable=False),
    Column("approval_amount", AMOUNT, nullable=True),
    Column("frequency", Integer, nullable=False),
    Column("last_executed_at", BigInteger, nullable=False, default=0),
    Column("active", Boolean, nullable=False, default=True),
    Column("created_at", BigInteger, nullable=False),
)

# At most one active plan per (user, token)
Index(
    "uq_plans_active_user_token",
    plans.c.user_wallet,
    plans.c.token_out_address,
    unique=True,
    sqlite_where=plans.c.active == true(),
    postgresql_where=plans.c.active == true(),
)

executions = Table(
    "executions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("plan_hash", String(66), ForeignKey("plans.plan_hash"), nullable=False, index=True),
    Column("tx_hash", String(66), nullable=False, unique=True),
    Column("amount_in", AMOUNT, nullable=False),
    Column("amount_out", AMOUNT, nullable=False),
    Column("fee_amount", AMOUNT, nullable=False),
    Column("token_out_address", String(42), nullable=False),
    Column("executed_at", BigInteger, nullable=False),
)


def create_db_engine(database_url: str, timeout: float = 10.0) -> Engine:
    """
    Create the SQLAlchemy engine.

    Args:
        database_url: Any SQLAlchemy URL
        timeout: Seconds to wait for a pooled connection (or the SQLite write lock)
    """
    if not database_url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if database_url.startswith("sqlite"):
        # Store calls run in worker threads
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )

    return create_engine(
        database_url,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=timeout,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
    )


def create_schema(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    metadata.create_all(engine)
