"""
Engine, sessions and table definitions.

Tables are SQLAlchemy Core `Table`s on one shared `metadata`; services talk
to them through `get_db_session()`. The engine is created lazily from
TEST_DATABASE_URL (tests) or DATABASE_URL and can be dropped with
`dispose_engine()` so a test can point the process at a fresh database.
"""
from contextlib import contextmanager
from typing import Any, Dict, Optional
import logging
import os

from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Text, Index, ForeignKey, UniqueConstraint, select
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func

from vivu.core.config import settings


logger = logging.getLogger("vivu")

metadata = MetaData()

# Server databases only; SQLite keeps SQLAlchemy's default pool
SERVER_POOL = {
    "poolclass": QueuePool,
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 3600,
    "pool_pre_ping": True,
}

# SQLite: usable from TestClient / worker threads; writers wait for the lock
SQLITE_CONNECT_ARGS = {"check_same_thread": False, "timeout": 30}

_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL


def _engine_kwargs(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        return {"connect_args": dict(SQLITE_CONNECT_ARGS)}
    return dict(SERVER_POOL)


def init_engine(database_url: Optional[str] = None):
    """(Re)create the engine and session factory for `database_url`."""
    global _engine, _SessionLocal

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured (set it in the environment or .env)")

    _engine = create_engine(url, echo=False, **_engine_kwargs(url))
    _SessionLocal = sessionmaker(bind=_engine, autoflush=False)
    logger.debug("database engine ready", extra={"dialect": _engine.dialect.name})
    return _engine


def dispose_engine() -> None:
    """Drop the current engine so the next call re-reads the URL."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


@contextmanager
def get_db_session():
    """
    One unit of work: commit on clean exit, roll back on any exception.

        with get_db_session() as session:
            session.execute(update(accounts)...)
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """Create missing tables; existing ones are left alone."""
    metadata.create_all(bind=get_engine())


def check_connection() -> bool:
    """True if a trivial query succeeds."""
    try:
        with get_engine().connect() as conn:
            conn.execute(select(1))
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False
    return True


# Accounts (subscription + usage embedded as columns)
accounts = Table(
    'accounts',
    metadata,
    Column('account_id', String(100), primary_key=True),
    Column('email', String(255), nullable=True, unique=True),
    Column('display_name', Text, nullable=True),
    Column('role', String(20), nullable=False, server_default='user'),
    # bcrypt hash; NULL for accounts that only arrive via header/JWT auth
    Column('password_hash', String(100), nullable=True),
    Column('subscription_kind', String(20), nullable=False, server_default='trial'),
    Column('subscription_start', DateTime(timezone=True), nullable=False),
    Column('subscription_end', DateTime(timezone=True), nullable=False),
    Column('subscription_is_active', Boolean, nullable=False, server_default='1'),
    Column('subscription_auto_renew', Boolean, nullable=False, server_default='0'),
    Column('trial_consumed', Boolean, nullable=False, server_default='0'),
    Column('search_count', Integer, nullable=False, server_default='0'),
    Column('last_search_at', DateTime(timezone=True), nullable=True),
    # Optimistic concurrency token, bumped on every save
    Column('version', Integer, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_accounts_subscription_end', 'subscription_end'),
    Index('idx_accounts_subscription_kind', 'subscription_kind'),
)

# Account-side audit trail of redeemed codes (append-only)
account_promo_codes = Table(
    'account_promo_codes',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('account_id', String(100), ForeignKey('accounts.account_id', ondelete='CASCADE'), nullable=False),
    Column('code', String(64), nullable=False),
    Column('redeemed_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('account_id', 'code', name='uq_account_promo_codes_account_code'),
    Index('idx_account_promo_codes_account', 'account_id', 'redeemed_at'),
)

# Promo codes
promo_codes = Table(
    'promo_codes',
    metadata,
    Column('code', String(64), primary_key=True),
    Column('kind', String(20), nullable=False),
    Column('duration_months', Integer, nullable=False, server_default='1'),
    Column('max_redemptions', Integer, nullable=True),  # NULL = unlimited
    Column('redemption_count', Integer, nullable=False, server_default='0'),
    Column('expires_at', DateTime(timezone=True), nullable=True),
    Column('active', Boolean, nullable=False, server_default='1'),
    Column('created_by', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_promo_codes_created_at', 'created_at'),
)

# Promo-side redemption ledger; one row per (code, account)
promo_redemptions = Table(
    'promo_redemptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('code', String(64), ForeignKey('promo_codes.code', ondelete='CASCADE'), nullable=False),
    Column('account_id', String(100), nullable=False),
    Column('redeemed_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('code', 'account_id', name='uq_promo_redemptions_code_account'),
    Index('idx_promo_redemptions_code', 'code', 'redeemed_at'),
)

# Payment orders (pending -> completed | failed)
payment_orders = Table(
    'payment_orders',
    metadata,
    Column('order_id', String(100), primary_key=True),
    Column('account_id', String(100), ForeignKey('accounts.account_id', ondelete='CASCADE'), nullable=False),
    Column('plan_kind', String(20), nullable=False),
    Column('duration_months', Integer, nullable=False),
    Column('amount', Integer, nullable=False),
    Column('currency', String(10), nullable=False),
    Column('status', String(20), nullable=False, server_default='pending'),
    Column('provider_session_id', String(255), nullable=True, unique=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('completed_at', DateTime(timezone=True), nullable=True),
    Index('idx_payment_orders_account_created', 'account_id', 'created_at'),
    Index('idx_payment_orders_status', 'status'),
)

# Processed provider webhook events (idempotency)
payment_events = Table(
    'payment_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('provider_event_id', String(100), nullable=False, unique=True),
    Column('event_type', String(100), nullable=False),
    Column('payload_hash', String(64), nullable=False),
    Column('processed', Boolean, nullable=False, server_default='0'),
    Column('error', Text, nullable=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)
