"""
Test Configuration Module
"""

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from resource_api.db.base import Base
from tests.models import Author, Book, Review


# Use in-memory database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def async_engine():
    """Create async database engine for testing"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Clean up
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing"""
    async_session = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def seeded(db_session):
    """
    Two authors with three books and a few reviews

    ann:  "Alpha" (1990, 10.50) reviews 5, 3
          "Beta"  (2005)        review 4
    bob:  "Gamma" (1999, 20.00)
    """
    ann = Author(name="Ann", country="NZ", active=True, born=date(1960, 5, 1))
    bob = Author(name="Bob", country="US", active=False)
    alpha = Book(title="Alpha", year=1990, price=Decimal("10.50"), author=ann)
    beta = Book(title="Beta", year=2005, author=ann)
    gamma = Book(title="Gamma", year=1999, price=Decimal("20.00"), author=bob)
    db_session.add_all([
        ann,
        bob,
        alpha,
        beta,
        gamma,
        Review(book=alpha, rating=5, body="great"),
        Review(book=alpha, rating=3),
        Review(book=beta, rating=4),
    ])
    await db_session.commit()
    # Start tests from an empty identity map so loader options take effect
    db_session.expunge_all()
    return {
        "ann": ann.id,
        "bob": bob.id,
        "alpha": alpha.id,
        "beta": beta.id,
        "gamma": gamma.id,
    }
