from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from config.settings import DATABASE_URL, SQL_ECHO

if DATABASE_URL is None:
    raise ValueError("DATABASE_URL environment variable is not set. Please set it in your .env file.")

# Create engine
engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO)

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
    class_=AsyncSession,
)

# Base for models
Base = declarative_base()

# Ensure all model modules register with Base metadata
from infrastructure.database import models as _models  # noqa: E402,F401


async def get_db():
    db = SessionLocal()
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    finally:
        await db.close()


@asynccontextmanager
async def session_scope():
    """One unit of work: commit on success, roll back on any error."""
    db = SessionLocal()
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    finally:
        await db.close()


async def create_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
