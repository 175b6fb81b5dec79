import logging
from typing import Iterable, Mapping, Optional

from sqlmodel import SQLModel
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from config import get_database_url, load_settings
from models import DiningTable, TableState

logger = logging.getLogger(__name__)


def build_engine(url: Optional[str] = None, **kwargs) -> AsyncEngine:
    # Create the Async Engine; the URL comes from the environment unless given
    kwargs.setdefault("echo", load_settings().sql_echo)
    return create_async_engine(url or get_database_url(), future=True, **kwargs)


def build_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        # This creates the tables if they don't exist
        await conn.run_sync(SQLModel.metadata.create_all)


async def seed_tables(session: AsyncSession, inventory: Iterable[Mapping]) -> int:
    """Insert the initial table inventory once.

    ``inventory`` is a sequence of mappings with ``number``, ``capacity`` and
    optionally ``location``. Nothing is written when any table already exists.
    Returns the number of tables inserted.
    """
    existing = await session.execute(select(func.count()).select_from(DiningTable))
    if existing.scalar_one() > 0:
        logger.info("Table inventory already present, skipping seed")
        return 0

    count = 0
    for row in inventory:
        session.add(
            DiningTable(
                number=row["number"],
                capacity=row["capacity"],
                location=row.get("location", "interior"),
                state=TableState.FREE,
            )
        )
        count += 1
    await session.commit()
    logger.info("Seeded %d tables", count)
    return count
