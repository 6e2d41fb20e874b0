from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("NOTIFIER_BACKEND", "log")

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from models import Base
from services.locks import NetworkLocks
from services.notifier import Notifier, NotifierError
from services.presence import PresenceProcessor
from services.unit_of_work import UnitOfWork

NOW = datetime(2026, 1, 1, 12, 0, 0)


class RecordingNotifier(Notifier):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str, str]] = []

    async def notify(self, destination: str, subject: str, body: str) -> None:
        if self.fail:
            raise NotifierError("mail server unreachable")
        self.sent.append((destination, subject, body))


@dataclass
class Env:
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    notifier: Notifier
    locks: NetworkLocks
    uow: UnitOfWork
    processor: PresenceProcessor = field(init=False)

    def __post_init__(self) -> None:
        self.processor = PresenceProcessor(self.uow)

    async def all(self, model) -> list:
        async with self.session_factory() as session:
            result = await session.execute(select(model).order_by(model.id))
            return list(result.scalars().all())

    async def add(self, *objs) -> None:
        async with self.session_factory() as session:
            session.add_all(objs)
            await session.commit()

    async def dispose(self) -> None:
        await self.engine.dispose()


async def make_env(
    db_path: Path,
    notifier: Notifier | None = None,
    *,
    timeout: float = 10,
    notify_timeout: float = 5,
) -> Env:
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    notifier = notifier or RecordingNotifier()
    locks = NetworkLocks()
    uow = UnitOfWork(
        session_factory,
        notifier,
        locks,
        timeout=timeout,
        notify_timeout=notify_timeout,
        default_destination="ops@example.com",
    )
    return Env(engine, session_factory, notifier, locks, uow)


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "netmon.db"
