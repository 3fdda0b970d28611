"""Shared pytest fixtures for ReelMatch tests.

Every database test gets its own SQLite file under ``tmp_path`` (a file,
not ``:memory:``, so concurrent sessions really contend for it).
"""
import os
import uuid

# Settings are read at import time by reelmatch.database.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./reelmatch_import.db")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
import pytest_asyncio

from reelmatch.database import Base, build_engine, build_session_factory
from reelmatch.models import ChatMessage, MovieLike, User
from reelmatch.services.matching_service import MatchingService
from tests.factories import BASE_TIME, RecordingDispatcher, at


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'reelmatch.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def service(dispatcher):
    return MatchingService(dispatcher=dispatcher)


@pytest.fixture
def make_user(session_factory):
    """Factory: ``await make_user("Ana")`` -> committed user id."""

    async def _make(display_name="User"):
        user_id = uuid.uuid4()
        async with session_factory() as session:
            session.add(
                User(
                    id=user_id,
                    email=f"{user_id.hex[:12]}@reelmatch.test",
                    display_name=display_name,
                    created_at=BASE_TIME,
                )
            )
            await session.commit()
        return user_id

    return _make


@pytest.fixture
def like(session_factory):
    """Factory: ``await like(user_id, 27205, minutes=5, title="Inception")``."""

    async def _like(user_id, item_id, minutes=0, title=None, poster_path=None, release_year=None):
        async with session_factory() as session:
            session.add(
                MovieLike(
                    user_id=user_id,
                    item_id=item_id,
                    title=title if title is not None else f"Movie {item_id}",
                    poster_path=poster_path,
                    release_year=release_year,
                    created_at=at(minutes),
                )
            )
            await session.commit()

    return _like


@pytest.fixture
def unlike(session_factory):
    async def _unlike(user_id, item_id):
        async with session_factory() as session:
            row = await session.get(MovieLike, (user_id, item_id))
            await session.delete(row)
            await session.commit()

    return _unlike


@pytest.fixture
def post_message(session_factory):
    """Factory standing in for the chat subsystem writing a message."""

    async def _post(room_id, sender_id, text, minutes):
        async with session_factory() as session:
            session.add(
                ChatMessage(
                    room_id=room_id,
                    sender_id=sender_id,
                    text=text,
                    sent_at=at(minutes),
                )
            )
            await session.commit()

    return _post
