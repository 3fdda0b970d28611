"""Seed demo users and movie likes for local runs and the load test.

Creates ``--pairs`` pairs of users.  Both members of a pair like the same
"anchor" movie plus a few random catalogue titles, so every pair shows up
as a candidate for each other.  The pairs are written to ``--out`` as JSON
for ``scripts/load_test.py``.

Usage: python -m scripts.seed_demo [--pairs 25] [--out demo_pairs.json]
"""
import argparse
import asyncio
import json
import random
import sys
import uuid
from datetime import timedelta

sys.path.insert(0, ".")

from reelmatch.database import async_session_factory, engine
from reelmatch.models.interest import MovieLike
from reelmatch.models.user import User
from reelmatch.utils.timeutil import utcnow


CATALOGUE = [
    {"item_id": 27205, "title": "Inception", "poster_path": "/9gk7adHYeDvHkCSEqAvQNLV5Uge.jpg", "release_year": "2010"},
    {"item_id": 238, "title": "The Godfather", "poster_path": "/3bhkrj58Vtu7enYsRolD1fZdja1.jpg", "release_year": "1972"},
    {"item_id": 155, "title": "The Dark Knight", "poster_path": "/qJ2tW6WMUDux911r6m7haRef0WH.jpg", "release_year": "2008"},
    {"item_id": 603, "title": "The Matrix", "poster_path": "/f89U3ADr1oiB1s9GkdPOEpXUk5H.jpg", "release_year": "1999"},
    {"item_id": 680, "title": "Pulp Fiction", "poster_path": "/d5iIlFn5s0ImszYzBPb8JPIfbXD.jpg", "release_year": "1994"},
    {"item_id": 13, "title": "Forrest Gump", "poster_path": "/arw2vcBveWOVZr6pxd9XTd1TdQa.jpg", "release_year": "1994"},
    {"item_id": 129, "title": "Spirited Away", "poster_path": "/39wmItIWsg5sZMyRUHLkWBcuVCM.jpg", "release_year": "2001"},
    {"item_id": 496243, "title": "Parasite", "poster_path": "/7IiTTgloJzvGI1TAYymCfbfl3vT.jpg", "release_year": "2019"},
    {"item_id": 550, "title": "Fight Club", "poster_path": "/pB8BM7pdSp6B6Ih7QZ4DrQ3PmJK.jpg", "release_year": "1999"},
    {"item_id": 157336, "title": "Interstellar", "poster_path": "/gEU2QniE6E77NI6lCU6MxlNBvIx.jpg", "release_year": "2014"},
]


def _likes_for(user_id: uuid.UUID, movies: list[dict]) -> list[MovieLike]:
    now = utcnow()
    return [
        MovieLike(user_id=user_id, created_at=now - timedelta(minutes=i), **movie)
        for i, movie in enumerate(movies)
    ]


async def seed(pairs: int) -> list[dict]:
    seeded: list[dict] = []
    async with async_session_factory() as session:
        for i in range(pairs):
            anchor = random.choice(CATALOGUE)
            users = [
                User(
                    id=uuid.uuid4(),
                    email=f"demo_{i}_{side}_{uuid.uuid4().hex[:8]}@reelmatch.test",
                    display_name=f"Demo {i}{side}",
                )
                for side in ("a", "b")
            ]
            session.add_all(users)
            await session.flush()

            for user in users:
                extras = random.sample([m for m in CATALOGUE if m is not anchor], 3)
                session.add_all(_likes_for(user.id, [anchor, *extras]))

            seeded.append(
                {
                    "user_a": str(users[0].id),
                    "user_b": str(users[1].id),
                    "item_id": anchor["item_id"],
                }
            )
            print(f"  Seeded pair {i}: {users[0].display_name} <-> {users[1].display_name} on {anchor['title']}")
        await session.commit()
    await engine.dispose()
    print(f"Done seeding {pairs} pairs.")
    return seeded


def main():
    parser = argparse.ArgumentParser(description="Seed ReelMatch demo data")
    parser.add_argument("--pairs", type=int, default=25, help="Number of user pairs to create")
    parser.add_argument("--out", type=str, default="demo_pairs.json", help="Where to write the seeded pairs")
    args = parser.parse_args()

    seeded = asyncio.run(seed(args.pairs))
    with open(args.out, "w") as fh:
        json.dump(seeded, fh, indent=2)
    print(f"Pairs written to {args.out}")


if __name__ == "__main__":
    main()
