"""Database seeder: users (one ADMIN), tags and a public/private mix of articles."""
import argparse
import asyncio
import random
import time
from datetime import datetime, timedelta, timezone

from articlehub.config import settings
from articlehub.database import Base, build_engine, build_session_factory
from articlehub.models import Article, Role, Tag, User
from articlehub.security import hash_password

TAGS = ["python", "fastapi", "postgresql", "redis", "docker", "kubernetes",
        "react", "typescript", "aws", "devops", "testing", "performance",
        "security", "microservices", "graphql", "rest-api"]

SEED_PASSWORD = "password123"


async def seed(small: bool = False):
    num_users = 5 if small else 20
    num_articles = 50 if small else 500

    print(f"Seeding: {num_users} users (+1 admin), {num_articles} articles, {len(TAGS)} tags")
    start = time.perf_counter()

    engine = build_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Hash once; every seeded account shares the same password.
    password_hash = hash_password(SEED_PASSWORD, rounds=settings.BCRYPT_ROUNDS)

    session_factory = build_session_factory(engine)
    async with session_factory() as session:
        tags = [Tag(name=name) for name in TAGS]
        session.add_all(tags)

        users = [
            User(email="admin@example.com", password_hash=password_hash,
                 name="Admin", role=Role.ADMIN.value)
        ]
        for i in range(num_users):
            users.append(User(
                email=f"user_{i:04d}@example.com",
                password_hash=password_hash,
                name=f"User {i}",
            ))
        session.add_all(users)
        await session.flush()
        print(f"  Created {len(tags)} tags and {len(users)} users")

        batch_size = 100
        for batch_start in range(0, num_articles, batch_size):
            batch_end = min(batch_start + batch_size, num_articles)
            for i in range(batch_start, batch_end):
                created = datetime.now(timezone.utc) - timedelta(days=random.randint(0, 365))
                topic = random.choice(TAGS)
                session.add(Article(
                    title=f"Article {i}: notes on {topic}",
                    content=f"This is the full content of article {i} about {topic}. " * 10,
                    is_public=random.random() > 0.2,  # 80% public
                    created_at=created,
                    updated_at=created,
                    author_id=random.choice(users).id,
                    tags=random.sample(tags, k=random.randint(1, 4)),
                ))
            await session.flush()
            print(f"  Batch {batch_start}-{batch_end}: articles created")

        await session.commit()
    await engine.dispose()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")
    print(f"  Log in as admin@example.com or user_0000@example.com with password {SEED_PASSWORD!r}")


def main():
    parser = argparse.ArgumentParser(description="Seed the articlehub database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (50 articles)")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
