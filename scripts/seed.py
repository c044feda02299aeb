"""Database seeder for local development and demos."""
import argparse
import asyncio
import random
import time
from datetime import timedelta

from campusnet.database import Base, async_session, engine
from campusnet.models import Comment, Connection, Like, Notification, Post, User, UserProfile
from campusnet.security import hash_password
from campusnet.services import message_service, news_service
from campusnet.services.profile_service import default_avatar
from campusnet.services.scraper import fallback_news
from campusnet.timeutils import utcnow

FIRST_NAMES = ["Aarav", "Diya", "Kabir", "Isha", "Rohan", "Meera", "Vihaan", "Ananya", "Arjun", "Saanvi"]
LAST_NAMES = ["Sharma", "Verma", "Gupta", "Iyer", "Nair", "Reddy", "Singh", "Kapoor", "Das", "Mehta"]
DEPARTMENTS = ["Computer Science", "Electronics", "Mechanical", "Management", "Law"]
SKILLS = ["python", "react", "machine learning", "public speaking", "sql", "design",
          "cloud", "leadership", "data analysis", "writing"]
INTERESTS = ["startups", "research", "robotics", "finance", "music", "sports", "open source"]
ROLES = ["student", "student", "student", "professor", "alumni"]
DEFAULT_PASSWORD = "password123"


def _profile_blocks(role: str, department: str) -> dict:
    if role == "professor":
        return {"professor_info": {"department": department, "designation": "Assistant Professor"}}
    if role == "alumni":
        return {"alumni_info": {"department": department, "graduation_year": random.choice([2019, 2020, 2021])}}
    return {"student_info": {
        "department": department,
        "batch": random.choice(["2022-2026", "2023-2027"]),
        "semester": random.randint(1, 8),
    }}


async def seed(small: bool = False):
    num_users = 10 if small else 60
    posts_per_user = 2 if small else 6

    print(f"Seeding: {num_users} users, ~{num_users * posts_per_user} posts")
    start = time.perf_counter()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    password_hash = hash_password(DEFAULT_PASSWORD)
    async with async_session() as session:
        users = []
        for i in range(num_users):
            first, last = FIRST_NAMES[i % len(FIRST_NAMES)], LAST_NAMES[(i // len(FIRST_NAMES)) % len(LAST_NAMES)]
            user = User(
                full_name=f"{first} {last}",
                username=f"user_{i:04d}",
                email=f"user_{i:04d}@campusnet.local",
                password_hash=password_hash,
                role=ROLES[i % len(ROLES)],
                is_verified=True,
            )
            session.add(user)
            users.append(user)
        await session.flush()
        print(f"  Created {len(users)} users (password: {DEFAULT_PASSWORD})")

        for user in users:
            first, last = user.full_name.split(" ", 1)
            department = random.choice(DEPARTMENTS)
            blocks = _profile_blocks(user.role, department)
            session.add(UserProfile(
                user_id=user.id,
                first_name=first,
                last_name=last,
                email=user.email,
                role=user.role,
                avatar=default_avatar(first, last),
                title=f"{user.role.title()} at CampusNet University",
                bio=f"Hi, I'm {first}. I like {random.choice(INTERESTS)}.",
                department=department,
                skills=random.sample(SKILLS, k=3),
                interests=random.sample(INTERESTS, k=2),
                **blocks,
            ))
        await session.flush()
        print("  Created profiles")

        posts = []
        for user in users:
            for _ in range(random.randint(1, posts_per_user)):
                post = Post(
                    author_id=user.id,
                    content=f"Working on something new in {random.choice(SKILLS)} this week.",
                    tags=random.sample(SKILLS, k=2),
                    created_at=utcnow() - timedelta(hours=random.randint(0, 24 * 30)),
                )
                session.add(post)
                posts.append(post)
        await session.flush()
        print(f"  Created {len(posts)} posts")

        likes = comments = 0
        for post in posts:
            for liker in random.sample(users, k=min(3, len(users))):
                session.add(Like(user_id=liker.id, post_id=post.id))
                likes += 1
            commenter = random.choice(users)
            session.add(Comment(post_id=post.id, user_id=commenter.id, content="Great update!"))
            comments += 1
        await session.flush()
        print(f"  Created {likes} likes, {comments} comments")

        connections = 0
        for i, user in enumerate(users[:-1]):
            other = users[i + 1]
            status = "accepted" if i % 3 else "pending"
            session.add(Connection(requester_id=user.id, recipient_id=other.id, status=status))
            connections += 1
            if status == "pending":
                session.add(Notification(
                    user_id=other.id,
                    type="CONNECTION_REQUEST",
                    content=f"{user.full_name} sent you a connection request",
                    related_user_id=user.id,
                    related_user_name=user.full_name,
                ))
        await session.flush()
        print(f"  Created {connections} connections")

        for user, other in zip(users[::2], users[1::2]):
            await message_service.send_message(session, user.id, other.id, "Hey, are you going to the tech fest?")
            await message_service.send_message(session, other.id, user.id, "Yes! See you there.")
        print("  Created conversations")

        result = await news_service.save_items(session, fallback_news())
        print(f"  Created {result.saved} news items")

        await session.commit()

    elapsed = time.perf_counter() - start
    print(f"\nSeeding complete in {elapsed:.1f}s")


def main():
    parser = argparse.ArgumentParser(description="Seed the CampusNet database")
    parser.add_argument("--small", action="store_true", help="Use small dataset (10 users)")
    args = parser.parse_args()
    asyncio.run(seed(small=args.small))


if __name__ == "__main__":
    main()
