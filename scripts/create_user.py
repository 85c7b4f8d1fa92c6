"""
Create an account directly in the database, e.g. the first admin
(registration through the API always creates USER accounts).

  python -m scripts.create_user EMAIL PASSWORD [USER|ADMIN]
"""
import argparse
import asyncio
import sys

from articlehub.config import settings
from articlehub.database import build_engine, build_session_factory
from articlehub.models import Role, User
from articlehub.security import PASSWORD_MAX_LEN, PASSWORD_MIN_LEN, hash_password
from articlehub.services.user_service import get_user_by_email


async def create_user(email: str, password: str, role: Role) -> int:
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    try:
        async with session_factory() as session:
            if await get_user_by_email(session, email) is not None:
                print(f"User '{email}' already exists.", file=sys.stderr)
                return 1
            session.add(User(
                email=email,
                password_hash=hash_password(password, rounds=settings.BCRYPT_ROUNDS),
                role=role.value,
            ))
            await session.commit()
    finally:
        await engine.dispose()
    print(f"Created user '{email}' with role {role.value}.")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Create an articlehub user.")
    parser.add_argument("email")
    parser.add_argument("password", help=f"{PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters")
    parser.add_argument("role", nargs="?", default=Role.USER.value, choices=[r.value for r in Role])
    args = parser.parse_args()

    email = args.email.strip()
    if "@" not in email:
        print("Invalid email address.", file=sys.stderr)
        return 1
    if not (PASSWORD_MIN_LEN <= len(args.password) <= PASSWORD_MAX_LEN):
        print(f"Password must be {PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters.", file=sys.stderr)
        return 1
    return asyncio.run(create_user(email, args.password, Role(args.role)))


if __name__ == "__main__":
    sys.exit(main())
