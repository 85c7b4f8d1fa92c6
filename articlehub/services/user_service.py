"""
User service: registration, credential checks and admin management of
the User aggregate.

Email uniqueness is enforced by the database; a pre-check gives the
common case a clean 409, and the IntegrityError path covers two
registrations racing for the same address.
"""
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from articlehub.cache import CacheManager
from articlehub.database import after_commit
from articlehub.errors import ConflictError, NotFoundError, UnauthorizedError
from articlehub.models import Role, User
from articlehub.schemas import RegisterRequest, UserUpdate
from articlehub.security import hash_password, verify_password

logger = logging.getLogger(__name__)


def _user_to_dict(user: User) -> dict:
    """Serialise a User; the password hash never leaves this module."""
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def _get_user_or_404(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def get_user(db: AsyncSession, user_id: str) -> dict:
    return _user_to_dict(await _get_user_or_404(db, user_id))


async def get_users(db: AsyncSession) -> list[dict]:
    """All users, newest first."""
    result = await db.execute(select(User).order_by(User.created_at.desc()))
    return [_user_to_dict(u) for u in result.scalars().all()]


async def register_user(db: AsyncSession, data: RegisterRequest, bcrypt_rounds: int = 12) -> dict:
    """Create a USER account. Raises ConflictError when the email is taken."""
    if await get_user_by_email(db, data.email) is not None:
        raise ConflictError("User with this email already exists")

    user = User(
        email=data.email,
        password_hash=hash_password(data.password, rounds=bcrypt_rounds),
        name=data.name,
        role=Role.USER.value,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise ConflictError("User with this email already exists") from exc

    logger.info("Registered user %s", user.id)
    return _user_to_dict(user)


async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    """
    Return the user owning *email* if *password* matches.

    The same error is raised for an unknown email and a wrong password so
    the response does not reveal which accounts exist.
    """
    user = await get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        raise UnauthorizedError("Invalid credentials")
    return user


async def update_user(
    db: AsyncSession, user_id: str, data: UserUpdate, cache: CacheManager | None = None
) -> dict:
    """Apply the fields set in *data*. Raises NotFoundError / ConflictError."""
    user = await _get_user_or_404(db, user_id)
    update_data = data.model_dump(exclude_unset=True)

    new_email = update_data.get("email")
    if new_email is not None and new_email != user.email:
        if await get_user_by_email(db, new_email) is not None:
            raise ConflictError("User with this email already exists")

    for field, value in update_data.items():
        if field == "role" and value is not None:
            value = Role(value).value
        if value is None and field in ("email", "role"):
            continue
        setattr(user, field, value)

    try:
        await db.flush()
    except IntegrityError as exc:
        raise ConflictError("User with this email already exists") from exc

    if cache is not None:
        # Cached articles embed the author's email and name.
        after_commit(db, cache.invalidate_all_articles)
    logger.info("Updated user %s (%s)", user.id, ", ".join(sorted(update_data)) or "no fields")
    return _user_to_dict(user)


async def delete_user(db: AsyncSession, user_id: str, cache: CacheManager | None = None) -> None:
    """Hard-delete a user; their articles go with them through the FK cascade."""
    user = await _get_user_or_404(db, user_id)
    await db.delete(user)
    await db.flush()
    if cache is not None:
        after_commit(db, cache.invalidate_all_articles)
    logger.info("Deleted user %s", user_id)
