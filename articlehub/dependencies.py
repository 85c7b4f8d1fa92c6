from datetime import datetime
from typing import Literal

from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from articlehub.cache import CacheManager
from articlehub.config import Settings
from articlehub.database import get_db
from articlehub.errors import ForbiddenError, UnauthorizedError
from articlehub.middleware import AUTH_ERROR_STATE_KEY, TOKEN_SUBJECT_STATE_KEY
from articlehub.models import Role, User
from articlehub.policy import RequesterContext
from articlehub.schemas import ArticleFilters


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_cache(request: Request) -> CacheManager:
    return request.app.state.cache


# ---------------------------------------------------------------------------
# Requester context
# ---------------------------------------------------------------------------

async def get_requester(
    request: Request, db: AsyncSession = Depends(get_db)
) -> RequesterContext | None:
    """
    Requester for the token verified by ``RequesterContextMiddleware``;
    ``None`` for a guest.

    The account is loaded on every request and its stored role is used,
    so a demoted or deleted user loses access as soon as the change is
    committed, not when the token expires.  A token that failed
    verification, or whose user no longer exists, is rejected with 401
    rather than silently served as a guest.
    """
    auth_error = getattr(request.state, AUTH_ERROR_STATE_KEY, None)
    if auth_error:
        raise UnauthorizedError(auth_error)
    subject = getattr(request.state, TOKEN_SUBJECT_STATE_KEY, None)
    if subject is None:
        return None
    user = await db.get(User, subject)
    if user is None:
        raise UnauthorizedError("User no longer exists")
    return RequesterContext(user_id=user.id, role=Role(user.role))


def require_requester(
    requester: RequesterContext | None = Depends(get_requester),
) -> RequesterContext:
    if requester is None:
        raise UnauthorizedError("Not authenticated")
    return requester


def require_admin(
    requester: RequesterContext = Depends(require_requester),
) -> RequesterContext:
    if not requester.is_admin:
        raise ForbiddenError("Admin role required")
    return requester


# ---------------------------------------------------------------------------
# Listing parameters
# ---------------------------------------------------------------------------

class PaginationParams:
    """
    Reusable FastAPI dependency that parses and validates pagination /
    sorting query parameters.

    Attributes
    ----------
    page:
        1-based page number (minimum 1).
    limit:
        Number of items per page, clamped to ``MAX_PAGE_SIZE`` from the
        app settings regardless of the value supplied by the caller.
    sort_by:
        One of ``created_at``, ``updated_at``, ``title``; anything else is
        rejected with 422.
    sort_order:
        ``"asc"`` or ``"desc"``.
    """

    def __init__(
        self,
        request: Request,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        limit: int | None = Query(
            None, ge=1, le=100, description="Items per page (default 10, max 100)."
        ),
        sort_by: Literal["created_at", "updated_at", "title"] = Query(
            "created_at", description="Field to sort by."
        ),
        sort_order: Literal["asc", "desc"] = Query("desc", description="Sort direction."),
    ) -> None:
        settings: Settings = request.app.state.settings
        self.page = page
        self.limit = min(limit or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
        self.sort_by = sort_by
        self.sort_order = sort_order


class ArticleQueryParams:
    """
    Article listing filters as query parameters.

    ``tags`` may be repeated (``?tags=a&tags=b``) or comma separated
    (``?tags=a,b``).  ``author_email`` is resolved to an author id by the
    router; it is not part of ``ArticleFilters``.
    """

    def __init__(
        self,
        tags: list[str] | None = Query(None, description="Match articles having any of these tags."),
        author_id: str | None = Query(None),
        author_email: str | None = Query(None),
        is_public: bool | None = Query(None),
        search: str | None = Query(None, min_length=1, max_length=200),
        created_after: datetime | None = Query(None),
        created_before: datetime | None = Query(None),
    ) -> None:
        names = [part.strip() for raw in tags or [] for part in raw.split(",")]
        self.author_email = author_email
        self.filters = ArticleFilters(
            tags=[n for n in names if n],
            author_id=author_id,
            is_public=is_public,
            search=search,
            created_after=created_after,
            created_before=created_before,
        )
