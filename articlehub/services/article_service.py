"""
Article service: business logic for the Article aggregate.

Design notes
------------
- Every permission question is answered by ``articlehub.policy``; this
  module only fetches rows, asks the policy, and turns a non-ALLOW
  decision into ``NotFoundError`` / ``ForbiddenError``.
- The detail cache stores the article record *before* the policy runs,
  so a cache hit is still checked against the current requester.
  Listing keys encode the requester scope plus every filter, paging and
  sorting value, because two requesters with identical parameters can
  see different rows.
- Eager loading: ``joinedload`` for the author (many-to-one) and
  ``selectinload`` for tags (many-to-many).  ``unique()`` is required
  after a ``joinedload`` query.
- Service functions flush but do not commit; the transaction boundary is
  owned by the ``get_db`` dependency, so an article and the tags created
  for it are written atomically.  Cache invalidation is registered with
  ``after_commit`` and runs once that transaction has committed.
"""
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Literal

from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from articlehub.cache import CacheManager, article_detail_key, article_list_key
from articlehub.database import after_commit
from articlehub.errors import ForbiddenError, NotFoundError
from articlehub.models import Article
from articlehub.policy import (
    ArticleRef,
    Decision,
    RequesterContext,
    build_article_filters,
    decide_read,
    decide_write,
    page_meta,
    page_offset,
)
from articlehub.schemas import ArticleCreate, ArticleFilters, ArticleUpdate
from articlehub.services.tag_service import reconcile_tags

logger = logging.getLogger(__name__)

SortField = Literal["created_at", "updated_at", "title"]
SortOrder = Literal["asc", "desc"]

# Columns that are safe to sort by; guards against arbitrary attribute access.
_SORTABLE_COLUMNS = {
    "created_at": Article.created_at,
    "updated_at": Article.updated_at,
    "title": Article.title,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _serialize_author(author) -> dict | None:
    if author is None:
        return None
    return {"id": author.id, "email": author.email, "name": author.name}


def _article_to_dict(article: Article) -> dict:
    return {
        "id": article.id,
        "title": article.title,
        "content": article.content,
        "is_public": article.is_public,
        "author_id": article.author_id,
        "author": _serialize_author(article.author),
        "tags": [{"id": t.id, "name": t.name} for t in article.tags],
        "created_at": article.created_at.isoformat() if article.created_at else None,
        "updated_at": article.updated_at.isoformat() if article.updated_at else None,
    }


def _requester_scope(requester: RequesterContext | None) -> str:
    if requester is None:
        return "guest"
    if requester.is_admin:
        return "admin"
    return f"user:{requester.user_id}"


def _enforce(decision: Decision, action: str, article_id: str, requester: RequesterContext | None) -> None:
    if decision is Decision.NOT_FOUND:
        raise NotFoundError("Article not found")
    if decision is Decision.FORBIDDEN:
        logger.warning(
            "Denied %s of article %s for %s", action, article_id, _requester_scope(requester)
        )
        raise ForbiddenError(f"You do not have permission to {action} this article")


async def _load_article(db: AsyncSession, article_id: str) -> Article | None:
    """Fetch one article with author and tags loaded, refreshing any stale identity-map copy."""
    q = (
        select(Article)
        .where(Article.id == article_id)
        .options(joinedload(Article.author), selectinload(Article.tags))
        .execution_options(populate_existing=True)
    )
    result = await db.execute(q)
    return result.unique().scalar_one_or_none()


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def get_articles(
    db: AsyncSession,
    requester: RequesterContext | None,
    filters: ArticleFilters | None = None,
    page: int = 1,
    limit: int = 10,
    sort_by: SortField = "created_at",
    sort_order: SortOrder = "desc",
    cache: CacheManager | None = None,
) -> dict:
    """
    Return one page of the articles *requester* may see, narrowed by *filters*.

    Two SQL statements are issued on a cache miss: a COUNT over the
    filtered set and the page itself with author and tags loaded.
    """
    filters = filters or ArticleFilters()
    cache_key = article_list_key(
        _requester_scope(requester),
        {
            "filters": filters.model_dump(mode="json"),
            "page": page,
            "limit": limit,
            "sort_by": sort_by,
            "sort_order": sort_order,
        },
    )
    if cache is not None:
        cached = await cache.get(cache_key)
        if cached:
            return cached

    clauses = build_article_filters(filters, requester)

    count_q = select(func.count()).select_from(Article).where(*clauses)
    total: int = (await db.execute(count_q)).scalar_one()

    sort_col = _SORTABLE_COLUMNS.get(sort_by, Article.created_at)
    order_expr = desc(sort_col) if sort_order == "desc" else asc(sort_col)

    articles_q = (
        select(Article)
        .where(*clauses)
        .options(joinedload(Article.author), selectinload(Article.tags))
        # id breaks ties so pages never overlap when sort values are equal.
        .order_by(order_expr, Article.id)
        .offset(page_offset(page, limit))
        .limit(limit)
    )
    result = await db.execute(articles_q)
    articles = result.unique().scalars().all()

    response = {"items": [_article_to_dict(a) for a in articles], **page_meta(total, page, limit)}
    if cache is not None:
        await cache.set(cache_key, response, ttl=cache.ttl_list)
    return response


def empty_page(page: int = 1, limit: int = 10) -> dict:
    """Envelope for a listing that is known to match nothing."""
    return {"items": [], **page_meta(0, page, limit)}


async def get_article(
    db: AsyncSession,
    article_id: str,
    requester: RequesterContext | None,
    cache: CacheManager | None = None,
) -> dict:
    """
    Return the article if *requester* may read it.

    Raises NotFoundError when no such article exists and ForbiddenError
    when it is private and the requester is neither its author nor ADMIN.
    """
    data = await cache.get(article_detail_key(article_id)) if cache is not None else None
    if data is None:
        article = await _load_article(db, article_id)
        if article is None:
            raise NotFoundError("Article not found")
        data = _article_to_dict(article)
        if cache is not None:
            await cache.set(article_detail_key(article_id), data, ttl=cache.ttl_detail)

    ref = ArticleRef(author_id=data["author_id"], is_public=data["is_public"])
    _enforce(decide_read(ref, requester), "read", article_id, requester)
    return data


async def create_article(
    db: AsyncSession,
    author: RequesterContext,
    data: ArticleCreate,
    cache: CacheManager | None = None,
) -> dict:
    """Create an article owned by *author*, reconciling its tags in the same transaction."""
    article = Article(
        title=data.title,
        content=data.content,
        is_public=data.is_public,
        author_id=author.user_id,
    )
    article.tags = await reconcile_tags(db, data.tags)

    db.add(article)
    await db.flush()

    if cache is not None:
        after_commit(db, cache.invalidate_articles)
    logger.info("User %s created article %s", author.user_id, article.id)
    return _article_to_dict(await _load_article(db, article.id))


async def update_article(
    db: AsyncSession,
    article_id: str,
    requester: RequesterContext,
    data: ArticleUpdate,
    cache: CacheManager | None = None,
) -> dict:
    """
    Partially update an article; only fields present in the payload change.

    A ``tags`` list replaces the whole tag set (old links cleared, new set
    connected); omitting ``tags`` leaves them untouched.
    """
    article = await _load_article(db, article_id)
    _enforce(decide_write(article, requester), "update", article_id, requester)

    update_data = data.model_dump(exclude_unset=True)
    tags_data: list[str] | None = update_data.pop("tags", None)

    for field, value in update_data.items():
        # Explicit nulls mean "leave as is"; none of these columns is nullable.
        if value is not None:
            setattr(article, field, value)

    if tags_data is not None:
        article.tags = await reconcile_tags(db, tags_data)

    # onupdate only fires for column changes; a tags-only edit still counts.
    article.updated_at = datetime.now(timezone.utc)

    await db.flush()
    if cache is not None:
        after_commit(db, partial(cache.invalidate_articles, article_id))
    logger.info("User %s updated article %s", requester.user_id, article_id)
    return _article_to_dict(await _load_article(db, article_id))


async def delete_article(
    db: AsyncSession,
    article_id: str,
    requester: RequesterContext,
    cache: CacheManager | None = None,
) -> None:
    """Hard-delete an article. Its tags stay behind even if no article uses them."""
    result = await db.execute(select(Article).where(Article.id == article_id))
    article = result.scalar_one_or_none()
    _enforce(decide_write(article, requester), "delete", article_id, requester)

    await db.delete(article)
    await db.flush()
    if cache is not None:
        after_commit(db, partial(cache.invalidate_articles, article_id))
    logger.info("User %s deleted article %s", requester.user_id, article_id)
