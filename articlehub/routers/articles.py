from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from articlehub.cache import CacheManager
from articlehub.database import get_db
from articlehub.dependencies import (
    ArticleQueryParams,
    PaginationParams,
    get_cache,
    get_requester,
    require_requester,
)
from articlehub.policy import RequesterContext
from articlehub.schemas import ArticleCreate, ArticlePage, ArticleResponse, ArticleUpdate, MessageResponse
from articlehub.services import article_service, user_service

router = APIRouter(prefix="/api/v1/articles", tags=["articles"])


@router.get("", response_model=ArticlePage)
async def list_articles(
    pagination: PaginationParams = Depends(),
    query: ArticleQueryParams = Depends(),
    requester: RequesterContext | None = Depends(get_requester),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    filters = query.filters
    if query.author_email:
        author = await user_service.get_user_by_email(db, query.author_email)
        if author is None or (filters.author_id and filters.author_id != author.id):
            return article_service.empty_page(pagination.page, pagination.limit)
        filters = filters.model_copy(update={"author_id": author.id})

    return await article_service.get_articles(
        db,
        requester,
        filters,
        page=pagination.page,
        limit=pagination.limit,
        sort_by=pagination.sort_by,
        sort_order=pagination.sort_order,
        cache=cache,
    )


@router.get("/{article_id}", response_model=ArticleResponse)
async def get_article(
    article_id: str,
    requester: RequesterContext | None = Depends(get_requester),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    return await article_service.get_article(db, article_id, requester, cache=cache)


@router.post("", status_code=201, response_model=ArticleResponse)
async def create_article(
    data: ArticleCreate,
    requester: RequesterContext = Depends(require_requester),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    return await article_service.create_article(db, requester, data, cache=cache)


@router.api_route("/{article_id}", methods=["PUT", "PATCH"], response_model=ArticleResponse)
async def update_article(
    article_id: str,
    data: ArticleUpdate,
    requester: RequesterContext = Depends(require_requester),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    return await article_service.update_article(db, article_id, requester, data, cache=cache)


@router.delete("/{article_id}", response_model=MessageResponse)
async def delete_article(
    article_id: str,
    requester: RequesterContext = Depends(require_requester),
    db: AsyncSession = Depends(get_db),
    cache: CacheManager = Depends(get_cache),
):
    await article_service.delete_article(db, article_id, requester, cache=cache)
    return {"message": "Article deleted successfully"}
