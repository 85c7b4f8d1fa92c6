"""
Direct service-layer tests: business logic without HTTP overhead.

These call the service functions with a live session and a
``RequesterContext``, covering the query paths, tag reconciliation and
cache-aside behaviour that the endpoint tests only reach indirectly.
"""
from fnmatch import fnmatch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.ext.asyncio import AsyncSession

from articlehub.cache import CacheManager, article_detail_key
from articlehub.database import commit
from articlehub.errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from articlehub.models import Article, Role, Tag, User
from articlehub.policy import RequesterContext
from articlehub.schemas import ArticleCreate, ArticleFilters, ArticleUpdate, RegisterRequest, UserUpdate
from articlehub.services import article_service, tag_service, user_service
from articlehub.services.tag_service import normalize_tag_names, reconcile_tags


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _create_user(db: AsyncSession, email: str = "svc@example.com", role: Role = Role.USER) -> RequesterContext:
    user = User(email=email, password_hash="not-a-real-hash", name="Service User", role=role.value)
    db.add(user)
    await db.flush()
    return RequesterContext(user_id=user.id, role=role)


async def _tag_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count()).select_from(Tag))).scalar_one()


class FakeRedis:
    """In-memory stand-in for the few redis.asyncio calls CacheManager makes."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value

    async def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch(key, match):
                yield key

    async def aclose(self):
        pass


@pytest.fixture
def cache() -> CacheManager:
    manager = CacheManager()
    manager._redis = FakeRedis()
    return manager


# ---------------------------------------------------------------------------
# tag_service
# ---------------------------------------------------------------------------

def test_normalize_tag_names():
    assert normalize_tag_names([" python ", "orm", "", "python", "  "]) == ["python", "orm"]


@pytest.mark.asyncio
async def test_reconcile_tags_creates_missing_only(db_session: AsyncSession):
    first = await reconcile_tags(db_session, ["python", "orm"])
    assert [t.name for t in first] == ["python", "orm"]
    assert await _tag_count(db_session) == 2

    second = await reconcile_tags(db_session, ["orm", "python", "sql"])
    assert [t.name for t in second] == ["orm", "python", "sql"]
    assert {t.id for t in second[:2]} == {t.id for t in first}
    assert await _tag_count(db_session) == 3


@pytest.mark.asyncio
async def test_reconcile_tags_empty(db_session: AsyncSession):
    assert await reconcile_tags(db_session, ["", "   "]) == []
    assert await _tag_count(db_session) == 0


@pytest.mark.asyncio
async def test_reconcile_tags_same_names_twice(db_session: AsyncSession):
    first = await reconcile_tags(db_session, ["a", "b"])
    second = await reconcile_tags(db_session, ["a", "b"])
    assert await _tag_count(db_session) == 2
    assert [t.id for t in second] == [t.id for t in first]
    assert all(s is f for s, f in zip(second, first))


@pytest.mark.asyncio
async def test_reconcile_tags_lost_race_raises_conflict(app, db_session: AsyncSession, monkeypatch):
    # Another transaction commits "x" after this one looked for it.
    async with app.state.session_factory() as other:
        other.add(Tag(name="x"))
        await other.commit()

    async def _sees_nothing(db, names):
        return {}

    monkeypatch.setattr(tag_service, "_find_existing", _sees_nothing)
    with pytest.raises(ConflictError):
        await reconcile_tags(db_session, ["x"])


# ---------------------------------------------------------------------------
# article_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_articles_empty(db_session: AsyncSession):
    result = await article_service.get_articles(db_session, None)
    assert result["total"] == 0
    assert result["items"] == []
    assert result["total_pages"] == 0
    assert result["has_next_page"] is False


@pytest.mark.asyncio
async def test_create_article_via_service(db_session: AsyncSession):
    author = await _create_user(db_session)
    data = ArticleCreate(title="Service Article", content="Direct service content", tags=["python", "fastapi"])
    result = await article_service.create_article(db_session, author, data)

    assert result["title"] == "Service Article"
    assert result["author_id"] == author.user_id
    assert result["author"]["email"] == "svc@example.com"
    assert sorted(t["name"] for t in result["tags"]) == ["fastapi", "python"]
    assert result["created_at"] is not None


@pytest.mark.asyncio
async def test_get_articles_applies_visibility(db_session: AsyncSession):
    owner = await _create_user(db_session, "owner@example.com")
    other = await _create_user(db_session, "other@example.com")
    admin = await _create_user(db_session, "admin@example.com", role=Role.ADMIN)
    await article_service.create_article(db_session, owner, ArticleCreate(title="Open", content="Everyone sees it"))
    await article_service.create_article(
        db_session, owner, ArticleCreate(title="Closed", content="Owner only", is_public=False)
    )

    assert (await article_service.get_articles(db_session, None))["total"] == 1
    assert (await article_service.get_articles(db_session, other))["total"] == 1
    assert (await article_service.get_articles(db_session, owner))["total"] == 2
    assert (await article_service.get_articles(db_session, admin))["total"] == 2

    narrowed = await article_service.get_articles(db_session, other, ArticleFilters(is_public=False))
    assert narrowed["items"] == []


@pytest.mark.asyncio
async def test_get_articles_sort_and_page(db_session: AsyncSession):
    author = await _create_user(db_session)
    for title in ["Beta", "Alpha", "Gamma"]:
        await article_service.create_article(db_session, author, ArticleCreate(title=title, content="Sorted body"))

    result = await article_service.get_articles(
        db_session, author, page=1, limit=2, sort_by="title", sort_order="asc"
    )
    assert [a["title"] for a in result["items"]] == ["Alpha", "Beta"]
    assert result["total_pages"] == 2
    assert result["has_next_page"] is True

    result = await article_service.get_articles(
        db_session, author, page=2, limit=2, sort_by="title", sort_order="asc"
    )
    assert [a["title"] for a in result["items"]] == ["Gamma"]


@pytest.mark.asyncio
async def test_get_article_not_found(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await article_service.get_article(db_session, "missing", None)


@pytest.mark.asyncio
async def test_get_private_article_forbidden_for_other_user(db_session: AsyncSession):
    owner = await _create_user(db_session, "owner@example.com")
    other = await _create_user(db_session, "other@example.com")
    created = await article_service.create_article(
        db_session, owner, ArticleCreate(title="Diary", content="Private thoughts", is_public=False)
    )
    with pytest.raises(ForbiddenError):
        await article_service.get_article(db_session, created["id"], other)
    detail = await article_service.get_article(db_session, created["id"], owner)
    assert detail["title"] == "Diary"


@pytest.mark.asyncio
async def test_update_article_ignores_explicit_nulls(db_session: AsyncSession):
    author = await _create_user(db_session)
    created = await article_service.create_article(
        db_session, author, ArticleCreate(title="Keep Me", content="Original content", tags=["a"])
    )
    updated = await article_service.update_article(
        db_session, created["id"], author, ArticleUpdate(title=None, content="New content")
    )
    assert updated["title"] == "Keep Me"
    assert updated["content"] == "New content"
    assert [t["name"] for t in updated["tags"]] == ["a"]


@pytest.mark.asyncio
async def test_update_article_clears_tags(db_session: AsyncSession):
    author = await _create_user(db_session)
    created = await article_service.create_article(
        db_session, author, ArticleCreate(title="Tagged", content="Has some tags", tags=["x", "y"])
    )
    updated = await article_service.update_article(db_session, created["id"], author, ArticleUpdate(tags=[]))
    assert updated["tags"] == []
    # Tags outlive their last article.
    assert await _tag_count(db_session) == 2


@pytest.mark.asyncio
async def test_update_article_forbidden_for_other_user(db_session: AsyncSession):
    owner = await _create_user(db_session, "owner@example.com")
    other = await _create_user(db_session, "other@example.com")
    created = await article_service.create_article(
        db_session, owner, ArticleCreate(title="Mine", content="Not yours to edit")
    )
    with pytest.raises(ForbiddenError):
        await article_service.update_article(db_session, created["id"], other, ArticleUpdate(title="Yours"))


@pytest.mark.asyncio
async def test_delete_article_via_service(db_session: AsyncSession):
    author = await _create_user(db_session)
    created = await article_service.create_article(
        db_session, author, ArticleCreate(title="Short Lived", content="About to vanish", tags=["keep"])
    )
    await article_service.delete_article(db_session, created["id"], author)

    with pytest.raises(NotFoundError):
        await article_service.get_article(db_session, created["id"], author)
    assert await _tag_count(db_session) == 1


@pytest.mark.asyncio
async def test_relationships_require_explicit_loading(app, db_session: AsyncSession):
    author = await _create_user(db_session)
    created = await article_service.create_article(
        db_session, author, ArticleCreate(title="Plain Select", content="No loader options", tags=["t"])
    )
    await commit(db_session)

    async with app.state.session_factory() as fresh:
        article = (await fresh.execute(select(Article).where(Article.id == created["id"]))).scalar_one()
        with pytest.raises(InvalidRequestError):
            _ = article.tags
        # Deleting still works without loading the collection.
        await fresh.delete(article)
        await fresh.commit()

    assert await _tag_count(db_session) == 1
    with pytest.raises(NotFoundError):
        await article_service.get_article(db_session, created["id"], author)


@pytest.mark.asyncio
async def test_delete_nonexistent_article_service(db_session: AsyncSession):
    author = await _create_user(db_session)
    with pytest.raises(NotFoundError):
        await article_service.delete_article(db_session, "missing", author)


# ---------------------------------------------------------------------------
# Cache-aside
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cached_detail_still_checked_per_requester(db_session: AsyncSession, cache: CacheManager):
    owner = await _create_user(db_session, "owner@example.com")
    other = await _create_user(db_session, "other@example.com")
    created = await article_service.create_article(
        db_session, owner, ArticleCreate(title="Cached", content="Private but cached", is_public=False),
        cache=cache,
    )

    await article_service.get_article(db_session, created["id"], owner, cache=cache)
    assert article_detail_key(created["id"]) in cache._redis.store

    with pytest.raises(ForbiddenError):
        await article_service.get_article(db_session, created["id"], other, cache=cache)
    assert cache.stats["hits"] >= 1


@pytest.mark.asyncio
async def test_listing_cache_is_per_requester_and_invalidated(db_session: AsyncSession, cache: CacheManager):
    owner = await _create_user(db_session, "owner@example.com")
    await article_service.create_article(
        db_session, owner, ArticleCreate(title="Hidden", content="Only the owner", is_public=False), cache=cache
    )

    assert (await article_service.get_articles(db_session, owner, cache=cache))["total"] == 1
    # Same parameters, different requester: must not be served the owner's page.
    assert (await article_service.get_articles(db_session, None, cache=cache))["total"] == 0

    await article_service.create_article(
        db_session, owner, ArticleCreate(title="Visible", content="Everyone sees it"), cache=cache
    )
    # Purged only once the write is committed.
    assert any(key.startswith("articles:list:") for key in cache._redis.store)
    await commit(db_session)
    assert not any(key.startswith("articles:list:") for key in cache._redis.store)
    assert (await article_service.get_articles(db_session, None, cache=cache))["total"] == 1


@pytest.mark.asyncio
async def test_detail_purged_after_commit_not_before(db_session: AsyncSession, cache: CacheManager):
    owner = await _create_user(db_session, "owner@example.com")
    created = await article_service.create_article(
        db_session, owner, ArticleCreate(title="Going Private", content="Public for now"), cache=cache
    )
    await commit(db_session)
    key = article_detail_key(created["id"])

    await article_service.update_article(
        db_session, created["id"], owner, ArticleUpdate(is_public=False), cache=cache
    )
    # A guest read between the write and its commit re-caches the public row.
    stale = dict(created, is_public=True)
    await cache.set(key, stale)
    assert key in cache._redis.store

    await commit(db_session)
    assert key not in cache._redis.store
    with pytest.raises(ForbiddenError):
        await article_service.get_article(db_session, created["id"], None, cache=cache)


@pytest.mark.asyncio
async def test_cache_disabled_without_url():
    manager = CacheManager(url=None)
    await manager.connect()
    assert manager.enabled is False
    assert await manager.get("anything") is None
    await manager.set("anything", {"a": 1})
    await manager.invalidate_articles("x")


# ---------------------------------------------------------------------------
# user_service
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_register_and_authenticate(db_session: AsyncSession):
    data = RegisterRequest(email="reg@example.com", password="long-enough-pw", name="Reg")
    created = await user_service.register_user(db_session, data, bcrypt_rounds=4)
    assert created["role"] == "USER"
    assert "password_hash" not in created

    user = await user_service.authenticate(db_session, "reg@example.com", "long-enough-pw")
    assert user.id == created["id"]
    with pytest.raises(UnauthorizedError):
        await user_service.authenticate(db_session, "reg@example.com", "wrong-password")


@pytest.mark.asyncio
async def test_register_duplicate_email(db_session: AsyncSession):
    data = RegisterRequest(email="dup@example.com", password="long-enough-pw")
    await user_service.register_user(db_session, data, bcrypt_rounds=4)
    with pytest.raises(ConflictError):
        await user_service.register_user(db_session, data, bcrypt_rounds=4)


@pytest.mark.asyncio
async def test_update_user_role_and_email(db_session: AsyncSession):
    target = await _create_user(db_session, "before@example.com")
    updated = await user_service.update_user(
        db_session, target.user_id, UserUpdate(email="after@example.com", role=Role.ADMIN)
    )
    assert updated["email"] == "after@example.com"
    assert updated["role"] == "ADMIN"


@pytest.mark.asyncio
async def test_get_user_not_found_service(db_session: AsyncSession):
    with pytest.raises(NotFoundError):
        await user_service.get_user(db_session, "missing")
