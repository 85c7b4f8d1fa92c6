"""
Article access policy.

Everything here is a pure function of its inputs: no session, no request,
no I/O.  Services fetch the article (or build the query) and ask this
module what the requester is allowed to see or do.

Rules
-----
- Read one article: public articles are readable by everyone, guests
  included.  A private article is readable by its author and by ADMIN.
- Update / delete: allowed for the author and for ADMIN, nobody else.
- Absence is reported before any permission check, so a missing article
  is always NOT_FOUND, never FORBIDDEN.
- Listing: ADMIN sees everything, an authenticated user sees public
  articles plus their own, a guest sees public articles only.  Caller
  filters are ANDed on top and can only narrow that set.
"""
from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import ColumnElement, func, or_

from articlehub.models import Article, Role, Tag
from articlehub.schemas import ArticleFilters


class Decision(enum.Enum):
    ALLOW = "allow"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class RequesterContext:
    """Verified identity of the caller; ``None`` stands for a guest."""

    user_id: str
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class ArticleAccess(Protocol):
    """The two article attributes the policy looks at."""

    author_id: str
    is_public: bool


@dataclass(frozen=True)
class ArticleRef:
    """Plain carrier for ``ArticleAccess`` when only a cached record is at hand."""

    author_id: str
    is_public: bool


# ---------------------------------------------------------------------------
# Single-article decisions
# ---------------------------------------------------------------------------

def decide_read(article: ArticleAccess | None, requester: RequesterContext | None) -> Decision:
    if article is None:
        return Decision.NOT_FOUND
    if article.is_public:
        return Decision.ALLOW
    if requester is None:
        return Decision.FORBIDDEN
    if requester.is_admin or requester.user_id == article.author_id:
        return Decision.ALLOW
    return Decision.FORBIDDEN


def decide_write(article: ArticleAccess | None, requester: RequesterContext | None) -> Decision:
    """Decision for update and delete alike."""
    if article is None:
        return Decision.NOT_FOUND
    if requester is None:
        return Decision.FORBIDDEN
    if requester.is_admin or requester.user_id == article.author_id:
        return Decision.ALLOW
    return Decision.FORBIDDEN


# ---------------------------------------------------------------------------
# List queries
# ---------------------------------------------------------------------------

def visibility_clause(requester: RequesterContext | None) -> ColumnElement[bool] | None:
    """Base visibility predicate; ``None`` means unrestricted (ADMIN)."""
    if requester is None:
        return Article.is_public.is_(True)
    if requester.is_admin:
        return None
    return or_(Article.is_public.is_(True), Article.author_id == requester.user_id)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_article_filters(
    filters: ArticleFilters, requester: RequesterContext | None
) -> list[ColumnElement[bool]]:
    """
    Return the WHERE clauses for an article listing, to be ANDed together.

    The visibility clause is always part of the result (unless the
    requester is ADMIN), so no combination of caller filters can reveal
    an article the requester could not otherwise see.
    """
    clauses: list[ColumnElement[bool]] = []

    visible = visibility_clause(requester)
    if visible is not None:
        clauses.append(visible)

    if filters.is_public is not None:
        clauses.append(Article.is_public.is_(filters.is_public))

    if filters.tags:
        clauses.append(Article.tags.any(Tag.name.in_(filters.tags)))

    if filters.author_id:
        clauses.append(Article.author_id == filters.author_id)

    if filters.search:
        # Case-insensitive on every backend, independent of collation.
        pattern = f"%{_escape_like(filters.search.lower())}%"
        clauses.append(
            or_(
                func.lower(Article.title).like(pattern, escape="\\"),
                func.lower(Article.content).like(pattern, escape="\\"),
            )
        )

    if filters.created_after is not None:
        clauses.append(Article.created_at >= filters.created_after)
    if filters.created_before is not None:
        clauses.append(Article.created_at <= filters.created_before)

    return clauses


# ---------------------------------------------------------------------------
# Pagination arithmetic
# ---------------------------------------------------------------------------

def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit


def page_meta(total: int, page: int, limit: int) -> dict:
    """Envelope fields for one page of *limit* items out of *total*."""
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if limit > 0 else 0,
        "has_next_page": page * limit < total,
        "has_prev_page": page > 1,
    }
