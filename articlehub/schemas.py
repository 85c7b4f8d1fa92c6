from datetime import datetime, timezone
from typing import Annotated

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from articlehub.models import Role
from articlehub.security import PASSWORD_MAX_LEN, PASSWORD_MIN_LEN

TagName = Annotated[str, Field(max_length=100)]


# --- Tag ---

class TagResponse(BaseModel):
    id: int
    name: str
    model_config = ConfigDict(from_attributes=True)


# --- User ---

class AuthorSummary(BaseModel):
    id: str
    email: str
    name: str | None = None
    model_config = ConfigDict(from_attributes=True)


class UserResponse(AuthorSummary):
    role: Role
    created_at: datetime
    updated_at: datetime


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    name: str | None = Field(None, max_length=150)
    role: Role | None = None
    model_config = ConfigDict(extra="forbid")


# --- Auth ---

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN)
    name: str | None = Field(None, max_length=150)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LEN)


class LoginUser(AuthorSummary):
    role: Role


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: LoginUser


class TokenValidResponse(BaseModel):
    valid: bool = True


# --- Article ---

class ArticleCreate(BaseModel):
    title: str = Field(min_length=3, max_length=300)
    content: str = Field(min_length=5)
    is_public: bool = True
    tags: list[TagName] = []  # tag names, reconciled to Tag rows


class ArticleUpdate(BaseModel):
    """Partial update; ``author_id`` is not accepted, authorship never changes."""

    title: str | None = Field(None, min_length=3, max_length=300)
    content: str | None = Field(None, min_length=5)
    is_public: bool | None = None
    tags: list[TagName] | None = None  # replaces the whole tag set when given
    model_config = ConfigDict(extra="forbid")


class ArticleResponse(BaseModel):
    id: str
    title: str
    content: str
    is_public: bool
    author_id: str
    author: AuthorSummary | None = None
    tags: list[TagResponse] = []
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ArticleFilters(BaseModel):
    """Caller-supplied narrowing for article listings; visibility is applied on top."""

    tags: list[str] = []
    author_id: str | None = None
    is_public: bool | None = None
    search: str | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None

    @field_validator("created_after", "created_before")
    @classmethod
    def normalize_to_utc(cls, v: datetime | None) -> datetime | None:
        # Stored timestamps are UTC; naive bounds are taken to be UTC as well.
        if v is None:
            return None
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


# --- Pagination ---

class ArticlePage(BaseModel):
    items: list[ArticleResponse]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


class MessageResponse(BaseModel):
    message: str
