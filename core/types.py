"""
Core type definitions for the library catalog.

Status enums are declared once here and imported everywhere else; rows
returned by the store are converted into these dataclasses before they
reach the services.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from core.rbac.roles import Role


# ============================================================================
# Status Enums
# ============================================================================

class ContentStatus(str, Enum):
    """Moderation status attached to every book."""
    VISIBLE = "visible"
    ARCHIVED = "archived"
    QUARANTINE = "quarantine"
    PRIVATE = "private"


class CommentStatus(str, Enum):
    """Moderation status attached to every comment."""
    ACTIVE = "active"
    HIDDEN = "hidden"
    DELETED = "deleted"
    PENDING = "pending"


ALL_CONTENT_STATUSES = frozenset(ContentStatus)
ALL_COMMENT_STATUSES = frozenset(CommentStatus)

DEFAULT_TAG_WEIGHT = 1


# ============================================================================
# Caller
# ============================================================================

@dataclass(frozen=True)
class Caller:
    """Identity of whoever issued the current request."""
    user_id: Optional[int]
    role: "Role"

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None


# ============================================================================
# Books
# ============================================================================

@dataclass
class Book:
    id: int
    title: str
    status: ContentStatus
    created_by: Optional[int]
    created_at: Optional[datetime] = None
    description: Optional[str] = None
    publish_year: Optional[int] = None
    pages: Optional[int] = None
    language: Optional[str] = None
    publisher: Optional[str] = None
    type: Optional[str] = None
    rating: int = 0
    cover_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BookMeta:
    """Just enough of a book to authorize a mutation against it."""
    id: int
    created_by: Optional[int]


@dataclass
class BookDraft:
    """Caller-supplied fields for creating or updating a book."""
    title: str
    description: Optional[str] = None
    publish_year: Optional[int] = None
    pages: Optional[int] = None
    language: Optional[str] = None
    publisher: Optional[str] = None
    type: Optional[str] = None
    rating: int = 0
    cover_url: Optional[str] = None


@dataclass
class BookFilter:
    """Search criteria for book listings."""
    query: Optional[str] = None
    title: Optional[str] = None
    tag_ids: List[int] = field(default_factory=list)
    author_id: Optional[int] = None
    category_ids: List[int] = field(default_factory=list)
    creator_id: Optional[int] = None
    sort: str = "newest"


BOOK_SORTS = ("newest", "oldest", "title", "rating", "year")


@dataclass
class Author:
    id: int
    name: str
    bio: Optional[str] = None
    photo_url: Optional[str] = None


@dataclass
class BookImage:
    id: int
    book_id: int
    url: str
    order_index: int = 0


@dataclass
class BookFile:
    id: int
    book_id: int
    format: str
    url: str
    file_size: int = 0
    hash: str = ""
    description: str = ""
    created_at: Optional[datetime] = None


# ============================================================================
# Tags
# ============================================================================

@dataclass
class Tag:
    id: int
    name: str
    color: str = ""


@dataclass
class BookTag:
    """Link row between a book and a tag; weight None means "not set"."""
    book_id: int
    tag_id: int
    weight: Optional[int] = None


@dataclass
class WeightedTag:
    id: int
    name: str
    color: str
    weight: int


# ============================================================================
# Categories
# ============================================================================

@dataclass
class Category:
    id: int
    name: str
    parent_id: Optional[int] = None
    slug: Optional[str] = None
    description: Optional[str] = None


@dataclass
class CategoryNode:
    id: int
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    children: List["CategoryNode"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Breadcrumb:
    id: int
    name: str
    slug: str = ""


# ============================================================================
# Comments & Users
# ============================================================================

@dataclass
class Comment:
    id: int
    book_id: int
    user_id: int
    text: str
    status: CommentStatus = CommentStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class User:
    id: int
    email: str
    password_hash: str
    role: "Role"
    name: Optional[str] = None
    bio: Optional[str] = None
    registered_at: Optional[datetime] = None
    token_version: int = 0
    is_active: bool = True

    def to_public_dict(self) -> Dict[str, Any]:
        """Serialize without credential material."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "bio": self.bio,
            "registered_at": self.registered_at,
            "is_active": self.is_active,
        }


# ============================================================================
# Composite Views
# ============================================================================

@dataclass
class BookView:
    """Everything shown on a book page, loaded in one pass."""
    book: Book
    authors: List[Author] = field(default_factory=list)
    tags: List[WeightedTag] = field(default_factory=list)
    images: List[BookImage] = field(default_factory=list)
    files: List[BookFile] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = self.book.to_dict()
        data["authors"] = [asdict(a) for a in self.authors]
        data["tags"] = [asdict(t) for t in self.tags]
        data["images"] = [asdict(i) for i in self.images]
        data["files"] = [asdict(f) for f in self.files]
        return data


@dataclass
class BookExtras:
    """Per-caller data that is loaded after the book itself."""
    in_favorites: bool
    comments: List[Comment] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "in_favorites": self.in_favorites,
            "comments": [asdict(c) for c in self.comments],
        }
