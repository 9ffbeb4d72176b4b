"""Author catalog management."""

from typing import Any, Dict, List, Optional

from core.errors import NotFound, ValidationError
from core.types import Author


class AuthorService:

    def __init__(self, adapter):
        self.adapter = adapter

    def list(self, limit: Optional[int] = None, offset: int = 0) -> List[Author]:
        return self.adapter.list_authors(limit=limit, offset=offset)

    def get(self, author_id: int) -> Author:
        author = self.adapter.get_author(author_id)
        if author is None:
            raise NotFound(f"author {author_id} not found")
        return author

    def create(self, name: str, bio: Optional[str] = None, photo_url: Optional[str] = None) -> Author:
        name = (name or "").strip()
        if not name:
            raise ValidationError("author name is required")
        return self.adapter.create_author(name=name, bio=bio, photo_url=photo_url)

    def update(self, author_id: int, changes: Dict[str, Any]) -> Author:
        self.get(author_id)
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("author name is required")
            changes = {**changes, "name": name}
        return self.adapter.update_author(author_id, changes)

    def delete(self, author_id: int) -> None:
        self.get(author_id)
        self.adapter.delete_author(author_id)
